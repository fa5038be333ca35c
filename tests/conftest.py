"""
Global pytest fixtures and configuration for test suite.

This module provides reusable fixtures for:
- A temporary SQLite database per test
- Users and inbox items in any state
- A scripted fake classification provider
- A zero-delay classification engine
"""

import json
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Union

import pytest

from inbox_triage.classification.engine import ClassificationEngine
from inbox_triage.classification.provider import ClassificationProvider, ProviderResponse
from inbox_triage.db.database import Database
from inbox_triage.db.models import InboxItem, User, utcnow
from inbox_triage.errors import ProviderError
from inbox_triage.search_index import IndexRequest, SearchIndexer
from inbox_triage.tasks import InlineDispatcher


# ============================================================================
# FAKES
# ============================================================================

def make_payload(
    category: str = "action",
    confidence: Any = 0.9,
    reasoning: str = "Looks like a task",
    actions: Optional[List[Dict[str, Any]]] = None,
    tags: Optional[List[Dict[str, Any]]] = None,
) -> str:
    """Provider JSON text in the shape the system prompt asks for."""
    return json.dumps({
        "category": category,
        "confidence": confidence,
        "reasoning": reasoning,
        "extractedActions": actions or [],
        "tags": tags or [],
    })


class FakeProvider(ClassificationProvider):
    """
    Provider answering from a script.

    Each call consumes the next entry: a string is returned as the JSON body,
    an exception instance is raised. The last entry repeats once the script
    runs out.
    """

    provider_name = "fake"

    def __init__(self, script: Sequence[Union[str, Exception]], model: str = "fake-model"):
        super().__init__(model=model)
        self.script = list(script)
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def complete_json(self, system_prompt: str, user_message: str) -> ProviderResponse:
        with self._lock:
            self.calls.append(user_message)
            index = min(len(self.calls) - 1, len(self.script) - 1)
            entry = self.script[index]

        if isinstance(entry, Exception):
            raise entry
        return ProviderResponse(content=entry, model=self.model, provider=self.provider_name)

    def check_connection(self) -> None:
        return None


class RecordingIndexer(SearchIndexer):
    def __init__(self, fail: bool = False):
        self.requests: List[IndexRequest] = []
        self.fail = fail

    def index_content(self, request: IndexRequest) -> None:
        self.requests.append(request)
        if self.fail:
            raise RuntimeError("search backend unavailable")


# ============================================================================
# DATABASE
# ============================================================================

@pytest.fixture
def db(tmp_path) -> Database:
    """
    Fresh SQLite database file per test.

    Yields:
        Database with all tables created
    """
    database = Database(f"sqlite:///{tmp_path / 'inbox_triage_test.db'}")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def user(db) -> User:
    with db.session() as session:
        row = User(email="owner@example.com", settings={})
        session.add(row)
        session.flush()
    return row


@pytest.fixture
def other_user(db) -> User:
    with db.session() as session:
        row = User(email="someone-else@example.com", settings={})
        session.add(row)
        session.flush()
    return row


@pytest.fixture
def make_item(db, user):
    """
    Factory inserting an inbox item directly.

    Usage:
        item = make_item(content="Call Bob", status="pending", ai_classification={...})
    """
    def _make_item(
        content: str = "Call Bob tomorrow about the invoice",
        status: str = "pending",
        user_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
        **fields: Any,
    ) -> InboxItem:
        now = created_at or utcnow()
        with db.session() as session:
            item = InboxItem(
                user_id=user_id or user.id,
                type=fields.pop("type", "manual"),
                content=content,
                source=fields.pop("source", "capture"),
                status=status,
                extracted_actions=fields.pop("extracted_actions", []),
                tags=fields.pop("tags", []),
                created_at=now,
                updated_at=now,
                **fields,
            )
            session.add(item)
            session.flush()
        return item

    return _make_item


@pytest.fixture
def load_item(db):
    """Re-read an item in a fresh session."""
    def _load_item(item_id: str) -> InboxItem:
        with db.session() as session:
            return session.get(InboxItem, item_id)

    return _load_item


def classified_blob(category: str = "action", confidence: float = 0.5, auto_filed: bool = False) -> Dict[str, Any]:
    """Classification blob as the engine stores it."""
    now = utcnow()
    return {
        "category": category,
        "confidence": confidence,
        "reasoning": "stored",
        "model_used": "fake-model",
        "processed_at": now.isoformat(),
        "auto_filed": auto_filed,
        "processing_meta": {
            "started_at": (now - timedelta(seconds=1)).isoformat(),
            "completed_at": now.isoformat(),
            "retry_count": 0,
        },
    }


# ============================================================================
# ENGINE
# ============================================================================

@pytest.fixture
def indexer() -> RecordingIndexer:
    return RecordingIndexer()


@pytest.fixture
def failing_indexer() -> RecordingIndexer:
    return RecordingIndexer(fail=True)


@pytest.fixture
def make_engine(db, indexer):
    """
    Factory for a zero-delay engine around a scripted FakeProvider.

    Usage:
        engine = make_engine(make_payload(confidence=0.75))
        engine = make_engine(ProviderError("timeout"), make_payload())
    """
    def _make_engine(*script: Union[str, Exception], **kwargs: Any) -> ClassificationEngine:
        provider = FakeProvider(script or (make_payload(),))
        kwargs.setdefault("retry_delays", [0.0])
        kwargs.setdefault("dispatcher", InlineDispatcher())
        kwargs.setdefault("indexer", indexer)
        return ClassificationEngine(db, provider=provider, **kwargs)

    return _make_engine


@pytest.fixture
def failing_engine(make_engine) -> ClassificationEngine:
    """Engine whose provider always times out."""
    return make_engine(ProviderError("Request timed out"))


@pytest.fixture
def payload():
    """The ``make_payload`` helper as a fixture."""
    return make_payload


@pytest.fixture
def blob():
    """The ``classified_blob`` helper as a fixture."""
    return classified_blob
