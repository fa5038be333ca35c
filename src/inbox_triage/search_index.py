"""
Search indexing interface.

Indexing itself lives in an external service; the pipeline only hands it
content after a successful classification, fire-and-forget.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

import structlog
from pydantic import BaseModel, Field

from inbox_triage.classification.schemas import ClassificationResult
from inbox_triage.tasks import TaskDispatcher


logger = structlog.get_logger(__name__)

INBOX_ITEM_SOURCE = "INBOX_ITEM"


class IndexRequest(BaseModel):
    source_type: str = INBOX_ITEM_SOURCE
    source_id: str
    user_id: str
    content: str
    title: str
    tags: List[str] = Field(default_factory=list)


class SearchIndexer(ABC):
    @abstractmethod
    def index_content(self, request: IndexRequest) -> None:
        """Index (or re-index) one piece of content."""


class LoggingSearchIndexer(SearchIndexer):
    """Default indexer when no search backend is wired in: records the request only."""

    def index_content(self, request: IndexRequest) -> None:
        logger.info(
            "search_index_requested",
            source_type=request.source_type,
            source_id=request.source_id,
            content_length=len(request.content),
            tags_count=len(request.tags),
        )


def build_index_request(item_id: str, user_id: str, content: str, result: ClassificationResult) -> IndexRequest:
    """Combine item content with classification output into a searchable document."""
    parts = [
        content,
        result.reasoning,
        " ".join(a.description for a in result.extracted_actions),
        " ".join(t.value for t in result.tags if t.value),
    ]
    searchable = "\n\n".join(p for p in parts if p)

    title = result.extracted_actions[0].description if result.extracted_actions else ""
    title = title or content[:100]

    return IndexRequest(
        source_id=item_id,
        user_id=user_id,
        content=searchable,
        title=title,
        tags=[t.value for t in result.tags if t.value],
    )


def index_content_async(
    dispatcher: TaskDispatcher,
    indexer: Optional[SearchIndexer],
    request: IndexRequest,
) -> None:
    """Schedule indexing; failures are logged by the dispatcher and never reach the caller."""
    if indexer is None:
        return
    dispatcher.dispatch(f"index:{request.source_id}", indexer.index_content, request)
