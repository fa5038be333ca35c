"""
Unit tests for the classification engine.

Runs the engine against a scripted fake provider and a real SQLite database
so persistence, status changes and audit rows are checked together.
"""

import threading
from datetime import timedelta

import pytest

from inbox_triage.classification.schemas import Category, Classification, ItemStatus
from inbox_triage.db.models import Area, ClassificationAudit, FailedWebhook, InboxItem, Project, User, utcnow
from inbox_triage.errors import (
    ClassificationCancelled,
    ClassificationError,
    InvalidStateError,
    NotFoundError,
    ProviderError,
)
from inbox_triage.inbox.queues import needs_review


def _audits(db, item_id):
    with db.session() as session:
        return session.query(ClassificationAudit).filter(ClassificationAudit.inbox_item_id == item_id).all()


def _dead_letters(db):
    with db.session() as session:
        return session.query(FailedWebhook).all()


def _set_threshold(db, user_id, threshold):
    with db.session() as session:
        session.get(User, user_id).settings = {"confidence_threshold": threshold}


class TestClassifySuccess:
    """Test successful classification and auto-filing."""

    def test_confident_result_is_auto_filed(self, db, make_item, make_engine, payload, load_item):
        """Scenario A: confidence 0.75 with threshold 0.6 is filed without review."""
        item = make_item(status="processing")
        engine = make_engine(payload(category="action", confidence=0.75, actions=[{"description": "Call Bob"}]))

        result = engine.classify(item.id, item.content)

        stored = load_item(item.id)
        classification = Classification.from_blob(stored.ai_classification)

        assert result.category == Category.ACTION
        assert stored.status == ItemStatus.REVIEWED.value
        assert stored.reviewed_at is not None
        assert classification.auto_filed is True
        assert classification.confidence == 0.75
        assert classification.model_used == "fake-model"
        assert classification.processing_meta.completed_at is not None
        assert stored.extracted_actions[0]["description"] == "Call Bob"

        audits = _audits(db, item.id)
        assert len(audits) == 1
        assert audits[0].review_type == "auto"
        assert audits[0].ai_category == "action"
        assert audits[0].user_action is None

        assert needs_review(db, item.user_id) == []

    def test_low_confidence_waits_for_review(self, db, make_item, make_engine, payload, load_item):
        """Scenario B: confidence 0.45 with threshold 0.6 lands in needs-review."""
        item = make_item(status="processing")
        engine = make_engine(payload(confidence=0.45))

        engine.classify(item.id, item.content)

        stored = load_item(item.id)
        assert stored.status == ItemStatus.PENDING.value
        assert stored.reviewed_at is None
        assert Classification.from_blob(stored.ai_classification).auto_filed is False
        assert [i.id for i in needs_review(db, item.user_id)] == [item.id]

    def test_threshold_is_read_per_user(self, db, user, make_item, make_engine, payload, load_item):
        _set_threshold(db, user.id, 0.8)
        item = make_item(status="processing")

        make_engine(payload(confidence=0.75)).classify(item.id, item.content)

        assert load_item(item.id).status == ItemStatus.PENDING.value

    def test_confidence_equal_to_threshold_is_auto_filed(self, make_item, make_engine, payload, load_item):
        item = make_item(status="processing")

        make_engine(payload(confidence=0.6)).classify(item.id, item.content)

        assert load_item(item.id).status == ItemStatus.REVIEWED.value

    def test_missing_confidence_is_normalized_not_retried(self, make_item, make_engine, load_item):
        item = make_item(status="processing")
        engine = make_engine('{"category": "note"}')

        result = engine.classify(item.id, item.content)

        assert result.confidence == 0.0
        assert len(engine.provider.calls) == 1
        assert load_item(item.id).status == ItemStatus.PENDING.value

    def test_pending_item_moves_through_processing(self, make_item, make_engine, payload, load_item):
        item = make_item(status="pending")

        make_engine(payload(confidence=0.9)).classify(item.id, item.content)

        assert load_item(item.id).status == ItemStatus.REVIEWED.value

    def test_search_indexing_scheduled(self, make_item, make_engine, payload, indexer):
        item = make_item(content="Plan the offsite", status="processing")
        engine = make_engine(payload(actions=[{"description": "Book venue"}], tags=[{"value": "offsite"}]))

        engine.classify(item.id, item.content)

        assert len(indexer.requests) == 1
        request = indexer.requests[0]
        assert request.source_id == item.id
        assert request.title == "Book venue"
        assert "Plan the offsite" in request.content
        assert request.tags == ["offsite"]

    def test_indexing_failure_does_not_fail_classification(
        self, make_item, make_engine, payload, failing_indexer, load_item
    ):
        item = make_item(status="processing")
        engine = make_engine(payload(confidence=0.9), indexer=failing_indexer)

        result = engine.classify(item.id, item.content)

        assert result.confidence == 0.9
        assert len(failing_indexer.requests) == 1
        assert load_item(item.id).status == ItemStatus.REVIEWED.value

    def test_unknown_item(self, make_engine):
        with pytest.raises(NotFoundError):
            make_engine().classify("missing-id", "text")

    def test_errored_item_cannot_be_classified_directly(self, make_item, make_engine):
        item = make_item(status="error")

        with pytest.raises(InvalidStateError):
            make_engine().classify(item.id, item.content)


class TestClassifyRetries:
    """Test retry and permanent failure handling."""

    def test_three_failures_move_item_to_error(self, db, make_item, failing_engine, load_item):
        """Scenario C: three consecutive provider failures."""
        item = make_item(status="processing")

        with pytest.raises(ClassificationError) as exc_info:
            failing_engine.classify(item.id, item.content)

        assert exc_info.value.item_id == item.id
        assert isinstance(exc_info.value.last_error, ProviderError)
        assert len(failing_engine.provider.calls) == 3

        stored = load_item(item.id)
        classification = Classification.from_blob(stored.ai_classification)
        assert stored.status == ItemStatus.ERROR.value
        assert classification.processing_meta.retry_count == 3
        assert classification.processing_meta.failed_at is not None
        assert classification.error == "Request timed out"

        dead_letters = _dead_letters(db)
        assert len(dead_letters) == 1
        assert dead_letters[0].payload["inbox_item_id"] == item.id
        assert dead_letters[0].retry_count == 3
        assert _audits(db, item.id) == []

    def test_transient_failure_then_success(self, make_item, make_engine, payload, load_item):
        item = make_item(status="processing")
        engine = make_engine(ProviderError("connection reset"), payload(confidence=0.9))

        engine.classify(item.id, item.content)

        stored = load_item(item.id)
        meta = Classification.from_blob(stored.ai_classification).processing_meta
        assert len(engine.provider.calls) == 2
        assert stored.status == ItemStatus.REVIEWED.value
        assert meta.last_error is None
        assert meta.next_retry_at is None

    def test_malformed_payload_counts_as_failed_attempt(self, make_item, make_engine, payload, load_item):
        item = make_item(status="processing")
        engine = make_engine("[]", "not json", payload(confidence=0.3))

        engine.classify(item.id, item.content)

        assert len(engine.provider.calls) == 3
        assert load_item(item.id).status == ItemStatus.PENDING.value

    def test_shutdown_during_backoff_releases_item(self, db, make_item, make_engine, load_item):
        item = make_item(status="processing")
        shutdown = threading.Event()
        shutdown.set()
        engine = make_engine(ProviderError("timeout"), shutdown_event=shutdown)

        with pytest.raises(ClassificationCancelled):
            engine.classify(item.id, item.content)

        stored = load_item(item.id)
        meta = Classification.from_blob(stored.ai_classification).processing_meta
        assert len(engine.provider.calls) == 1
        assert stored.status == ItemStatus.PENDING.value
        assert meta.retry_count == 0
        assert meta.last_error == "Cancelled at shutdown"
        assert _dead_letters(db) == []
        assert engine.ledger.due_for_retry(now=utcnow() + timedelta(seconds=1)) == [item.id]
        assert [i.id for i in needs_review(db, item.user_id)] == [item.id]

    def test_cancelled_item_is_classified_on_next_due_pass(self, make_item, make_engine, payload, load_item):
        item = make_item(status="processing")
        shutdown = threading.Event()
        shutdown.set()
        with pytest.raises(ClassificationCancelled):
            make_engine(ProviderError("timeout"), shutdown_event=shutdown).classify(item.id, item.content)

        count = make_engine(payload(confidence=0.9)).process_due_retries()

        assert count == 1
        assert load_item(item.id).status == ItemStatus.REVIEWED.value

    def test_item_disposed_while_in_flight_keeps_human_status(self, db, make_item, make_engine, payload, load_item):
        """A reviewer archiving the item mid-classification wins; the result and audit are still stored."""
        item = make_item(status="processing")
        engine = make_engine(payload(confidence=0.9))
        answer = engine.provider.complete_json

        def archive_then_answer(system_prompt, user_message):
            with db.session() as session:
                session.get(InboxItem, item.id).status = ItemStatus.ARCHIVED.value
            return answer(system_prompt, user_message)

        engine.provider.complete_json = archive_then_answer

        engine.classify(item.id, item.content)

        stored = load_item(item.id)
        assert stored.status == ItemStatus.ARCHIVED.value
        assert Classification.from_blob(stored.ai_classification).confidence == 0.9
        assert len(_audits(db, item.id)) == 1


class TestEntryPoints:
    """Test background, reclassify and due-retry entry points."""

    def test_classify_in_background_swallows_permanent_failure(self, make_item, failing_engine, load_item):
        item = make_item(status="processing")

        failing_engine.classify_in_background(item.id)

        assert load_item(item.id).status == ItemStatus.ERROR.value

    def test_classify_in_background_unknown_item_is_logged(self, make_engine):
        make_engine().classify_in_background("missing-id")

    def test_classify_in_background_passes_source(self, make_item, make_engine):
        item = make_item(status="processing", source="email")
        engine = make_engine()

        engine.classify_in_background(item.id)

        assert "Source: email" in engine.provider.calls[0]

    def test_reclassify_resets_errored_item(self, make_item, make_engine, payload, failing_engine, load_item):
        item = make_item(status="processing")
        with pytest.raises(ClassificationError):
            failing_engine.classify(item.id, item.content)

        make_engine(payload(confidence=0.95)).reclassify(item.id)

        stored = load_item(item.id)
        meta = Classification.from_blob(stored.ai_classification).processing_meta
        assert stored.status == ItemStatus.REVIEWED.value
        assert meta.retry_count == 0

    def test_reclassify_reviewed_item(self, make_item, make_engine, payload, blob, load_item):
        item = make_item(status="reviewed", ai_classification=blob(confidence=0.9, auto_filed=True))

        make_engine(payload(category="meeting", confidence=0.3)).reclassify(item.id)

        stored = load_item(item.id)
        assert stored.status == ItemStatus.PENDING.value
        assert Classification.from_blob(stored.ai_classification).category == "meeting"

    def test_process_due_retries(self, make_item, make_engine, payload, blob, load_item):
        due = blob()
        due.pop("confidence")
        due["processing_meta"].update({
            "retry_count": 1,
            "last_error": "timeout",
            "next_retry_at": (utcnow() - timedelta(minutes=1)).isoformat(),
        })
        not_yet = blob()
        not_yet.pop("confidence")
        not_yet["processing_meta"].update({
            "retry_count": 1,
            "next_retry_at": (utcnow() + timedelta(hours=1)).isoformat(),
        })
        due_item = make_item(status="pending", ai_classification=due)
        later_item = make_item(status="pending", ai_classification=not_yet)

        count = make_engine(payload(confidence=0.9)).process_due_retries()

        assert count == 1
        assert load_item(due_item.id).status == ItemStatus.REVIEWED.value
        assert load_item(later_item.id).status == ItemStatus.PENDING.value


class TestEngineHelpers:

    def test_user_context_lists_areas_and_active_projects(self, db, user, make_engine):
        with db.session() as session:
            session.add_all([
                Area(user_id=user.id, name="Health"),
                Project(user_id=user.id, name="Launch", status="active"),
                Project(user_id=user.id, name="Old site", status="completed"),
            ])

        context = make_engine().get_user_context(user.id)

        assert context.areas == ["Health"]
        assert context.projects == ["Launch"]

    def test_mark_processing_started_is_idempotent(self, make_item, make_engine, load_item):
        item = make_item(status="pending")
        engine = make_engine()

        engine.mark_processing_started(item.id)
        first = Classification.from_blob(load_item(item.id).ai_classification).processing_meta.started_at
        engine.mark_processing_started(item.id)
        second = Classification.from_blob(load_item(item.id).ai_classification).processing_meta.started_at

        assert load_item(item.id).status == ItemStatus.PROCESSING.value
        assert first == second
