"""
Unit tests for the retry ledger.
"""

from datetime import datetime, timedelta

import pytest

from inbox_triage.classification.ledger import RetryLedger
from inbox_triage.classification.schemas import Classification, ItemStatus
from inbox_triage.db.models import FailedWebhook
from inbox_triage.errors import InvalidStateError, NotFoundError


NOW = datetime(2026, 3, 2, 9, 0, 0)


@pytest.fixture
def ledger(db):
    return RetryLedger(db, max_retries=3, retry_delays=[1.0, 5.0, 30.0], clock=lambda: NOW)


def _meta(item):
    return Classification.from_blob(item.ai_classification).processing_meta


def _dead_letters(db):
    with db.session() as session:
        return session.query(FailedWebhook).all()


class TestRecordFailure:
    """Test retry scheduling and exhaustion."""

    def test_first_failure_schedules_retry(self, db, ledger, make_item, load_item):
        item = make_item(status="processing")

        decision = ledger.record_failure(item.id, "timeout")

        stored = load_item(item.id)
        assert decision.should_retry is True
        assert decision.next_retry_at == NOW + timedelta(seconds=1)
        assert stored.status == ItemStatus.PENDING.value
        assert _meta(stored).retry_count == 1
        assert _meta(stored).last_error == "timeout"
        assert _dead_letters(db) == []

    def test_backoff_follows_stored_retry_count(self, ledger, make_item):
        item = make_item(status="processing")

        ledger.record_failure(item.id, "timeout")
        decision = ledger.record_failure(item.id, "timeout again")

        assert decision.next_retry_at == NOW + timedelta(seconds=5)

    def test_retry_count_climbs_until_exhaustion(self, db, ledger, make_item, load_item):
        item = make_item(status="processing")

        for expected in (1, 2, 3):
            decision = ledger.record_failure(item.id, "timeout")
            stored = load_item(item.id)
            assert decision.should_retry is True
            assert stored.status == ItemStatus.PENDING.value
            assert _meta(stored).retry_count == expected
            assert _dead_letters(db) == []

        decision = ledger.record_failure(item.id, "timeout")

        assert decision.should_retry is False
        assert load_item(item.id).status == ItemStatus.ERROR.value
        assert len(_dead_letters(db)) == 1

    def test_last_delay_repeats(self, ledger):
        assert ledger.retry_delay(0) == 1.0
        assert ledger.retry_delay(2) == 30.0
        assert ledger.retry_delay(7) == 30.0

    def test_exhaustion_moves_to_error_and_dead_letters(self, db, ledger, make_item, load_item):
        item = make_item(content="Renew passport", status="processing", source="email")

        decision = ledger.record_failure(item.id, "Request timed out", current_retry_count=3)

        stored = load_item(item.id)
        classification = Classification.from_blob(stored.ai_classification)
        assert decision.should_retry is False
        assert decision.next_retry_at is None
        assert stored.status == ItemStatus.ERROR.value
        assert classification.error == "Request timed out"
        assert classification.processing_meta.failed_at == NOW
        assert classification.processing_meta.next_retry_at is None

        dead_letters = _dead_letters(db)
        assert len(dead_letters) == 1
        assert dead_letters[0].type == "classify"
        assert dead_letters[0].payload == {
            "inbox_item_id": item.id,
            "content": "Renew passport",
            "source": "email",
        }
        assert dead_letters[0].max_retries == 3

    def test_dead_letter_content_truncated(self, db, ledger, make_item):
        item = make_item(content="x" * 2000, status="processing")

        ledger.record_failure(item.id, "boom", current_retry_count=3)

        assert len(_dead_letters(db)[0].payload["content"]) == 500

    def test_disposed_item_keeps_status(self, db, ledger, make_item, load_item):
        item = make_item(status="archived")

        ledger.record_failure(item.id, "boom", current_retry_count=3)

        assert load_item(item.id).status == ItemStatus.ARCHIVED.value
        assert len(_dead_letters(db)) == 1

    def test_unknown_item(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.record_failure("missing-id", "boom")


class TestRelease:
    """Test handing abandoned attempts back to the retry schedule."""

    def test_interrupted_item_returns_to_pending_without_counting(self, db, ledger, make_item, load_item):
        item = make_item(status="processing")
        ledger.record_failure(item.id, "timeout")
        ledger.release_interrupted(item.id, "Cancelled at shutdown")

        stored = load_item(item.id)
        assert stored.status == ItemStatus.PENDING.value
        assert _meta(stored).retry_count == 1
        assert _meta(stored).next_retry_at == NOW
        assert _meta(stored).last_error == "Cancelled at shutdown"
        assert ledger.due_for_retry() == [item.id]
        assert _dead_letters(db) == []

    def test_interrupted_disposed_item_keeps_status(self, ledger, make_item, load_item):
        item = make_item(status="archived")

        ledger.release_interrupted(item.id, "Cancelled at shutdown")

        assert load_item(item.id).status == ItemStatus.ARCHIVED.value

    def test_release_unknown_item(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.release_interrupted("missing-id", "Cancelled at shutdown")

    def test_stale_processing_items_reclaimed(self, ledger, make_item, blob, load_item):
        lost = make_item(status="processing", created_at=NOW - timedelta(hours=1))
        running = blob()
        running["processing_meta"]["started_at"] = (NOW - timedelta(minutes=1)).isoformat()
        in_flight = make_item(status="processing", created_at=NOW - timedelta(hours=1), ai_classification=running)
        fresh = make_item(status="processing", created_at=NOW - timedelta(minutes=1))

        released = ledger.reclaim_stale()

        assert released == [lost.id]
        assert load_item(lost.id).status == ItemStatus.PENDING.value
        assert load_item(in_flight.id).status == ItemStatus.PROCESSING.value
        assert load_item(fresh.id).status == ItemStatus.PROCESSING.value
        assert ledger.due_for_retry() == [lost.id]


class TestResetForRetry:

    def test_error_item_returns_to_pending(self, ledger, make_item, load_item):
        item = make_item(status="processing")
        ledger.record_failure(item.id, "boom", current_retry_count=3)

        ledger.reset_for_retry(item.id)

        stored = load_item(item.id)
        assert stored.status == ItemStatus.PENDING.value
        assert _meta(stored).retry_count == 0
        assert _meta(stored).last_error is None

    def test_only_error_items_can_be_reset(self, ledger, make_item):
        item = make_item(status="pending")

        with pytest.raises(InvalidStateError):
            ledger.reset_for_retry(item.id)


class TestDueForRetry:
    """Test selection of items whose retry time has passed."""

    def _scheduled(self, make_item, blob, next_retry_at, retry_count=1, status="pending"):
        data = blob()
        data.pop("confidence")
        data["processing_meta"].update({"retry_count": retry_count, "next_retry_at": next_retry_at.isoformat()})
        return make_item(status=status, ai_classification=data)

    def test_due_items_selected(self, ledger, make_item, blob):
        due = self._scheduled(make_item, blob, NOW - timedelta(seconds=1))
        self._scheduled(make_item, blob, NOW + timedelta(minutes=5))
        make_item(status="pending")

        assert ledger.due_for_retry() == [due.id]

    def test_exhausted_and_non_pending_skipped(self, ledger, make_item, blob):
        self._scheduled(make_item, blob, NOW - timedelta(seconds=1), retry_count=3)
        self._scheduled(make_item, blob, NOW - timedelta(seconds=1), status="archived")

        assert ledger.due_for_retry() == []

    def test_limit(self, ledger, make_item, blob):
        for _ in range(3):
            self._scheduled(make_item, blob, NOW - timedelta(seconds=1))

        assert len(ledger.due_for_retry(limit=2)) == 2
