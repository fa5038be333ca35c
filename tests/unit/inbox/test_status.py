"""
Unit tests for the item status state machine.
"""

from datetime import datetime

import pytest

from inbox_triage.classification.schemas import ItemStatus
from inbox_triage.db.models import InboxItem
from inbox_triage.errors import InvalidStateError
from inbox_triage.inbox.status import (
    apply_status,
    assert_transition_allowed,
    can_transition,
    restore_snapshot,
    transition,
)


NOW = datetime(2026, 5, 4, 12, 0, 0)
S = ItemStatus


def _item(status, ai_classification=None, user_feedback=None, **fields):
    return InboxItem(
        id="item-1",
        user_id="user-1",
        status=status,
        ai_classification=ai_classification,
        user_feedback=user_feedback,
        **fields,
    )


class TestTransitions:

    @pytest.mark.parametrize("current,target", [
        (S.PENDING, S.PROCESSING),
        (S.PENDING, S.ERROR),
        (S.PROCESSING, S.PENDING),
        (S.PROCESSING, S.ERROR),
        (S.REVIEWED, S.ARCHIVED),
        (S.REVIEWED, S.PROCESSING),
        (S.ARCHIVED, S.PENDING),
        (S.ERROR, S.PENDING),
    ])
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize("current,target", [
        (S.ERROR, S.PROCESSING),
        (S.ERROR, S.ARCHIVED),
        (S.ERROR, S.REVIEWED),
        (S.REVIEWED, S.PENDING),
        (S.ARCHIVED, S.REVIEWED),
    ])
    def test_forbidden(self, current, target):
        assert not can_transition(current, target)
        with pytest.raises(InvalidStateError, match="Invalid status transition"):
            assert_transition_allowed(current, target)

    def test_self_transitions_allowed(self):
        assert all(can_transition(status, status) for status in ItemStatus)

    def test_accepts_string_values(self):
        assert can_transition("pending", "processing")


class TestReviewedInvariant:
    """``reviewed`` needs an auto-filed classification or human feedback."""

    def test_reviewed_without_reason_rejected(self, blob):
        item = _item("pending", ai_classification=blob(auto_filed=False))

        with pytest.raises(InvalidStateError, match="without auto-filing or user feedback"):
            transition(item, S.REVIEWED, NOW)

    def test_auto_filed_allows_reviewed(self, blob):
        item = _item("processing", ai_classification=blob(auto_filed=True))

        transition(item, S.REVIEWED, NOW)

        assert item.status == "reviewed"
        assert item.reviewed_at == NOW

    def test_feedback_allows_reviewed(self):
        item = _item("pending", user_feedback={"agreed": True})

        transition(item, S.REVIEWED, NOW)

        assert item.status == "reviewed"


class TestApplyStatus:

    def test_archive_stamps_archived_at(self):
        item = _item("pending")

        apply_status(item, S.ARCHIVED, NOW)

        assert item.archived_at == NOW

    def test_restore_from_archive_clears_archived_at(self):
        item = _item("archived", archived_at=NOW)

        apply_status(item, S.PENDING, NOW)

        assert item.archived_at is None

    def test_reviewed_at_kept_on_repeat(self):
        earlier = datetime(2026, 5, 1)
        item = _item("reviewed", reviewed_at=earlier)

        apply_status(item, S.REVIEWED, NOW)

        assert item.reviewed_at == earlier


class TestRestoreSnapshot:

    def test_restores_any_edge(self):
        item = _item("archived", archived_at=NOW)

        restore_snapshot(item, S.PROCESSING, reviewed_at=None, archived_at=None)

        assert item.status == "processing"
        assert item.archived_at is None

    def test_reviewed_restore_checks_invariant(self):
        item = _item("archived")

        with pytest.raises(InvalidStateError):
            restore_snapshot(item, S.REVIEWED, reviewed_at=NOW, archived_at=None)

    def test_reviewed_restore_with_feedback(self):
        item = _item("archived", user_feedback={"agreed": True})

        restore_snapshot(item, S.REVIEWED, reviewed_at=NOW, archived_at=None)

        assert item.reviewed_at == NOW
