"""
Unit tests for swipe verdicts and their undo.
"""

import pytest

from inbox_triage.classification.schemas import (
    ActionPriority,
    ItemStatus,
    ReviewAction,
    SwipeDirection,
    UserFeedback,
)
from inbox_triage.db.models import ClassificationAudit
from inbox_triage.errors import InvalidStateError, NotFoundError
from inbox_triage.inbox.queues import needs_review
from inbox_triage.review.swipe import apply_verdict, undo


def _audit(db, item_id):
    with db.session() as session:
        return session.query(ClassificationAudit).filter(ClassificationAudit.inbox_item_id == item_id).one()


@pytest.fixture
def classified_item(make_item, make_engine, payload, load_item):
    """A low-confidence item classified through the engine, so it has an audit row."""
    item = make_item(content="Call Bob tomorrow", status="processing")
    make_engine(payload(category="action", confidence=0.4)).classify(item.id, item.content)
    return load_item(item.id)


class TestVerdicts:

    def test_agree_files_item(self, db, user, classified_item, load_item):
        result = apply_verdict(db, SwipeDirection.RIGHT, classified_item.id, "session-1", user.id)

        stored = load_item(classified_item.id)
        feedback = UserFeedback.from_blob(stored.user_feedback)
        assert result.action == ReviewAction.AGREE
        assert result.message == "Filed as action"
        assert result.previous_state.status == ItemStatus.PENDING
        assert stored.status == ItemStatus.REVIEWED.value
        assert stored.reviewed_at is not None
        assert feedback.agreed is True
        assert feedback.session_id == "session-1"

        audit = _audit(db, classified_item.id)
        assert audit.user_action == "agree"
        assert audit.review_type == "daily_swipe"
        assert audit.session_id == "session-1"
        assert audit.user_reviewed_at is not None

    def test_disagree_leaves_status_for_correction_flow(self, db, user, classified_item, load_item):
        result = apply_verdict(db, "left", classified_item.id, "session-1", user.id)

        stored = load_item(classified_item.id)
        assert result.action == ReviewAction.DISAGREE
        assert result.open_modal == "correction"
        assert stored.status == ItemStatus.PENDING.value
        assert UserFeedback.from_blob(stored.user_feedback).needs_correction is True
        assert [i.id for i in needs_review(db, user.id)] == [classified_item.id]
        assert _audit(db, classified_item.id).user_action is None

    def test_urgent_synthesizes_action(self, db, user, make_item, blob, load_item):
        """Scenario D: no extracted actions, so the content becomes one urgent action."""
        item = make_item(content="Call Bob tomorrow", ai_classification=blob(confidence=0.3))

        apply_verdict(db, SwipeDirection.UP, item.id, "session-1", user.id)

        stored = load_item(item.id)
        assert stored.status == ItemStatus.REVIEWED.value
        assert len(stored.extracted_actions) == 1
        assert stored.extracted_actions[0]["description"] == "Call Bob tomorrow"
        assert stored.extracted_actions[0]["priority"] == "urgent"
        assert stored.extracted_actions[0]["confidence"] == 1.0
        assert UserFeedback.from_blob(stored.user_feedback).marked_urgent is True

    def test_urgent_truncates_long_content(self, db, user, make_item, blob, load_item):
        item = make_item(content="z" * 150, ai_classification=blob(confidence=0.3))

        apply_verdict(db, SwipeDirection.UP, item.id, "session-1", user.id)

        assert load_item(item.id).extracted_actions[0]["description"] == "z" * 100 + "..."

    def test_urgent_promotes_first_existing_action(self, db, user, make_item, blob, load_item):
        item = make_item(
            ai_classification=blob(confidence=0.3),
            extracted_actions=[
                {"id": "a1", "description": "Call Bob", "priority": "low"},
                {"id": "a2", "description": "Send invoice"},
            ],
        )

        apply_verdict(db, SwipeDirection.UP, item.id, "session-1", user.id)

        actions = load_item(item.id).extracted_actions
        assert actions[0]["priority"] == ActionPriority.URGENT.value
        assert actions[1]["priority"] == ActionPriority.NORMAL.value

    def test_hide_archives(self, db, user, classified_item, load_item):
        result = apply_verdict(db, SwipeDirection.DOWN, classified_item.id, "session-1", user.id)

        stored = load_item(classified_item.id)
        assert result.message == "Item archived"
        assert stored.status == ItemStatus.ARCHIVED.value
        assert stored.archived_at is not None
        assert UserFeedback.from_blob(stored.user_feedback).hidden is True

    def test_errored_item_cannot_be_agreed(self, db, user, make_item):
        item = make_item(status="error")

        with pytest.raises(InvalidStateError):
            apply_verdict(db, SwipeDirection.RIGHT, item.id, "session-1", user.id)

    def test_other_users_item(self, db, other_user, classified_item):
        with pytest.raises(NotFoundError):
            apply_verdict(db, SwipeDirection.RIGHT, classified_item.id, "session-1", other_user.id)


class TestUndo:

    def test_hide_then_undo(self, db, user, classified_item, load_item):
        """Scenario E: archived goes back to its prior status and archived_at is cleared."""
        result = apply_verdict(db, SwipeDirection.DOWN, classified_item.id, "session-1", user.id)

        undo(db, classified_item.id, result.previous_state, user.id)

        stored = load_item(classified_item.id)
        assert stored.status == ItemStatus.PENDING.value
        assert stored.archived_at is None
        assert stored.user_feedback is None

    def test_agree_then_undo_round_trip(self, db, user, classified_item, load_item):
        result = apply_verdict(db, SwipeDirection.RIGHT, classified_item.id, "session-1", user.id)

        undo(db, classified_item.id, result.previous_state, user.id)

        stored = load_item(classified_item.id)
        assert stored.status == classified_item.status
        assert stored.reviewed_at is None
        assert stored.extracted_actions == classified_item.extracted_actions
        assert stored.user_feedback is None

        audit = _audit(db, classified_item.id)
        assert audit.user_action is None
        assert audit.user_reviewed_at is None

    def test_urgent_undo_restores_actions(self, db, user, make_item, blob, load_item):
        actions = [{"id": "a1", "description": "Call Bob", "priority": "low", "confidence": 0.7}]
        item = make_item(ai_classification=blob(confidence=0.3), extracted_actions=actions)
        result = apply_verdict(db, SwipeDirection.UP, item.id, "session-1", user.id)

        undo(db, item.id, result.previous_state, user.id)

        assert load_item(item.id).extracted_actions == actions
