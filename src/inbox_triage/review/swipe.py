"""
Swipe verdicts and their single-shot undo.

    right → agree    reviewed, feedback {agreed}
    left  → disagree status unchanged, feedback {needs_correction}, opens the correction flow
    up    → urgent   reviewed, first action promoted to urgent (or one synthesized)
    down  → hide     archived, feedback {hidden}

Each verdict changes the item and its audit rows in the caller's transaction
and returns a ``PreviousState`` snapshot that ``undo_item`` uses to restore
the item exactly.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from inbox_triage.classification.schemas import (
    DIRECTION_TO_ACTION,
    ActionPriority,
    Classification,
    ExtractedAction,
    ItemStatus,
    PreviousState,
    ReviewAction,
    SwipeDirection,
    SwipeResult,
    UserFeedback,
)
from inbox_triage.db.database import Database
from inbox_triage.db.models import ClassificationAudit, InboxItem, utcnow
from inbox_triage.inbox.service import get_owned_item
from inbox_triage.inbox.status import restore_snapshot, transition


logger = structlog.get_logger(__name__)

URGENT_PREVIEW_LENGTH = 100
REVIEW_TYPE_SWIPE = "daily_swipe"


def snapshot(item: InboxItem) -> PreviousState:
    """Capture everything a verdict may change."""
    return PreviousState(
        status=item.status,
        extracted_actions=[dict(a) for a in (item.extracted_actions or [])],
        reviewed_at=item.reviewed_at,
        archived_at=item.archived_at,
        user_feedback=dict(item.user_feedback) if isinstance(item.user_feedback, dict) else None,
    )


def _set_audit_verdict(session: Session, item_id: str, action: Optional[ReviewAction], **values: Any) -> None:
    data: Dict[str, Any] = {ClassificationAudit.user_action: action.value if action else None}
    data.update({getattr(ClassificationAudit, key): value for key, value in values.items()})
    (
        session.query(ClassificationAudit)
        .filter(ClassificationAudit.inbox_item_id == item_id)
        .update(data, synchronize_session=False)
    )


def _record_swipe_audit(session: Session, item: InboxItem, action: ReviewAction, session_id: str, now: datetime) -> None:
    _set_audit_verdict(
        session,
        item.id,
        action,
        review_type=REVIEW_TYPE_SWIPE,
        user_reviewed_at=now,
        session_id=session_id,
    )


def _urgent_actions(item: InboxItem) -> List[Dict[str, Any]]:
    existing = item.extracted_actions or []
    if existing:
        promoted = []
        for index, action in enumerate(existing):
            action = dict(action)
            if index == 0:
                action["priority"] = ActionPriority.URGENT.value
            else:
                action["priority"] = action.get("priority") or ActionPriority.NORMAL.value
            promoted.append(action)
        return promoted

    content = item.content or ""
    if len(content) > URGENT_PREVIEW_LENGTH:
        content = content[:URGENT_PREVIEW_LENGTH] + "..."

    return [ExtractedAction(description=content, confidence=1.0, priority=ActionPriority.URGENT).to_blob()]


# ============================================================================
# VERDICTS
# ============================================================================

def _handle_agree(session: Session, item: InboxItem, session_id: str, now: datetime) -> SwipeResult:
    previous = snapshot(item)
    classification = Classification.from_blob(item.ai_classification)

    item.user_feedback = UserFeedback(agreed=True, reviewed_at=now, session_id=session_id).to_blob()
    transition(item, ItemStatus.REVIEWED, now)
    _record_swipe_audit(session, item, ReviewAction.AGREE, session_id, now)

    category = classification.category if classification and classification.category else "reviewed"
    return SwipeResult(action=ReviewAction.AGREE, message=f"Filed as {category}", previous_state=previous)


def _handle_disagree(session: Session, item: InboxItem, session_id: str, now: datetime) -> SwipeResult:
    previous = snapshot(item)

    # Status is left alone; the correction flow decides what happens next
    item.user_feedback = UserFeedback(agreed=False, needs_correction=True, session_id=session_id).to_blob()

    return SwipeResult(
        action=ReviewAction.DISAGREE,
        message="Choose how to fix",
        open_modal="correction",
        previous_state=previous,
    )


def _handle_urgent(session: Session, item: InboxItem, session_id: str, now: datetime) -> SwipeResult:
    previous = snapshot(item)

    item.extracted_actions = _urgent_actions(item)
    item.user_feedback = UserFeedback(agreed=True, marked_urgent=True, session_id=session_id).to_blob()
    transition(item, ItemStatus.REVIEWED, now)
    _record_swipe_audit(session, item, ReviewAction.URGENT, session_id, now)

    return SwipeResult(action=ReviewAction.URGENT, message="Marked as urgent priority", previous_state=previous)


def _handle_hide(session: Session, item: InboxItem, session_id: str, now: datetime) -> SwipeResult:
    previous = snapshot(item)

    item.user_feedback = UserFeedback(agreed=False, hidden=True, session_id=session_id).to_blob()
    transition(item, ItemStatus.ARCHIVED, now)
    _record_swipe_audit(session, item, ReviewAction.HIDE, session_id, now)

    return SwipeResult(action=ReviewAction.HIDE, message="Item archived", previous_state=previous)


_HANDLERS = {
    ReviewAction.AGREE: _handle_agree,
    ReviewAction.DISAGREE: _handle_disagree,
    ReviewAction.URGENT: _handle_urgent,
    ReviewAction.HIDE: _handle_hide,
}


def apply_verdict_to_item(
    session: Session,
    item: InboxItem,
    direction: SwipeDirection,
    session_id: str,
    now: Optional[datetime] = None,
) -> SwipeResult:
    """
    Apply one verdict inside an open transaction.

    Raises:
        InvalidStateError: The verdict's status change is not allowed from the item's status
    """
    action = DIRECTION_TO_ACTION[SwipeDirection(direction)]
    result = _HANDLERS[action](session, item, session_id, now or utcnow())

    logger.info(
        "swipe_verdict_applied",
        item_id=item.id,
        action=action.value,
        previous_status=result.previous_state.status.value,
        status=item.status,
        session_id=session_id,
    )
    return result


def apply_verdict(
    db: Database,
    direction: SwipeDirection,
    item_id: str,
    session_id: str,
    user_id: str,
) -> SwipeResult:
    """
    Apply a verdict to an owned item in its own transaction.

    Raises:
        NotFoundError: Unknown item
        InvalidStateError: Status change not allowed
    """
    with db.session() as session:
        item = get_owned_item(session, user_id, item_id)
        return apply_verdict_to_item(session, item, direction, session_id)


# ============================================================================
# UNDO
# ============================================================================

def undo_item(session: Session, item: InboxItem, previous_state: PreviousState) -> None:
    """
    Restore an item to its pre-verdict snapshot inside an open transaction.

    Status and extracted actions come back exactly, verdict feedback is
    dropped, and the audit rows lose their human verdict.
    """
    item.extracted_actions = [dict(a) for a in previous_state.extracted_actions]
    item.user_feedback = dict(previous_state.user_feedback) if previous_state.user_feedback else None
    restore_snapshot(item, previous_state.status, previous_state.reviewed_at, previous_state.archived_at)

    _set_audit_verdict(session, item.id, None, user_reviewed_at=None)

    logger.info("swipe_verdict_undone", item_id=item.id, status=item.status)


def undo(db: Database, item_id: str, previous_state: PreviousState, user_id: str) -> None:
    """
    Undo a verdict on an owned item in its own transaction.

    Single-shot bookkeeping lives in the review session (``undo_last_action``).

    Raises:
        NotFoundError: Unknown item
    """
    with db.session() as session:
        item = get_owned_item(session, user_id, item_id)
        undo_item(session, item, previous_state)
