"""
Inbox item status state machine.

    pending ──► processing ──► reviewed | pending (retry) | error
    pending ──► error            (retry ledger exhausted after a scheduled retry)
    pending | processing | reviewed ──► archived
    error ──► pending            (manual reset only)
    archived ──► pending         (restore)
    reviewed | archived ──► processing   (re-classification)

Every writer (engine, retry ledger, review layer, sweeps, filing) moves an
item through ``transition()``. There is no database-level lock, so this module
is the only place the ``reviewed ⇒ auto_filed ∨ user_feedback`` rule is
checked.
"""

from datetime import datetime
from typing import Dict, FrozenSet, Optional

import structlog

from inbox_triage.classification.schemas import Classification, ItemStatus, UserFeedback
from inbox_triage.db.models import InboxItem, utcnow
from inbox_triage.errors import InvalidStateError


logger = structlog.get_logger(__name__)

S = ItemStatus

ALLOWED_TRANSITIONS: Dict[ItemStatus, FrozenSet[ItemStatus]] = {
    S.PENDING: frozenset({S.PENDING, S.PROCESSING, S.REVIEWED, S.ARCHIVED, S.ERROR}),
    S.PROCESSING: frozenset({S.PROCESSING, S.PENDING, S.REVIEWED, S.ERROR, S.ARCHIVED}),
    S.REVIEWED: frozenset({S.REVIEWED, S.PROCESSING, S.ARCHIVED}),
    S.ARCHIVED: frozenset({S.ARCHIVED, S.PENDING, S.PROCESSING}),
    S.ERROR: frozenset({S.ERROR, S.PENDING}),
}

ACTIVE_STATUSES = (S.PENDING.value, S.PROCESSING.value)


def can_transition(current: ItemStatus, target: ItemStatus) -> bool:
    return ItemStatus(target) in ALLOWED_TRANSITIONS[ItemStatus(current)]


def check_reviewed_invariant(
    classification: Optional[Classification],
    feedback: Optional[UserFeedback],
) -> bool:
    """``reviewed`` requires a machine auto-file or a human feedback record."""
    return bool(classification is not None and classification.auto_filed) or feedback is not None


def assert_transition_allowed(
    current: ItemStatus,
    target: ItemStatus,
    classification: Optional[Classification] = None,
    feedback: Optional[UserFeedback] = None,
) -> None:
    """
    Validate a status change.

    Raises:
        InvalidStateError: Illegal edge, or ``reviewed`` without auto-file/feedback
    """
    if not can_transition(current, target):
        raise InvalidStateError(
            f"Invalid status transition: {ItemStatus(current).value} -> {ItemStatus(target).value}"
        )
    if ItemStatus(target) == S.REVIEWED and not check_reviewed_invariant(classification, feedback):
        raise InvalidStateError(
            "Item cannot be reviewed without auto-filing or user feedback"
        )


def apply_status(item: InboxItem, target: ItemStatus, now: Optional[datetime] = None) -> None:
    """Set the status column and the timestamp that goes with it."""
    now = now or utcnow()
    target = ItemStatus(target)
    previous = item.status

    item.status = target.value
    if target == S.REVIEWED and previous != S.REVIEWED.value:
        item.reviewed_at = now
    elif target == S.ARCHIVED and previous != S.ARCHIVED.value:
        item.archived_at = now
    elif target == S.PENDING and previous == S.ARCHIVED.value:
        item.archived_at = None


def transition(
    item: InboxItem,
    target: ItemStatus,
    now: Optional[datetime] = None,
) -> None:
    """
    Validate against the item's current blobs, then apply.

    Callers must assign ``ai_classification`` / ``user_feedback`` before
    calling so the reviewed check sees the values being written.
    """
    assert_transition_allowed(
        ItemStatus(item.status),
        target,
        classification=Classification.from_blob(item.ai_classification),
        feedback=UserFeedback.from_blob(item.user_feedback),
    )
    apply_status(item, target, now)


def restore_snapshot(
    item: InboxItem,
    status: ItemStatus,
    reviewed_at: Optional[datetime],
    archived_at: Optional[datetime],
) -> None:
    """
    Put an item back into a previously recorded state (undo).

    Edge rules do not apply here, but the reviewed invariant still does.

    Raises:
        InvalidStateError: Restoring ``reviewed`` would leave it without auto-file/feedback
    """
    status = ItemStatus(status)
    if status == S.REVIEWED and not check_reviewed_invariant(
        Classification.from_blob(item.ai_classification),
        UserFeedback.from_blob(item.user_feedback),
    ):
        raise InvalidStateError("Cannot restore reviewed status without auto-filing or user feedback")

    item.status = status.value
    item.reviewed_at = reviewed_at if status == S.REVIEWED else None
    item.archived_at = archived_at if status == S.ARCHIVED else None

    logger.debug("item_status_restored", item_id=item.id, status=status.value)
