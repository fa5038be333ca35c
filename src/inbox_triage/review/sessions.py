"""
Review session bookkeeping.

A session is a bounded-lifetime batch of item ids presented for swipe review.
At most one session per user is active (not completed and not expired). The
action log is append-only: undo flags an entry instead of removing it, so each
entry can be undone once.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from inbox_triage.classification.schemas import (
    STAT_FIELD_BY_ACTION,
    ItemStatus,
    PreviousState,
    ReviewAction,
    SessionAction,
    SessionStats,
    SwipeDirection,
    SwipeResult,
)
from inbox_triage.config import settings
from inbox_triage.db.database import Database
from inbox_triage.db.models import InboxItem, ReviewSession, utcnow
from inbox_triage.errors import InvalidStateError, NoActionToUndo, NotFoundError
from inbox_triage.inbox.service import get_owned_item
from inbox_triage.inbox.status import ACTIVE_STATUSES
from inbox_triage.review.swipe import apply_verdict_to_item, undo_item


logger = structlog.get_logger(__name__)


def _stats(review_session: ReviewSession) -> SessionStats:
    return SessionStats.model_validate(review_session.stats or {})


def _actions(review_session: ReviewSession) -> List[Dict[str, Any]]:
    return list(review_session.actions or [])


def get_owned_session(session: Session, user_id: str, session_id: str) -> ReviewSession:
    """
    Raises:
        NotFoundError: Unknown session or owned by another user
    """
    review_session = session.get(ReviewSession, session_id)
    if review_session is None or review_session.user_id != user_id:
        raise NotFoundError("Session not found")
    return review_session


def is_active(review_session: ReviewSession, now: datetime) -> bool:
    return review_session.completed_at is None and review_session.expires_at > now


def _find_active(session: Session, user_id: str, now: datetime) -> Optional[ReviewSession]:
    return (
        session.query(ReviewSession)
        .filter(ReviewSession.user_id == user_id)
        .filter(ReviewSession.completed_at.is_(None))
        .filter(ReviewSession.expires_at > now)
        .order_by(ReviewSession.started_at.desc())
        .first()
    )


def _final_stats(review_session: ReviewSession, now: datetime) -> SessionStats:
    """Stats recomputed from the entries that were not undone."""
    stats = SessionStats(total_time_ms=int((now - review_session.started_at).total_seconds() * 1000))
    for entry in _actions(review_session):
        if entry.get("undone"):
            continue
        field = STAT_FIELD_BY_ACTION[ReviewAction(entry["action"])]
        setattr(stats, field, getattr(stats, field) + 1)
    return stats


# ============================================================================
# SESSION LIFECYCLE
# ============================================================================

def get_active_session(db: Database, user_id: str) -> Optional[ReviewSession]:
    with db.session() as session:
        return _find_active(session, user_id, utcnow())


def get_or_create_session(db: Database, user_id: str, force_new: bool = False) -> ReviewSession:
    """
    Resume the active session, or start a new one.

    Expired sessions are completed with ``stats.expired``. With ``force_new``
    the active session is completed first so only one stays active.
    """
    now = utcnow()

    with db.session() as session:
        existing = _find_active(session, user_id, now)
        if existing is not None and not force_new:
            existing.last_activity_at = now
            return existing

        if existing is not None:
            existing.stats = _final_stats(existing, now).to_blob()
            existing.completed_at = now

        expired = (
            session.query(ReviewSession)
            .filter(ReviewSession.user_id == user_id)
            .filter(ReviewSession.completed_at.is_(None))
            .filter(ReviewSession.expires_at <= now)
            .all()
        )
        for stale in expired:
            stats = _stats(stale)
            stats.expired = True
            stale.stats = stats.to_blob()
            stale.completed_at = now

        item_ids = [
            row.id for row in (
                session.query(InboxItem.id)
                .filter(InboxItem.user_id == user_id)
                .filter(InboxItem.status.in_(ACTIVE_STATUSES))
                .filter(InboxItem.ai_classification.is_not(None))
                .order_by(InboxItem.status.asc(), InboxItem.created_at.asc())
                .all()
            )
        ]

        review_session = ReviewSession(
            user_id=user_id,
            item_ids=item_ids,
            current_index=0,
            actions=[],
            stats=SessionStats().to_blob(),
            started_at=now,
            last_activity_at=now,
            expires_at=now + timedelta(hours=settings.review_session_ttl_hours),
        )
        session.add(review_session)
        session.flush()

    logger.info(
        "review_session_started",
        session_id=review_session.id,
        user_id=user_id,
        items_count=len(item_ids),
        expired_sessions=len(expired),
        forced=force_new,
    )
    return review_session


def session_items(db: Database, review_session: ReviewSession) -> List[InboxItem]:
    """The session's items in session order; items deleted since are skipped."""
    if not review_session.item_ids:
        return []

    with db.session() as session:
        items = (
            session.query(InboxItem)
            .filter(InboxItem.id.in_(review_session.item_ids))
            .filter(InboxItem.user_id == review_session.user_id)
            .all()
        )

    by_id = {item.id: item for item in items}
    return [by_id[item_id] for item_id in review_session.item_ids if item_id in by_id]


def update_session_progress(
    db: Database,
    user_id: str,
    session_id: str,
    current_index: Optional[int] = None,
) -> ReviewSession:
    """Auto-save of the client's position."""
    with db.session() as session:
        review_session = get_owned_session(session, user_id, session_id)
        if current_index is not None:
            review_session.current_index = max(0, current_index)
        review_session.last_activity_at = utcnow()
        return review_session


def complete_session(db: Database, user_id: str, session_id: str) -> ReviewSession:
    """
    Finish a session with stats recomputed from its non-undone actions.

    Completing an already completed session returns it unchanged.
    """
    now = utcnow()

    with db.session() as session:
        review_session = get_owned_session(session, user_id, session_id)
        if review_session.completed_at is not None:
            return review_session

        stats = _final_stats(review_session, now)
        review_session.stats = stats.to_blob()
        review_session.completed_at = now

    logger.info("review_session_completed", session_id=session_id, user_id=user_id, **stats.to_blob())
    return review_session


def session_history(db: Database, user_id: str, limit: int = 10) -> List[ReviewSession]:
    with db.session() as session:
        return (
            session.query(ReviewSession)
            .filter(ReviewSession.user_id == user_id)
            .filter(ReviewSession.completed_at.is_not(None))
            .order_by(ReviewSession.completed_at.desc())
            .limit(limit)
            .all()
        )


# ============================================================================
# ACTION LOG
# ============================================================================

def append_action(review_session: ReviewSession, action: SessionAction, now: Optional[datetime] = None) -> None:
    """Append to the log, bump the matching stat and advance the cursor."""
    stats = _stats(review_session)
    field = STAT_FIELD_BY_ACTION[ReviewAction(action.action)]
    setattr(stats, field, getattr(stats, field) + 1)

    review_session.actions = _actions(review_session) + [action.model_dump(mode="json")]
    review_session.stats = stats.to_blob()
    review_session.current_index = (review_session.current_index or 0) + 1
    review_session.last_activity_at = now or utcnow()


def _last_open_entry(review_session: ReviewSession, item_id: str) -> Optional[int]:
    actions = _actions(review_session)
    for index in range(len(actions) - 1, -1, -1):
        if actions[index].get("item_id") == item_id and not actions[index].get("undone"):
            return index
    return None


def flag_action_undone(review_session: ReviewSession, item_id: str, now: Optional[datetime] = None) -> SessionAction:
    """
    Flag the item's latest open entry as undone and roll its stat back.

    Raises:
        NoActionToUndo: The item has no entry left to undo
    """
    index = _last_open_entry(review_session, item_id)
    if index is None:
        raise NoActionToUndo("No action to undo")

    actions = _actions(review_session)
    entry = dict(actions[index])
    entry["undone"] = True
    actions[index] = entry

    stats = _stats(review_session)
    field = STAT_FIELD_BY_ACTION[ReviewAction(entry["action"])]
    setattr(stats, field, max(0, getattr(stats, field) - 1))

    review_session.actions = actions
    review_session.stats = stats.to_blob()
    review_session.current_index = max(0, (review_session.current_index or 0) - 1)
    review_session.last_activity_at = now or utcnow()

    return SessionAction.model_validate(entry)


def record_session_action(db: Database, session_id: str, action: SessionAction) -> None:
    """
    Raises:
        NotFoundError: Unknown session
    """
    with db.session() as session:
        review_session = session.get(ReviewSession, session_id)
        if review_session is None:
            raise NotFoundError("Session not found")
        append_action(review_session, action)


def mark_action_undone(db: Database, session_id: str, item_id: str) -> SessionAction:
    """
    Raises:
        NotFoundError: Unknown session
        NoActionToUndo: No open entry for the item
    """
    with db.session() as session:
        review_session = session.get(ReviewSession, session_id)
        if review_session is None:
            raise NotFoundError("Session not found")
        return flag_action_undone(review_session, item_id)


# ============================================================================
# SWIPE ENDPOINT FLOWS
# ============================================================================

def record_swipe(
    db: Database,
    user_id: str,
    session_id: str,
    item_id: str,
    direction: SwipeDirection,
) -> SwipeResult:
    """
    Apply a verdict and log it in the session, in one transaction.

    Raises:
        NotFoundError: Unknown session or item
        InvalidStateError: Session no longer active, or status change not allowed
    """
    now = utcnow()

    with db.session() as session:
        review_session = get_owned_session(session, user_id, session_id)
        if not is_active(review_session, now):
            raise InvalidStateError("Session is no longer active")

        item = get_owned_item(session, user_id, item_id)
        result = apply_verdict_to_item(session, item, direction, session_id, now)

        append_action(review_session, SessionAction(
            item_id=item_id,
            action=result.action,
            timestamp=now,
            previous_state=result.previous_state,
        ), now)

        return result


def undo_last_action(db: Database, user_id: str, session_id: str, item_id: str) -> ItemStatus:
    """
    Undo the item's latest verdict in this session, in one transaction.

    Returns:
        The item's restored status

    Raises:
        NotFoundError: Unknown session or item
        NoActionToUndo: Nothing left to undo for the item
    """
    now = utcnow()

    with db.session() as session:
        review_session = get_owned_session(session, user_id, session_id)
        index = _last_open_entry(review_session, item_id)
        if index is None:
            raise NoActionToUndo("No action to undo")

        previous = PreviousState.model_validate(_actions(review_session)[index]["previous_state"])
        item = get_owned_item(session, user_id, item_id)
        undo_item(session, item, previous)
        flag_action_undone(review_session, item_id, now)

        return ItemStatus(item.status)
