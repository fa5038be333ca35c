"""
Inbox item service: capture, listing, polling, archive and manual retry.

Every read and write is scoped to the owning user; an item owned by someone
else is reported exactly like a missing one (``NotFoundError``).
"""

from typing import Dict, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from inbox_triage.classification.ledger import RetryLedger
from inbox_triage.classification.schemas import (
    Classification,
    ClassificationResult,
    ItemStatus,
    ItemStatusView,
    ItemType,
)
from inbox_triage.db.database import Database
from inbox_triage.db.models import ClassificationAudit, InboxItem, utcnow
from inbox_triage.errors import NotFoundError
from inbox_triage.inbox.status import ACTIVE_STATUSES, transition


logger = structlog.get_logger(__name__)


def get_owned_item(session: Session, user_id: str, item_id: str) -> InboxItem:
    """
    Load an item owned by ``user_id``.

    Raises:
        NotFoundError: Unknown item or owned by another user
    """
    item = session.get(InboxItem, item_id)
    if item is None or item.user_id != user_id:
        raise NotFoundError("Item not found")
    return item


def should_classify(item_type: str, content: Optional[str]) -> bool:
    """Only text captures are sent to the provider; images and empty items wait for a human."""
    return bool(content and content.strip()) and item_type != ItemType.IMAGE.value


# ============================================================================
# CAPTURE
# ============================================================================

def create_item(
    db: Database,
    user_id: str,
    item_type: str,
    content: str,
    source: str,
    media_url: Optional[str] = None,
) -> Tuple[InboxItem, bool]:
    """
    Capture a new inbox item.

    The item starts in ``processing`` when it will be classified, otherwise
    in ``pending`` for manual review. Scheduling the classification is the
    caller's job.

    Returns:
        (item, classify) where ``classify`` says whether classification should be scheduled
    """
    now = utcnow()
    classify = should_classify(item_type, content)

    with db.session() as session:
        item = InboxItem(
            user_id=user_id,
            type=ItemType(item_type).value,
            content=content or f"Image captured at {now.isoformat()}",
            source=source,
            media_url=media_url,
            status=(ItemStatus.PROCESSING if classify else ItemStatus.PENDING).value,
            extracted_actions=[],
            tags=[],
            created_at=now,
            updated_at=now,
        )
        session.add(item)
        session.flush()

    logger.info(
        "inbox_item_created",
        item_id=item.id,
        user_id=user_id,
        item_type=item.type,
        status=item.status,
        classify=classify,
    )
    return item, classify


# ============================================================================
# READS
# ============================================================================

def get_item(db: Database, user_id: str, item_id: str) -> InboxItem:
    with db.session() as session:
        return get_owned_item(session, user_id, item_id)


def list_items(
    db: Database,
    user_id: str,
    status: Optional[str] = None,
    limit: int = 20,
    cursor: Optional[str] = None,
) -> Tuple[List[InboxItem], Optional[str]]:
    """
    Newest-first page of items.

    Returns:
        (items, next_cursor); ``next_cursor`` is the id of the first item of the next page
    """
    with db.session() as session:
        query = session.query(InboxItem).filter(InboxItem.user_id == user_id)
        if status:
            query = query.filter(InboxItem.status == ItemStatus(status).value)

        if cursor:
            anchor = session.get(InboxItem, cursor)
            if anchor is not None and anchor.user_id == user_id:
                query = query.filter(or_(
                    InboxItem.created_at < anchor.created_at,
                    (InboxItem.created_at == anchor.created_at) & (InboxItem.id <= anchor.id),
                ))

        items = (
            query.order_by(InboxItem.created_at.desc(), InboxItem.id.desc())
            .limit(limit + 1)
            .all()
        )

    next_cursor = None
    if len(items) > limit:
        next_cursor = items.pop().id
    return items, next_cursor


def pending_count(db: Database, user_id: str) -> int:
    """Items still awaiting a disposition (pending or processing)."""
    with db.session() as session:
        return (
            session.query(func.count(InboxItem.id))
            .filter(InboxItem.user_id == user_id)
            .filter(InboxItem.status.in_(ACTIVE_STATUSES))
            .scalar()
        )


def queue_metrics(db: Database, user_id: str) -> Dict[str, int]:
    """Item counts per status plus the total, from one grouped query."""
    with db.session() as session:
        rows = (
            session.query(InboxItem.status, func.count(InboxItem.id))
            .filter(InboxItem.user_id == user_id)
            .group_by(InboxItem.status)
            .all()
        )

    counts = {status.value: 0 for status in ItemStatus}
    for status, count in rows:
        counts[status] = count
    counts["total"] = sum(count for _, count in rows)
    return counts


def poll_status(db: Database, user_id: str, item_ids: Sequence[str]) -> List[ItemStatusView]:
    """
    Classification progress for the given ids (the polling contract).

    Ids that are unknown or belong to another user are silently omitted.
    """
    if not item_ids:
        return []

    with db.session() as session:
        items = (
            session.query(InboxItem)
            .filter(InboxItem.id.in_(list(item_ids)))
            .filter(InboxItem.user_id == user_id)
            .all()
        )

    views = []
    for item in items:
        classification = Classification.from_blob(item.ai_classification)
        meta = classification.processing_meta if classification else None
        views.append(ItemStatusView(
            id=item.id,
            status=item.status,
            category=classification.category if classification else None,
            confidence=classification.confidence if classification else None,
            error=meta.last_error if meta else None,
            retry_count=meta.retry_count if meta else 0,
        ))
    return views


def error_items(db: Database, user_id: str, limit: int = 20) -> List[InboxItem]:
    """Items whose classification failed permanently, newest first."""
    with db.session() as session:
        return (
            session.query(InboxItem)
            .filter(InboxItem.user_id == user_id)
            .filter(InboxItem.status == ItemStatus.ERROR.value)
            .order_by(InboxItem.created_at.desc())
            .limit(limit)
            .all()
        )


def receipts(db: Database, user_id: str, limit: int = 20) -> List[ClassificationAudit]:
    """Audit rows of machine classifications, newest first."""
    with db.session() as session:
        return (
            session.query(ClassificationAudit)
            .filter(ClassificationAudit.user_id == user_id)
            .filter(ClassificationAudit.review_type == "auto")
            .order_by(ClassificationAudit.ai_processed_at.desc())
            .limit(limit)
            .all()
        )


def latest_audit(db: Database, user_id: str, item_id: str) -> Optional[ClassificationAudit]:
    with db.session() as session:
        get_owned_item(session, user_id, item_id)
        return (
            session.query(ClassificationAudit)
            .filter(ClassificationAudit.inbox_item_id == item_id)
            .order_by(ClassificationAudit.ai_processed_at.desc())
            .first()
        )


# ============================================================================
# WRITES
# ============================================================================

def archive_item(db: Database, user_id: str, item_id: str) -> InboxItem:
    """
    Archive a single item.

    Raises:
        NotFoundError: Unknown item
        InvalidStateError: Item is in ``error`` (reset it first)
    """
    with db.session() as session:
        item = get_owned_item(session, user_id, item_id)
        transition(item, ItemStatus.ARCHIVED)

    logger.info("inbox_item_archived", item_id=item_id, user_id=user_id)
    return item


def retry_classification(ledger: RetryLedger, user_id: str, item_id: str) -> None:
    """
    Manual "retry" on an errored item: verify ownership and reset it to ``pending``.

    The caller schedules the classification itself.

    Raises:
        NotFoundError: Unknown item
        InvalidStateError: Item is not in ``error``
    """
    with ledger.db.session() as session:
        get_owned_item(session, user_id, item_id)

    ledger.reset_for_retry(item_id)
    logger.info("classification_retry_requested", item_id=item_id, user_id=user_id)


def reclassify_item(engine, user_id: str, item_id: str) -> ClassificationResult:
    """
    Classify any owned item again, synchronously.

    Raises:
        NotFoundError: Unknown item
        ClassificationError: All attempts failed
    """
    with engine.db.session() as session:
        get_owned_item(session, user_id, item_id)

    logger.info("reclassification_requested", item_id=item_id, user_id=user_id)
    return engine.reclassify(item_id)
