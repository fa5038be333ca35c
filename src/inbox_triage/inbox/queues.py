"""
Derived "needs attention" queues.

Queues are never materialized: membership is recomputed from current item
state and the owner's current threshold on every read. Bulk operations
re-derive the queue at call time instead of trusting a client-supplied id list.
"""

from enum import Enum
from typing import List, Optional

import structlog
from sqlalchemy.orm import Session

from inbox_triage.classification.schemas import Classification, ItemStatus, QueueCounts, UserFeedback
from inbox_triage.config import settings
from inbox_triage.db.database import Database
from inbox_triage.db.models import InboxItem, utcnow
from inbox_triage.inbox.filing import FilingDestination, FilingService
from inbox_triage.inbox.status import transition
from inbox_triage.inbox.user_settings import get_confidence_threshold


logger = structlog.get_logger(__name__)


class QueueName(str, Enum):
    NEEDS_REVIEW = "needs_review"
    DISAGREEMENTS = "disagreements"


# ============================================================================
# MEMBERSHIP
# ============================================================================

def is_needs_review(item: InboxItem, threshold: float) -> bool:
    """Pending and either not yet classified or below the owner's threshold."""
    if item.status != ItemStatus.PENDING.value:
        return False
    classification = Classification.from_blob(item.ai_classification)
    if classification is None or not classification.has_result:
        return True
    return classification.confidence < threshold


def is_disagreement(item: InboxItem) -> bool:
    """Pending and deferred to the weekly review by a disagree/correction verdict."""
    if item.status != ItemStatus.PENDING.value:
        return False
    feedback = UserFeedback.from_blob(item.user_feedback)
    return bool(feedback is not None and feedback.deferred_to_weekly)


def _pending_items(session: Session, user_id: str) -> List[InboxItem]:
    return (
        session.query(InboxItem)
        .filter(InboxItem.user_id == user_id)
        .filter(InboxItem.status == ItemStatus.PENDING.value)
        .order_by(InboxItem.created_at.asc(), InboxItem.id.asc())
        .all()
    )


def _derive(session: Session, user_id: str, queue: QueueName, limit: Optional[int] = None) -> List[InboxItem]:
    limit = limit or settings.queue_limit

    pending = _pending_items(session, user_id)

    if QueueName(queue) == QueueName.NEEDS_REVIEW:
        threshold = get_confidence_threshold(session, user_id)
        return [item for item in pending if is_needs_review(item, threshold)][:limit]

    return [item for item in pending if is_disagreement(item)][:limit]


# ============================================================================
# QUEUES
# ============================================================================

def needs_review(db: Database, user_id: str, limit: Optional[int] = None) -> List[InboxItem]:
    """Low-confidence or unclassified pending items, oldest first."""
    with db.session() as session:
        return _derive(session, user_id, QueueName.NEEDS_REVIEW, limit)


def disagreements(db: Database, user_id: str, limit: Optional[int] = None) -> List[InboxItem]:
    """Pending items deferred to the weekly review, oldest first."""
    with db.session() as session:
        return _derive(session, user_id, QueueName.DISAGREEMENTS, limit)


def queue_counts(db: Database, user_id: str) -> QueueCounts:
    """Sizes of both queues; ``is_complete`` gates the weekly review inbox step."""
    with db.session() as session:
        needs_review_count = len(_derive(session, user_id, QueueName.NEEDS_REVIEW))
        disagreements_count = len(_derive(session, user_id, QueueName.DISAGREEMENTS))

    mandatory = needs_review_count + disagreements_count
    return QueueCounts(
        needs_review=needs_review_count,
        disagreements=disagreements_count,
        mandatory=mandatory,
        is_complete=mandatory == 0,
    )


# ============================================================================
# BULK OPERATIONS
# ============================================================================

def archive_all(db: Database, user_id: str, queue: QueueName) -> int:
    """
    Archive every item currently in the queue.

    Returns:
        Number of items archived
    """
    now = utcnow()

    with db.session() as session:
        items = _derive(session, user_id, queue)
        for item in items:
            transition(item, ItemStatus.ARCHIVED, now)

    logger.info("queue_archived", user_id=user_id, queue=QueueName(queue).value, archived=len(items))
    return len(items)


def file_all_to(
    db: Database,
    user_id: str,
    queue: QueueName,
    destination: FilingDestination,
    filing_service: Optional[FilingService] = None,
) -> int:
    """
    File every item currently in the queue to a project or area.

    Returns:
        Number of items filed

    Raises:
        NotFoundError: Destination missing or owned by another user
    """
    filing_service = filing_service or FilingService()
    now = utcnow()

    with db.session() as session:
        filing_service.resolve_destination(session, user_id, destination)
        items = _derive(session, user_id, queue)
        for item in items:
            filing_service.file_item(session, user_id, item, destination, now=now)

    logger.info(
        "queue_filed",
        user_id=user_id,
        queue=QueueName(queue).value,
        destination_type=destination.type.value,
        filed=len(items),
    )
    return len(items)

