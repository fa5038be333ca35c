"""
Retry/failure ledger for classification attempts.

Retry state lives in the item's ``processing_meta``. The ledger only records
eligibility for another attempt (``next_retry_at``); re-invoking the engine
is up to the caller or the ``retry-due`` job. Once retries are exhausted the
item moves to ``error`` and a dead-letter ``FailedWebhook`` row is written in
the same transaction.
"""

from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

import structlog
from sqlalchemy import select

from inbox_triage.classification.schemas import Classification, FailureDecision, ItemStatus
from inbox_triage.config import settings
from inbox_triage.db.database import Database
from inbox_triage.db.models import FailedWebhook, InboxItem, utcnow
from inbox_triage.errors import InvalidStateError, NotFoundError
from inbox_triage.inbox.status import ACTIVE_STATUSES, apply_status, can_transition, transition


logger = structlog.get_logger(__name__)

MAX_RETRIES = 3
RETRY_DELAYS = (1.0, 5.0, 30.0)  # seconds

DEAD_LETTER_TYPE = "classify"
DEAD_LETTER_TARGET = "classification-provider"


class RetryLedger:
    """Records classification failures and decides retry vs. permanent failure."""

    def __init__(
        self,
        db: Database,
        max_retries: Optional[int] = None,
        retry_delays: Optional[Sequence[float]] = None,
        stale_after: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.max_retries = max_retries if max_retries is not None else settings.classification_max_retries
        self.retry_delays = tuple(retry_delays or settings.classification_retry_delays_seconds or RETRY_DELAYS)
        self.stale_after = stale_after if stale_after is not None else settings.classification_stale_after_seconds
        self.clock = clock

    def retry_delay(self, retry_count: int) -> float:
        """Delay before attempt ``retry_count + 1``; the last delay repeats past the schedule."""
        return self.retry_delays[min(retry_count, len(self.retry_delays) - 1)]

    def record_failure(
        self,
        item_id: str,
        error_message: str,
        current_retry_count: Optional[int] = None,
    ) -> FailureDecision:
        """
        Record one failed classification attempt.

        Args:
            item_id: Inbox item id
            error_message: Last provider/persistence error
            current_retry_count: Overrides the stored retry count when given

        Returns:
            FailureDecision(should_retry, next_retry_at)

        Raises:
            NotFoundError: Unknown item
        """
        now = self.clock()

        with self.db.session() as session:
            item = session.get(InboxItem, item_id)
            if item is None:
                raise NotFoundError(f"Inbox item not found: {item_id}")

            classification = Classification.from_blob(item.ai_classification) or Classification()
            meta = classification.processing_meta
            retry_count = current_retry_count if current_retry_count is not None else meta.retry_count

            if retry_count < self.max_retries:
                next_retry_at = now + timedelta(seconds=self.retry_delay(retry_count))
                meta.last_error = error_message
                meta.retry_count = retry_count + 1
                meta.next_retry_at = next_retry_at
                item.ai_classification = classification.to_blob()
                self._move_status(item, ItemStatus.PENDING, now)

                logger.warning(
                    "classification_retry_scheduled",
                    item_id=item_id,
                    retry_count=retry_count + 1,
                    max_retries=self.max_retries,
                    next_retry_at=next_retry_at.isoformat(),
                    error=error_message,
                )
                return FailureDecision(should_retry=True, next_retry_at=next_retry_at)

            classification.error = error_message
            meta.last_error = error_message
            meta.retry_count = retry_count
            meta.next_retry_at = None
            meta.failed_at = now
            item.ai_classification = classification.to_blob()
            self._move_status(item, ItemStatus.ERROR, now)

            session.add(FailedWebhook(
                type=DEAD_LETTER_TYPE,
                target=DEAD_LETTER_TARGET,
                payload={
                    "inbox_item_id": item.id,
                    "content": (item.content or "")[:settings.dead_letter_payload_max_length],
                    "source": item.source,
                },
                error=error_message,
                retry_count=retry_count,
                max_retries=self.max_retries,
                status="failed",
            ))

        logger.error(
            "classification_failed_permanently",
            item_id=item_id,
            retry_count=retry_count,
            error=error_message,
        )
        return FailureDecision(should_retry=False)

    def release_interrupted(self, item_id: str, reason: str) -> None:
        """
        Hand an abandoned attempt back to the retry schedule.

        The item returns from ``processing`` to ``pending`` and is due
        immediately. The retry count is left alone, so an interruption never
        counts towards exhaustion.

        Raises:
            NotFoundError: Unknown item
        """
        now = self.clock()

        with self.db.session() as session:
            item = session.get(InboxItem, item_id)
            if item is None:
                raise NotFoundError(f"Inbox item not found: {item_id}")
            self._release(item, reason, now)

        logger.warning("classification_released", item_id=item_id, reason=reason)

    def reclaim_stale(self, now: Optional[datetime] = None) -> List[str]:
        """
        Release items stuck in ``processing`` past the stale window.

        Covers attempts whose worker never finished, e.g. a lost background
        task. The start time falls back to ``created_at`` for items captured
        straight into ``processing``.

        Returns:
            Ids of the released items
        """
        now = now or self.clock()
        cutoff = now - timedelta(seconds=self.stale_after)
        released = []

        with self.db.session() as session:
            items = session.scalars(
                select(InboxItem).where(InboxItem.status == ItemStatus.PROCESSING.value)
            )
            for item in items:
                classification = Classification.from_blob(item.ai_classification)
                started_at = classification.processing_meta.started_at if classification else None
                if (started_at or item.created_at) > cutoff:
                    continue
                self._release(item, "Processing abandoned", now)
                released.append(item.id)

        if released:
            logger.warning("stale_processing_reclaimed", count=len(released), item_ids=released)
        return released

    def _release(self, item: InboxItem, reason: str, now: datetime) -> None:
        classification = Classification.from_blob(item.ai_classification) or Classification()
        meta = classification.processing_meta
        meta.last_error = reason
        meta.next_retry_at = now
        item.ai_classification = classification.to_blob()
        self._move_status(item, ItemStatus.PENDING, now)

    def _move_status(self, item: InboxItem, target: ItemStatus, now: datetime) -> None:
        # A reviewer may have disposed of the item while classification was in flight
        if item.status not in ACTIVE_STATUSES or not can_transition(ItemStatus(item.status), target):
            logger.info(
                "ledger_status_change_skipped",
                item_id=item.id,
                current_status=item.status,
                target_status=target.value,
            )
            return
        apply_status(item, target, now)

    def reset_for_retry(self, item_id: str) -> None:
        """
        Manual recovery from ``error``: clear retry metadata and return to ``pending``.

        Raises:
            NotFoundError: Unknown item
            InvalidStateError: Item is not in ``error``
        """
        with self.db.session() as session:
            item = session.get(InboxItem, item_id)
            if item is None:
                raise NotFoundError(f"Inbox item not found: {item_id}")
            if item.status != ItemStatus.ERROR.value:
                raise InvalidStateError("Item is not in error state")

            item.ai_classification = Classification().to_blob()
            transition(item, ItemStatus.PENDING)

        logger.info("classification_reset_for_retry", item_id=item_id)

    def due_for_retry(self, now: Optional[datetime] = None, limit: int = 100) -> List[str]:
        """Ids of pending items whose ``next_retry_at`` has passed and that still have retries left."""
        now = now or self.clock()
        due = []

        with self.db.session() as session:
            items = session.scalars(
                select(InboxItem)
                .where(InboxItem.status == ItemStatus.PENDING.value)
                .where(InboxItem.ai_classification.is_not(None))
                .order_by(InboxItem.created_at)
            )
            for item in items:
                classification = Classification.from_blob(item.ai_classification)
                if classification is None:
                    continue
                meta = classification.processing_meta
                if meta.next_retry_at is None or meta.next_retry_at > now:
                    continue
                if meta.retry_count >= self.max_retries:
                    continue
                due.append(item.id)
                if len(due) >= limit:
                    break

        return due
