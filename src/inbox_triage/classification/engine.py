"""
Classification engine orchestrating a single item's classification.

Coordinates:
1. Marking the item as processing
2. Prompt building from content + owner context
3. Provider call with bounded, interruptible backoff
4. Normalization of the provider answer
5. Transactional persistence (item blobs + status + audit row)
6. Fire-and-forget search indexing

Provider failures never escape as provider exceptions: on exhaustion the
retry ledger records the permanent failure and ``ClassificationError`` is
raised so the caller can react.
"""

import threading
import time
from datetime import datetime
from typing import Callable, Optional, Sequence, Tuple

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from inbox_triage.classification.ledger import RetryLedger
from inbox_triage.classification.normalizer import normalize_result, parse_provider_payload
from inbox_triage.classification.prompts import build_classification_prompt
from inbox_triage.classification.provider import ClassificationProvider, create_provider
from inbox_triage.classification.schemas import (
    Classification,
    ClassificationContext,
    ClassificationResult,
    ItemStatus,
)
from inbox_triage.db.database import Database
from inbox_triage.db.models import Area, ClassificationAudit, InboxItem, Project, utcnow
from inbox_triage.errors import (
    ClassificationCancelled,
    ClassificationError,
    InboxTriageError,
    NotFoundError,
    ProviderError,
)
from inbox_triage.inbox.status import ACTIVE_STATUSES, transition
from inbox_triage.inbox.user_settings import get_confidence_threshold
from inbox_triage.search_index import (
    LoggingSearchIndexer,
    SearchIndexer,
    build_index_request,
    index_content_async,
)
from inbox_triage.tasks import InlineDispatcher, TaskDispatcher


logger = structlog.get_logger(__name__)


# ============================================================================
# CLASSIFICATION ENGINE
# ============================================================================

class ClassificationEngine:
    """
    Classifies inbox items and persists the outcome.

    The engine holds no per-item state, so one instance is shared by request
    handlers, background tasks and the batch classifier.
    """

    def __init__(
        self,
        db: Database,
        provider: Optional[ClassificationProvider] = None,
        ledger: Optional[RetryLedger] = None,
        dispatcher: Optional[TaskDispatcher] = None,
        indexer: Optional[SearchIndexer] = None,
        shutdown_event: Optional[threading.Event] = None,
        retry_delays: Optional[Sequence[float]] = None,
        clock: Callable[[], datetime] = utcnow,
        prompt_version: Optional[str] = None,
    ):
        """
        Initialize engine.

        Args:
            db: Database to read items from and write results to
            provider: Pre-configured provider (default: built from settings)
            ledger: Retry ledger (default: one on the same database)
            dispatcher: Background dispatcher for search indexing
            indexer: Search indexer (default: logs the request only)
            shutdown_event: Set by the application at shutdown to interrupt backoff
            retry_delays: Backoff schedule override (seconds)
            clock: Source of "now" (naive UTC)
            prompt_version: System prompt version override
        """
        self.db = db
        self.provider = provider or create_provider()
        self.ledger = ledger or RetryLedger(db, retry_delays=retry_delays, clock=clock)
        self.dispatcher = dispatcher or InlineDispatcher()
        self.indexer = indexer if indexer is not None else LoggingSearchIndexer()
        self.shutdown_event = shutdown_event or threading.Event()
        self.retry_delays = tuple(retry_delays) if retry_delays is not None else self.ledger.retry_delays
        self.clock = clock
        self.prompt_version = prompt_version

        self.logger = logger.bind(
            engine="ClassificationEngine",
            model=self.provider.model
        )

    @property
    def max_retries(self) -> int:
        return self.ledger.max_retries

    # ------------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------------

    def classify(
        self,
        item_id: str,
        content: str,
        context: Optional[ClassificationContext] = None,
    ) -> ClassificationResult:
        """
        Classify one item and persist the result.

        Args:
            item_id: Inbox item id
            content: Raw item text (truncated before it reaches the provider)
            context: Owner's areas, active projects and capture source

        Returns:
            The normalized ClassificationResult that was stored

        Raises:
            ClassificationError: All attempts failed (failure already recorded)
            ClassificationCancelled: Shutdown was signalled during backoff
            NotFoundError: Unknown item
            InvalidStateError: Item cannot enter processing (e.g. it is in error)
        """
        start_time = time.time()

        self.logger.info(
            "classification_started",
            item_id=item_id,
            content_length=len(content or ""),
        )

        self.mark_processing_started(item_id)

        system_prompt, user_message = build_classification_prompt(
            content=content,
            context=context,
            prompt_version=self.prompt_version,
        )

        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.provider.complete_json(system_prompt, user_message)
                result = normalize_result(parse_provider_payload(response.content))

                processing_time_ms = int((time.time() - start_time) * 1000)
                auto_filed, user_id = self._store_result(
                    item_id, result, response.model, processing_time_ms
                )

            except ProviderError as e:
                last_error = e
                self.logger.warning(
                    "classification_attempt_failed",
                    item_id=item_id,
                    attempt=attempt,
                    max_retries=self.max_retries,
                    error=str(e),
                    error_type=type(e).__name__,
                )

            except SQLAlchemyError as e:
                last_error = e
                self.logger.error(
                    "classification_store_failed",
                    item_id=item_id,
                    attempt=attempt,
                    error=str(e),
                    error_type=type(e).__name__,
                )

            else:
                self.logger.info(
                    "classification_completed",
                    item_id=item_id,
                    category=result.category.value,
                    confidence=result.confidence,
                    auto_filed=auto_filed,
                    attempts=attempt,
                    processing_time_ms=processing_time_ms,
                )
                self._schedule_indexing(item_id, user_id, content, result)
                return result

            if attempt < self.max_retries:
                self._backoff(item_id, attempt)

        message = str(last_error) or type(last_error).__name__
        self.ledger.record_failure(item_id, message, self.max_retries)

        raise ClassificationError(
            item_id,
            f"Classification failed after {self.max_retries} attempts: {message}",
            last_error=last_error,
        )

    def reclassify(self, item_id: str, context: Optional[ClassificationContext] = None) -> ClassificationResult:
        """
        Classify an existing item again from its stored content.

        An item in ``error`` is reset through the ledger first, since ``error``
        can only be left through ``pending``.

        Raises:
            NotFoundError: Unknown item
            ClassificationError: All attempts failed
        """
        content, user_id, source, status = self._load_item(item_id)

        if status == ItemStatus.ERROR.value:
            self.ledger.reset_for_retry(item_id)

        if context is None:
            context = self.get_user_context(user_id)
        if source and not context.source:
            context = context.model_copy(update={"source": source})

        return self.classify(item_id, content, context)

    def classify_in_background(self, item_id: str) -> None:
        """
        Fire-and-forget wrapper for capture-time and manual-retry classification.

        Best-effort: nothing is returned to the original requester, so every
        failure is logged here and the item status is the only observable outcome.
        """
        try:
            content, user_id, source, _ = self._load_item(item_id)
            context = self.get_user_context(user_id)
            context.source = source
            self.classify(item_id, content, context)

        except ClassificationCancelled:
            self.logger.warning("background_classification_cancelled", item_id=item_id)

        except ClassificationError as e:
            self.logger.error(
                "background_classification_failed",
                item_id=item_id,
                error=str(e),
            )

        except InboxTriageError as e:
            self.logger.error(
                "background_classification_rejected",
                item_id=item_id,
                error=str(e),
                error_type=type(e).__name__,
            )

    def process_due_retries(self, limit: int = 100) -> int:
        """
        Re-run classification for items whose scheduled retry time has passed.

        Items stuck in ``processing`` past the stale window are released first
        so they are picked up in the same pass.

        Returns:
            Number of items attempted
        """
        self.ledger.reclaim_stale(now=self.clock())
        item_ids = self.ledger.due_for_retry(now=self.clock(), limit=limit)
        for item_id in item_ids:
            self.classify_in_background(item_id)

        self.logger.info("due_retries_processed", count=len(item_ids))
        return len(item_ids)

    # ------------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------------

    def get_user_context(self, user_id: str) -> ClassificationContext:
        """Area names and active project names of the owner."""
        with self.db.session() as session:
            areas = session.scalars(
                select(Area.name).where(Area.user_id == user_id).order_by(Area.name)
            ).all()
            projects = session.scalars(
                select(Project.name)
                .where(Project.user_id == user_id)
                .where(Project.status == "active")
                .order_by(Project.name)
            ).all()

        return ClassificationContext(areas=list(areas), projects=list(projects))

    # ------------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------------

    def mark_processing_started(self, item_id: str) -> None:
        """
        Move the item into ``processing`` and stamp ``started_at``.

        Idempotent: an item already processing keeps its original start time.

        Raises:
            NotFoundError: Unknown item
            InvalidStateError: Item cannot enter processing
        """
        now = self.clock()

        with self.db.session() as session:
            item = session.get(InboxItem, item_id)
            if item is None:
                raise NotFoundError(f"Inbox item not found: {item_id}")

            classification = Classification.from_blob(item.ai_classification) or Classification()
            meta = classification.processing_meta
            if item.status == ItemStatus.PROCESSING.value and meta.started_at is not None:
                return

            meta.started_at = now
            meta.completed_at = None
            item.ai_classification = classification.to_blob()
            transition(item, ItemStatus.PROCESSING, now)

        self.logger.debug("classification_processing_started", item_id=item_id)

    def _store_result(
        self,
        item_id: str,
        result: ClassificationResult,
        model_used: Optional[str],
        processing_time_ms: int,
    ) -> Tuple[bool, str]:
        """
        Write blobs, status and the audit row in one transaction.

        Returns:
            (auto_filed, owner user id)
        """
        now = self.clock()

        with self.db.session() as session:
            item = session.get(InboxItem, item_id)
            if item is None:
                raise NotFoundError(f"Inbox item not found: {item_id}")

            threshold = get_confidence_threshold(session, item.user_id)
            auto_filed = result.confidence >= threshold

            previous = Classification.from_blob(item.ai_classification) or Classification()
            meta = previous.processing_meta
            meta.completed_at = now
            meta.processing_time_ms = processing_time_ms
            meta.last_error = None
            meta.next_retry_at = None
            meta.failed_at = None

            item.ai_classification = Classification(
                category=result.category.value,
                confidence=result.confidence,
                reasoning=result.reasoning,
                model_used=model_used or self.provider.model,
                processing_time_ms=processing_time_ms,
                processed_at=now,
                auto_filed=auto_filed,
                processing_meta=meta,
            ).to_blob()
            item.extracted_actions = [a.to_blob() for a in result.extracted_actions]
            item.tags = [t.to_blob() for t in result.tags]

            target = ItemStatus.REVIEWED if auto_filed else ItemStatus.PENDING
            if item.status in ACTIVE_STATUSES:
                transition(item, target, now)
            else:
                # A reviewer disposed of the item while the attempt was in flight
                self.logger.info(
                    "classification_status_change_skipped",
                    item_id=item_id,
                    current_status=item.status,
                    target_status=target.value,
                )

            session.add(ClassificationAudit(
                inbox_item_id=item.id,
                user_id=item.user_id,
                ai_category=result.category.value,
                ai_confidence=result.confidence,
                ai_reasoning=result.reasoning,
                ai_model=model_used or self.provider.model,
                ai_processed_at=now,
                review_type="auto",
            ))

            return auto_filed, item.user_id

    def _load_item(self, item_id: str) -> Tuple[str, str, Optional[str], str]:
        with self.db.session() as session:
            item = session.get(InboxItem, item_id)
            if item is None:
                raise NotFoundError(f"Inbox item not found: {item_id}")
            return item.content or "", item.user_id, item.source, item.status

    # ------------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------------

    def _backoff(self, item_id: str, attempt: int) -> None:
        delay = self.retry_delays[min(attempt - 1, len(self.retry_delays) - 1)]

        self.logger.debug("classification_backoff", item_id=item_id, attempt=attempt, delay_seconds=delay)

        if self.shutdown_event.wait(delay):
            self.logger.warning("classification_cancelled", item_id=item_id, attempt=attempt)
            self.ledger.release_interrupted(item_id, "Cancelled at shutdown")
            raise ClassificationCancelled(f"Shutdown during backoff for item {item_id}")

    def _schedule_indexing(
        self,
        item_id: str,
        user_id: str,
        content: str,
        result: ClassificationResult,
    ) -> None:
        try:
            request = build_index_request(item_id, user_id, content, result)
            index_content_async(self.dispatcher, self.indexer, request)
        except Exception as e:
            self.logger.error("search_index_schedule_failed", item_id=item_id, error=str(e))
