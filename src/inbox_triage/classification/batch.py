"""
Batch classification with bounded provider concurrency.

Fans the engine out over many items on a thread pool. The pool size is the
concurrency limit (default 5 in flight); there is no other backpressure, the
caller only sees succeeded/failed counts and per-item outcomes.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, NamedTuple, Optional, Sequence

import structlog
from sqlalchemy import select

from inbox_triage.classification.engine import ClassificationEngine
from inbox_triage.classification.schemas import BatchResult, ClassificationContext
from inbox_triage.config import settings
from inbox_triage.db.models import InboxItem
from inbox_triage.errors import InboxTriageError


logger = structlog.get_logger(__name__)


class BatchItem(NamedTuple):
    item_id: str
    content: str


class BatchClassifier:
    """Runs ``engine.classify`` for many items, never raising for per-item failures."""

    def __init__(self, engine: ClassificationEngine, concurrency: Optional[int] = None):
        self.engine = engine
        self.concurrency = max(1, concurrency or settings.classification_batch_concurrency)

    def classify_batch(
        self,
        items: Sequence[BatchItem],
        context: Optional[ClassificationContext] = None,
    ) -> BatchResult:
        """
        Classify items with at most ``concurrency`` provider calls in flight.

        Args:
            items: (item_id, content) pairs
            context: Shared owner context for every item

        Returns:
            BatchResult with counts and a per-item result or error message
        """
        batch = BatchResult()
        if not items:
            return batch

        logger.info("batch_classification_started", items_count=len(items), concurrency=self.concurrency)

        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="batch-classify") as executor:
            futures = {
                executor.submit(self.engine.classify, item.item_id, item.content, context): item.item_id
                for item in items
            }

            for future in as_completed(futures):
                item_id = futures[future]
                try:
                    batch.results[item_id] = future.result()
                    batch.succeeded += 1
                except InboxTriageError as e:
                    batch.results[item_id] = str(e)
                    batch.failed += 1
                    logger.warning("batch_item_failed", item_id=item_id, error=str(e), error_type=type(e).__name__)

        logger.info(
            "batch_classification_completed",
            succeeded=batch.succeeded,
            failed=batch.failed,
        )
        return batch

    def classify_items(self, item_ids: Sequence[str], context: Optional[ClassificationContext] = None) -> BatchResult:
        """Load content for the given ids and classify them; unknown ids are reported as failures."""
        with self.engine.db.session() as session:
            rows = session.execute(
                select(InboxItem.id, InboxItem.content).where(InboxItem.id.in_(list(item_ids)))
            ).all()

        found = {row.id: row.content or "" for row in rows}
        items: List[BatchItem] = [BatchItem(item_id, found[item_id]) for item_id in item_ids if item_id in found]

        batch = self.classify_batch(items, context)
        for item_id in item_ids:
            if item_id not in found:
                batch.results[item_id] = f"Inbox item not found: {item_id}"
                batch.failed += 1
        return batch
