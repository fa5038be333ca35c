"""
Inbox API routes.

Provides REST endpoints for inbox items:
- POST /api/v1/inbox/items - Capture (classification runs in the background)
- GET  /api/v1/inbox/items[/{id}] - List / fetch
- POST /api/v1/inbox/status - Poll classification progress
- POST /api/v1/inbox/items/{id}/retry|reclassify|archive|restore
- Archive views, bankruptcy and receipts
"""

from typing import Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status

from inbox_triage.api.dependencies import get_current_user_id, get_db, get_engine, get_ledger
from inbox_triage.api.models import (
    ArchivedItemsResponse,
    AutoArchiveResponse,
    BulkResponse,
    CountResponse,
    CreateItemRequest,
    CreateItemResponse,
    InboxItemResponse,
    ItemListResponse,
    ReceiptResponse,
    StatusPollRequest,
    StatusPollResponse,
)
from inbox_triage.classification.engine import ClassificationEngine
from inbox_triage.classification.ledger import RetryLedger
from inbox_triage.classification.schemas import ClassificationResult, ItemStatus
from inbox_triage.db.database import Database
from inbox_triage.inbox import service, sweeps

router = APIRouter()


# ============================================================================
# CAPTURE
# ============================================================================

@router.post("/items", response_model=CreateItemResponse, status_code=status.HTTP_201_CREATED)
def create_item(
    request: CreateItemRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
    engine: ClassificationEngine = Depends(get_engine),
) -> CreateItemResponse:
    """
    Capture a new item.

    Text items are classified after the response is sent; image items wait
    in ``pending`` for a human.
    """
    item, classify = service.create_item(
        db,
        user_id=user_id,
        item_type=request.type.value,
        content=request.content,
        source=request.source,
        media_url=request.media_url,
    )

    if classify:
        background_tasks.add_task(engine.classify_in_background, item.id)

    return CreateItemResponse(
        item=InboxItemResponse.model_validate(item),
        classification_scheduled=classify,
    )


# ============================================================================
# READS
# ============================================================================

@router.get("/items", response_model=ItemListResponse)
def list_items(
    status_filter: Optional[ItemStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=20, ge=1, le=100),
    cursor: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> ItemListResponse:
    items, next_cursor = service.list_items(
        db,
        user_id,
        status=status_filter.value if status_filter else None,
        limit=limit,
        cursor=cursor,
    )
    return ItemListResponse(
        items=[InboxItemResponse.model_validate(i) for i in items],
        next_cursor=next_cursor,
    )


@router.get("/items/{item_id}", response_model=InboxItemResponse)
def get_item(
    item_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> InboxItemResponse:
    return InboxItemResponse.model_validate(service.get_item(db, user_id, item_id))


@router.get("/items/{item_id}/audit", response_model=ReceiptResponse)
def get_item_audit(
    item_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> ReceiptResponse:
    """Latest classification audit row of an item."""
    audit = service.latest_audit(db, user_id, item_id)
    if audit is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item has not been classified")
    return ReceiptResponse.model_validate(audit)


@router.get("/count", response_model=CountResponse)
def pending_count(
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> CountResponse:
    return CountResponse(count=service.pending_count(db, user_id))


@router.get("/metrics", response_model=Dict[str, int])
def queue_metrics(
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> Dict[str, int]:
    return service.queue_metrics(db, user_id)


@router.post("/status", response_model=StatusPollResponse)
def poll_status(
    request: StatusPollRequest,
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> StatusPollResponse:
    """Polling contract for items that are being classified."""
    return StatusPollResponse(items=service.poll_status(db, user_id, request.ids))


@router.get("/errors", response_model=List[InboxItemResponse])
def error_items(
    limit: int = Query(default=20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> List[InboxItemResponse]:
    return [InboxItemResponse.model_validate(i) for i in service.error_items(db, user_id, limit)]


@router.get("/receipts", response_model=List[ReceiptResponse])
def receipts(
    limit: int = Query(default=20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> List[ReceiptResponse]:
    """Recent machine classifications, for "what did the AI do" views."""
    return [ReceiptResponse.model_validate(a) for a in service.receipts(db, user_id, limit)]


# ============================================================================
# CLASSIFICATION CONTROL
# ============================================================================

@router.post("/items/{item_id}/retry", response_model=InboxItemResponse)
def retry_item(
    item_id: str,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
    ledger: RetryLedger = Depends(get_ledger),
    engine: ClassificationEngine = Depends(get_engine),
) -> InboxItemResponse:
    """Reset an errored item to ``pending`` and classify it again in the background."""
    service.retry_classification(ledger, user_id, item_id)
    background_tasks.add_task(engine.classify_in_background, item_id)
    return InboxItemResponse.model_validate(service.get_item(db, user_id, item_id))


@router.post("/items/{item_id}/reclassify", response_model=ClassificationResult)
def reclassify_item(
    item_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: ClassificationEngine = Depends(get_engine),
) -> ClassificationResult:
    """Classify an item again and wait for the result."""
    return service.reclassify_item(engine, user_id, item_id)


# ============================================================================
# ARCHIVE
# ============================================================================

@router.post("/items/{item_id}/archive", response_model=InboxItemResponse)
def archive_item(
    item_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> InboxItemResponse:
    return InboxItemResponse.model_validate(service.archive_item(db, user_id, item_id))


@router.post("/items/{item_id}/restore", response_model=InboxItemResponse)
def restore_item(
    item_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> InboxItemResponse:
    return InboxItemResponse.model_validate(sweeps.restore_from_archive(db, user_id, item_id))


@router.post("/bankruptcy", response_model=BulkResponse)
def declare_bankruptcy(
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> BulkResponse:
    """Archive everything still waiting for a disposition."""
    return BulkResponse(count=sweeps.declare_bankruptcy(db, user_id))


@router.post("/auto-archive", response_model=AutoArchiveResponse)
def run_auto_archive(
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> AutoArchiveResponse:
    """Run the auto-archive sweep for the caller now."""
    result = sweeps.process_auto_archive(db, user_id)
    return AutoArchiveResponse(warned=result.warned, archived=result.archived)


@router.get("/auto-archive-warnings", response_model=List[InboxItemResponse])
def auto_archive_warnings(
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> List[InboxItemResponse]:
    return [InboxItemResponse.model_validate(i) for i in sweeps.auto_archive_warnings(db, user_id)]


@router.get("/archived", response_model=ArchivedItemsResponse)
def archived_items(
    archive_filter: sweeps.ArchiveFilter = Query(default=sweeps.ArchiveFilter.ALL, alias="filter"),
    limit: int = Query(default=50, ge=1, le=100),
    cursor: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> ArchivedItemsResponse:
    page = sweeps.archived_items(db, user_id, archive_filter=archive_filter, limit=limit, cursor=cursor)
    return ArchivedItemsResponse(
        items=[InboxItemResponse.model_validate(i) for i in page.items],
        next_cursor=page.next_cursor,
        total=page.total,
        unprocessed=page.unprocessed,
        bankruptcy=page.bankruptcy,
    )
