"""
Queue API routes.

Queues are derived on every request from current item state:
- GET  /api/v1/queues/needs-review
- GET  /api/v1/queues/disagreements
- GET  /api/v1/queues/counts
- POST /api/v1/queues/{queue}/archive-all
- POST /api/v1/queues/{queue}/file-all
"""

from fastapi import APIRouter, Depends

from inbox_triage.api.dependencies import get_current_user_id, get_db
from inbox_triage.api.models import BulkResponse, InboxItemResponse, QueueItemsResponse
from inbox_triage.classification.schemas import QueueCounts
from inbox_triage.db.database import Database
from inbox_triage.inbox import queues
from inbox_triage.inbox.filing import FilingDestination

router = APIRouter()


def _queue_response(queue: queues.QueueName, items) -> QueueItemsResponse:
    return QueueItemsResponse(
        queue=queue.value,
        items=[InboxItemResponse.model_validate(i) for i in items],
        count=len(items),
    )


@router.get("/needs-review", response_model=QueueItemsResponse)
def needs_review(
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> QueueItemsResponse:
    return _queue_response(queues.QueueName.NEEDS_REVIEW, queues.needs_review(db, user_id))


@router.get("/disagreements", response_model=QueueItemsResponse)
def disagreements(
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> QueueItemsResponse:
    return _queue_response(queues.QueueName.DISAGREEMENTS, queues.disagreements(db, user_id))


@router.get("/counts", response_model=QueueCounts)
def queue_counts(
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> QueueCounts:
    return queues.queue_counts(db, user_id)


@router.post("/{queue}/archive-all", response_model=BulkResponse)
def archive_all(
    queue: queues.QueueName,
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> BulkResponse:
    return BulkResponse(count=queues.archive_all(db, user_id, queue))


@router.post("/{queue}/file-all", response_model=BulkResponse)
def file_all(
    queue: queues.QueueName,
    destination: FilingDestination,
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> BulkResponse:
    """File every item currently in the queue to one project or area."""
    return BulkResponse(count=queues.file_all_to(db, user_id, queue, destination))
