"""
Review API routes.

Provides REST endpoints for swipe review:
- GET/POST  /api/v1/review/session - Active session / start or resume
- POST      /api/v1/review/swipe - Record a verdict
- POST      /api/v1/review/undo - Undo the latest verdict on an item
- POST      /api/v1/review/session/{id}/complete
- PATCH     /api/v1/review/session/{id} - Auto-save progress
- GET       /api/v1/review/history
- POST      /api/v1/review/corrections, GET /api/v1/review/insights
"""

from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from inbox_triage.api.dependencies import get_current_user_id, get_db
from inbox_triage.api.models import (
    CorrectionRequest,
    InboxItemResponse,
    ReviewSessionDetailResponse,
    ReviewSessionResponse,
    StartSessionRequest,
    SwipeRequest,
    SwipeResponse,
    UndoRequest,
    UndoResponse,
    UpdateSessionRequest,
)
from inbox_triage.db.database import Database
from inbox_triage.db.models import ReviewSession
from inbox_triage.review import corrections, sessions


logger = structlog.get_logger(__name__)

router = APIRouter()


def _session_detail(db: Database, review_session: ReviewSession) -> ReviewSessionDetailResponse:
    return ReviewSessionDetailResponse(
        session=ReviewSessionResponse.model_validate(review_session),
        items=[InboxItemResponse.model_validate(i) for i in sessions.session_items(db, review_session)],
    )


# ============================================================================
# SESSIONS
# ============================================================================

@router.get("/session", response_model=ReviewSessionDetailResponse)
def get_active_session(
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> ReviewSessionDetailResponse:
    review_session = sessions.get_active_session(db, user_id)
    if review_session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active session")
    return _session_detail(db, review_session)


@router.post("/session", response_model=ReviewSessionDetailResponse)
def start_session(
    request: Optional[StartSessionRequest] = None,
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> ReviewSessionDetailResponse:
    """Resume the active session, or start one (``force_new`` completes the active one first)."""
    review_session = sessions.get_or_create_session(db, user_id, force_new=bool(request and request.force_new))
    return _session_detail(db, review_session)


@router.patch("/session/{session_id}", response_model=ReviewSessionResponse)
def update_session(
    session_id: str,
    request: UpdateSessionRequest,
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> ReviewSessionResponse:
    review_session = sessions.update_session_progress(db, user_id, session_id, current_index=request.current_index)
    return ReviewSessionResponse.model_validate(review_session)


@router.post("/session/{session_id}/complete", response_model=ReviewSessionResponse)
def complete_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> ReviewSessionResponse:
    return ReviewSessionResponse.model_validate(sessions.complete_session(db, user_id, session_id))


@router.get("/history", response_model=List[ReviewSessionResponse])
def session_history(
    limit: int = Query(default=10, ge=1, le=50),
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> List[ReviewSessionResponse]:
    return [ReviewSessionResponse.model_validate(s) for s in sessions.session_history(db, user_id, limit)]


# ============================================================================
# VERDICTS
# ============================================================================

@router.post("/swipe", response_model=SwipeResponse)
def swipe(
    request: SwipeRequest,
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> SwipeResponse:
    result = sessions.record_swipe(db, user_id, request.session_id, request.item_id, request.direction)
    return SwipeResponse(
        action=result.action,
        message=result.message,
        undoable=result.undoable,
        open_modal=result.open_modal,
        previous_state=result.previous_state,
    )


@router.post("/undo", response_model=UndoResponse)
def undo(
    request: UndoRequest,
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> UndoResponse:
    """Undo the item's latest verdict in the session; a second undo is rejected."""
    restored = sessions.undo_last_action(db, user_id, request.session_id, request.item_id)
    return UndoResponse(status=restored)


# ============================================================================
# CORRECTIONS
# ============================================================================

@router.post("/corrections", response_model=corrections.CorrectionResult)
def submit_correction(
    request: CorrectionRequest,
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> corrections.CorrectionResult:
    logger.info(
        "correction_request_received",
        item_id=request.inbox_item_id,
        correction_type=request.correction_type,
    )
    correction = corrections.CorrectionInput(
        inbox_item_id=request.inbox_item_id,
        user_id=user_id,
        session_id=request.session_id,
        correction_type=request.correction_type,
        corrected_category=request.corrected_category,
        corrected_actions=[
            corrections.ActionCorrection(**action.model_dump()) for action in request.corrected_actions
        ],
        user_reason=request.user_reason,
    )
    return corrections.process_correction(db, correction)


@router.get("/insights", response_model=corrections.CorrectionInsights)
def correction_insights(
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> corrections.CorrectionInsights:
    return corrections.correction_insights(db, user_id)
