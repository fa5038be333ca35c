"""
Per-user settings routes (confidence threshold, auto-archive days).
"""

from fastapi import APIRouter, Depends

from inbox_triage.api.dependencies import get_current_user_id, get_db
from inbox_triage.api.models import PreferencesRequest
from inbox_triage.db.database import Database
from inbox_triage.inbox.user_settings import UserPreferences, get_preferences, update_preferences

router = APIRouter()


@router.get("", response_model=UserPreferences)
def read_settings(
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> UserPreferences:
    with db.session() as session:
        return get_preferences(session, user_id)


@router.patch("", response_model=UserPreferences)
def change_settings(
    request: PreferencesRequest,
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
) -> UserPreferences:
    """Changes apply to the next classification and queue read; nothing is re-derived eagerly."""
    with db.session() as session:
        return update_preferences(session, user_id, **request.model_dump(exclude_none=True))
