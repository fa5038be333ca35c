"""
Per-user settings read by the pipeline.

Settings are read fresh on every call; nothing is cached, so a changed
threshold takes effect on the next classification or queue read.
"""

from typing import Any, Dict

from pydantic import BaseModel
from sqlalchemy.orm import Session

from inbox_triage.classification.normalizer import clamp_confidence
from inbox_triage.config import settings
from inbox_triage.db.models import User
from inbox_triage.errors import NotFoundError


class UserPreferences(BaseModel):
    confidence_threshold: float
    auto_archive_days: int


def _raw_settings(session: Session, user_id: str) -> Dict[str, Any]:
    user = session.get(User, user_id)
    if user is None or not isinstance(user.settings, dict):
        return {}
    return user.settings


def get_confidence_threshold(session: Session, user_id: str) -> float:
    """User's auto-file threshold, falling back to the configured default (0.6)."""
    value = _raw_settings(session, user_id).get("confidence_threshold")
    if value is None:
        return settings.classification_default_threshold
    return clamp_confidence(value, default=settings.classification_default_threshold)


def get_auto_archive_days(session: Session, user_id: str) -> int:
    """Days before untouched items are auto-archived; 0 disables the sweep."""
    value = _raw_settings(session, user_id).get("auto_archive_days")
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return settings.auto_archive_default_days
    return value


def get_preferences(session: Session, user_id: str) -> UserPreferences:
    return UserPreferences(
        confidence_threshold=get_confidence_threshold(session, user_id),
        auto_archive_days=get_auto_archive_days(session, user_id),
    )


def update_preferences(session: Session, user_id: str, **changes: Any) -> UserPreferences:
    """Merge changes into the user's settings blob (a new dict, so the JSON column is flagged dirty)."""
    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")

    merged = dict(user.settings or {})
    merged.update({k: v for k, v in changes.items() if v is not None})
    user.settings = merged
    session.flush()
    return get_preferences(session, user_id)
