"""
Persistence layer: SQLAlchemy models and session management.
"""

from .database import Database, get_database, set_database
from .models import (
    Area,
    AuditLog,
    Base,
    ClassificationAudit,
    FailedWebhook,
    InboxItem,
    Note,
    Project,
    ReviewSession,
    User,
    UserCorrection,
    utcnow,
)

__all__ = [
    "Database",
    "get_database",
    "set_database",
    "Base",
    "User",
    "Area",
    "Project",
    "InboxItem",
    "ClassificationAudit",
    "FailedWebhook",
    "ReviewSession",
    "UserCorrection",
    "Note",
    "AuditLog",
    "utcnow",
]
