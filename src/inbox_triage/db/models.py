"""
SQLAlchemy models for the inbox triage database.

Classification, feedback and processing metadata are stored as schema-less JSON
columns; their logical shape is defined by the pydantic models in
``inbox_triage.classification.schemas`` and enforced by the services, not by
the storage layer.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    """Owner of every other entity. ``settings`` holds per-user tuning."""

    __tablename__ = "users"

    id = Column(String, primary_key=True, default=_uuid)
    email = Column(String, nullable=False, unique=True)
    settings = Column(JSON, nullable=True)  # {"confidence_threshold": 0.6, "auto_archive_days": 15}
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email})>"


class Area(Base):
    __tablename__ = "areas"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (Index("idx_area_user", "user_id"),)


class Project(Base):
    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="active")  # active | completed | archived
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (Index("idx_project_user_status", "user_id", "status"),)


class InboxItem(Base):
    """
    A single captured unit of content.

    Status lifecycle: pending | processing | reviewed | archived | error
    """

    __tablename__ = "inbox_items"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    type = Column(String, nullable=False, default="manual")  # manual | image | voice | email | forward
    content = Column(Text, nullable=False, default="")
    source = Column(String, nullable=False, default="capture")
    media_url = Column(String, nullable=True)
    status = Column(String, nullable=False, default="pending")

    # Schema-less blobs
    ai_classification = Column(JSON(none_as_null=True), nullable=True)
    extracted_actions = Column(JSON, nullable=False, default=list)
    tags = Column(JSON, nullable=False, default=list)
    user_feedback = Column(JSON(none_as_null=True), nullable=True)

    # Auto-archive
    auto_archive_warning = Column(Boolean, nullable=True)
    auto_archive_date = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    reviewed_at = Column(DateTime, nullable=True)
    archived_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_inbox_user_status", "user_id", "status"),
        Index("idx_inbox_user_created", "user_id", "created_at"),
    )

    def __repr__(self):
        return f"<InboxItem(id={self.id}, status={self.status})>"


class ClassificationAudit(Base):
    """
    One append-only record per completed classification attempt.

    Only the user_* and session_id columns are ever updated, when a human
    verdict is attached (or cleared again by undo).
    """

    __tablename__ = "classification_audits"

    id = Column(String, primary_key=True, default=_uuid)
    inbox_item_id = Column(String, ForeignKey("inbox_items.id"), nullable=False)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)

    ai_category = Column(String, nullable=False)
    ai_confidence = Column(Float, nullable=False)
    ai_reasoning = Column(Text, nullable=True)
    ai_model = Column(String, nullable=True)
    ai_processed_at = Column(DateTime, nullable=False, default=utcnow)
    review_type = Column(String, nullable=False, default="auto")  # auto | daily_swipe

    user_action = Column(String, nullable=True)  # agree | urgent | hide
    user_reviewed_at = Column(DateTime, nullable=True)
    session_id = Column(String, nullable=True)

    __table_args__ = (
        Index("idx_audit_item", "inbox_item_id"),
        Index("idx_audit_user", "user_id"),
    )


class FailedWebhook(Base):
    """Dead-letter record for permanently failed classification attempts."""

    __tablename__ = "failed_webhooks"

    id = Column(String, primary_key=True, default=_uuid)
    type = Column(String, nullable=False)  # classify
    target = Column(String, nullable=False)
    payload = Column(JSON, nullable=False)
    error = Column(Text, nullable=False)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default="failed")
    created_at = Column(DateTime, nullable=False, default=utcnow)


class ReviewSession(Base):
    """A bounded-lifetime batch of items presented for swipe review."""

    __tablename__ = "review_sessions"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    item_ids = Column(JSON, nullable=False, default=list)
    current_index = Column(Integer, nullable=False, default=0)
    actions = Column(JSON, nullable=False, default=list)
    stats = Column(JSON, nullable=False, default=dict)
    started_at = Column(DateTime, nullable=False, default=utcnow)
    last_activity_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (Index("idx_session_user_completed", "user_id", "completed_at"),)


class UserCorrection(Base):
    """Immutable record of a human override, kept for insight only."""

    __tablename__ = "user_corrections"

    id = Column(String, primary_key=True, default=_uuid)
    inbox_item_id = Column(String, ForeignKey("inbox_items.id"), nullable=False)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    original_category = Column(String, nullable=False)
    original_confidence = Column(Float, nullable=False, default=0.0)
    corrected_category = Column(String, nullable=False)
    corrected_actions = Column(JSON, nullable=True)
    user_reason = Column(Text, nullable=True)
    content = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Note(Base):
    """Filing target created when an inbox item is filed to a project or area."""

    __tablename__ = "notes"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    title = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    project_id = Column(String, ForeignKey("projects.id"), nullable=True)
    area_id = Column(String, ForeignKey("areas.id"), nullable=True)
    source_inbox_item_id = Column(String, ForeignKey("inbox_items.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    action = Column(String, nullable=False)  # AUTO_ARCHIVE | INBOX_BANKRUPTCY
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
