"""
API request and response models for FastAPI endpoints.

This module defines the Pydantic models used for API request/response validation.
ORM rows are converted with ``model_validate(row)`` (``from_attributes``).
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from inbox_triage.classification.schemas import (
    Category,
    ItemStatus,
    ItemStatusView,
    ItemType,
    PreviousState,
    ReviewAction,
    SwipeDirection,
)


MAX_CONTENT_LENGTH = 10000
MAX_POLL_IDS = 100


# ============================================================================
# HEALTH / VERSION
# ============================================================================

class PipelineVersion(BaseModel):
    """
    Component versions recorded for audit and debugging.

    Same versions + same provider output = same stored classification.
    """

    model_version: str = Field(description="Provider/model identifier", examples=["openai/gpt-4o-mini"])
    prompt_version: str = Field(description="System prompt version", examples=["inbox-prompt-1.2"])
    normalizer_version: str = Field(description="Provider output normalizer version")
    classification_version: str = Field(description="Classification engine version")
    review_version: str = Field(description="Swipe review semantics version")

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    def to_repr(self) -> str:
        """Short representation for logging."""
        return f"Pipeline-{self.model_version}-{self.prompt_version}"


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service status", examples=["healthy"])
    version: str = Field(description="API version", examples=["1.0.0"])
    uptime_seconds: float = Field(description="Service uptime")


class VersionResponse(BaseModel):
    """Version information response."""

    api_version: str = Field(description="API version")
    pipeline_version: PipelineVersion = Field(description="Current pipeline version")


# ============================================================================
# INBOX
# ============================================================================

class InboxItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    type: ItemType
    content: str
    source: str
    media_url: Optional[str] = None
    status: ItemStatus
    ai_classification: Optional[Dict[str, Any]] = None
    extracted_actions: List[Dict[str, Any]] = Field(default_factory=list)
    tags: List[Dict[str, Any]] = Field(default_factory=list)
    user_feedback: Optional[Dict[str, Any]] = None
    auto_archive_warning: Optional[bool] = None
    auto_archive_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    reviewed_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None


class CreateItemRequest(BaseModel):
    """Capture request. Image captures need a media URL; everything else needs text."""

    type: ItemType = ItemType.MANUAL
    content: str = Field(default="", max_length=MAX_CONTENT_LENGTH)
    source: str = Field(default="capture", min_length=1, max_length=100)
    media_url: Optional[str] = None

    @model_validator(mode="after")
    def check_payload(self) -> "CreateItemRequest":
        if self.type == ItemType.IMAGE:
            if not self.media_url:
                raise ValueError("media_url is required for image items")
        elif not self.content.strip():
            raise ValueError("content is required")
        return self


class CreateItemResponse(BaseModel):
    item: InboxItemResponse
    classification_scheduled: bool


class ItemListResponse(BaseModel):
    items: List[InboxItemResponse]
    next_cursor: Optional[str] = None


class CountResponse(BaseModel):
    count: int


class StatusPollRequest(BaseModel):
    ids: List[str] = Field(..., max_length=MAX_POLL_IDS)


class StatusPollResponse(BaseModel):
    items: List[ItemStatusView]


class ReceiptResponse(BaseModel):
    """One machine classification as recorded in the audit trail."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    inbox_item_id: str
    ai_category: str
    ai_confidence: float
    ai_reasoning: Optional[str] = None
    ai_model: Optional[str] = None
    ai_processed_at: datetime
    review_type: str
    user_action: Optional[str] = None
    user_reviewed_at: Optional[datetime] = None
    session_id: Optional[str] = None


class ArchivedItemsResponse(BaseModel):
    items: List[InboxItemResponse]
    next_cursor: Optional[str] = None
    total: int
    unprocessed: int
    bankruptcy: int


class AutoArchiveResponse(BaseModel):
    warned: int
    archived: int


class BulkResponse(BaseModel):
    """Result of a bulk operation: number of items actually affected."""

    success: bool = True
    count: int


class PreferencesRequest(BaseModel):
    confidence_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    auto_archive_days: Optional[int] = Field(default=None, ge=0)


# ============================================================================
# QUEUES
# ============================================================================

class QueueItemsResponse(BaseModel):
    queue: str
    items: List[InboxItemResponse]
    count: int


# ============================================================================
# REVIEW
# ============================================================================

class ReviewSessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    item_ids: List[str]
    current_index: int
    actions: List[Dict[str, Any]] = Field(default_factory=list)
    stats: Dict[str, Any] = Field(default_factory=dict)
    started_at: datetime
    last_activity_at: datetime
    expires_at: datetime
    completed_at: Optional[datetime] = None


class ReviewSessionDetailResponse(BaseModel):
    session: ReviewSessionResponse
    items: List[InboxItemResponse]


class StartSessionRequest(BaseModel):
    force_new: bool = False


class UpdateSessionRequest(BaseModel):
    current_index: Optional[int] = Field(default=None, ge=0)


class SwipeRequest(BaseModel):
    session_id: str
    item_id: str
    direction: SwipeDirection


class SwipeResponse(BaseModel):
    action: ReviewAction
    message: str
    undoable: bool
    open_modal: Optional[str] = None
    previous_state: PreviousState


class UndoRequest(BaseModel):
    session_id: str
    item_id: str


class UndoResponse(BaseModel):
    success: bool = True
    status: ItemStatus


class CorrectionActionRequest(BaseModel):
    original_id: Optional[str] = None
    description: str = Field(..., min_length=1, max_length=500)
    keep: bool = True
    is_new: bool = False


class CorrectionRequest(BaseModel):
    inbox_item_id: str
    session_id: str
    correction_type: str = Field(..., pattern="^(fix_now|weekly_review)$")
    corrected_category: Optional[Category] = None
    corrected_actions: List[CorrectionActionRequest] = Field(default_factory=list)
    user_reason: Optional[str] = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def check_category_for_fix(self) -> "CorrectionRequest":
        if self.correction_type == "fix_now" and self.corrected_category is None:
            raise ValueError("corrected_category is required for fix_now corrections")
        return self
