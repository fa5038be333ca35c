"""
Typed views over the inbox item's JSON blobs and the pipeline's value objects.

The storage layer keeps classification, feedback and processing metadata as
schema-less JSON. These Pydantic models are applied at every service boundary:
blobs are parsed with ``from_blob()`` on read and written back with
``to_blob()``, so no component passes raw dicts to another.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

logger = structlog.get_logger(__name__)


# ============================================================================
# ENUMS
# ============================================================================

class ItemStatus(str, Enum):
    """Closed set of inbox item states."""
    PENDING = "pending"
    PROCESSING = "processing"
    REVIEWED = "reviewed"
    ARCHIVED = "archived"
    ERROR = "error"


class ItemType(str, Enum):
    MANUAL = "manual"
    IMAGE = "image"
    VOICE = "voice"
    EMAIL = "email"
    FORWARD = "forward"


class Category(str, Enum):
    """Classification categories the provider may return."""
    ACTION = "action"
    NOTE = "note"
    REFERENCE = "reference"
    MEETING = "meeting"
    UNKNOWN = "unknown"


class ActionPriority(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class TagType(str, Enum):
    TOPIC = "topic"
    PERSON = "person"
    PROJECT = "project"
    AREA = "area"
    DATE = "date"
    LOCATION = "location"
    SYSTEM = "system"


class SwipeDirection(str, Enum):
    RIGHT = "right"
    LEFT = "left"
    UP = "up"
    DOWN = "down"


class ReviewAction(str, Enum):
    AGREE = "agree"
    DISAGREE = "disagree"
    URGENT = "urgent"
    HIDE = "hide"


DIRECTION_TO_ACTION = {
    SwipeDirection.RIGHT: ReviewAction.AGREE,
    SwipeDirection.LEFT: ReviewAction.DISAGREE,
    SwipeDirection.UP: ReviewAction.URGENT,
    SwipeDirection.DOWN: ReviewAction.HIDE,
}


# ============================================================================
# BLOB MODELS
# ============================================================================

class _Blob(BaseModel):
    """Base for models persisted into JSON columns."""

    model_config = ConfigDict(use_enum_values=True)

    @classmethod
    def from_blob(cls, blob: Any):
        """
        Parse a stored JSON blob.

        Returns None for a missing blob. A blob that no longer matches the
        model is logged and treated as missing rather than crashing readers.
        """
        if not isinstance(blob, dict):
            return None
        try:
            return cls.model_validate(blob)
        except PydanticValidationError as e:
            logger.warning("blob_parse_failed", model=cls.__name__, error=str(e))
            return None

    def to_blob(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class ProcessingMeta(_Blob):
    """Retry bookkeeping embedded in the classification blob."""
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    retry_count: int = 0
    next_retry_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    processing_time_ms: Optional[int] = None


class Classification(_Blob):
    """
    The item's classification blob.

    Only ``processing_meta`` is guaranteed: an item that is being (or failed
    to be) classified carries metadata but no category/confidence yet.
    """
    category: Optional[str] = None
    confidence: Optional[float] = None
    reasoning: Optional[str] = None
    model_used: Optional[str] = None
    processing_time_ms: Optional[int] = None
    processed_at: Optional[datetime] = None
    auto_filed: bool = False
    error: Optional[str] = None
    processing_meta: ProcessingMeta = Field(default_factory=ProcessingMeta)

    # Set by the correction flow
    user_corrected: Optional[bool] = None
    original_category: Optional[str] = None
    corrected_at: Optional[datetime] = None

    @property
    def has_result(self) -> bool:
        """True once a provider result (with a confidence) has been stored."""
        return self.confidence is not None


class UserFeedback(_Blob):
    """Human verdict recorded on the item."""
    agreed: Optional[bool] = None
    needs_correction: Optional[bool] = None
    deferred_to_weekly: Optional[bool] = None
    hidden: Optional[bool] = None
    marked_urgent: Optional[bool] = None
    corrected: Optional[bool] = None
    corrected_category: Optional[str] = None
    user_reason: Optional[str] = None
    filed_to: Optional[Dict[str, str]] = None
    session_id: Optional[str] = None
    reviewed_at: Optional[datetime] = None


class ExtractedAction(_Blob):
    """Candidate task extracted from item content."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    description: str = ""
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    priority: ActionPriority = ActionPriority.NORMAL
    owner: Optional[str] = None
    due_date: Optional[str] = None
    user_added: Optional[bool] = None

    def to_blob(self) -> Dict[str, Any]:
        # owner/due_date are always present so snapshots compare field-for-field
        return self.model_dump(mode="json", exclude={"user_added"} if self.user_added is None else set())


class Tag(_Blob):
    type: TagType = TagType.TOPIC
    value: str = ""
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    linked_id: Optional[str] = None


# ============================================================================
# PIPELINE VALUE OBJECTS
# ============================================================================

class ClassificationResult(BaseModel):
    """Normalized provider result. Every field is guaranteed in range."""
    category: Category
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str
    extracted_actions: List[ExtractedAction] = Field(default_factory=list)
    tags: List[Tag] = Field(default_factory=list)


class ClassificationContext(BaseModel):
    """Optional hints passed to the provider alongside the content."""
    areas: List[str] = Field(default_factory=list)
    projects: List[str] = Field(default_factory=list)
    source: Optional[str] = None


class FailureDecision(BaseModel):
    should_retry: bool
    next_retry_at: Optional[datetime] = None


class PreviousState(BaseModel):
    """Snapshot taken before a swipe verdict, sufficient to reverse it."""
    status: ItemStatus
    extracted_actions: List[Dict[str, Any]] = Field(default_factory=list)
    reviewed_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    # Feedback already on the item before the verdict (normally none)
    user_feedback: Optional[Dict[str, Any]] = None


class SwipeResult(BaseModel):
    action: ReviewAction
    message: str
    undoable: bool = True
    open_modal: Optional[str] = None
    previous_state: PreviousState


class SessionAction(BaseModel):
    """One entry in a review session's append-only action log."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    item_id: str
    action: ReviewAction
    timestamp: datetime
    undone: bool = False
    previous_state: PreviousState
    correction_id: Optional[str] = None


STAT_FIELD_BY_ACTION = {
    ReviewAction.AGREE: "agreed",
    ReviewAction.DISAGREE: "disagreed",
    ReviewAction.URGENT: "urgent",
    ReviewAction.HIDE: "hidden",
}


class SessionStats(BaseModel):
    agreed: int = 0
    disagreed: int = 0
    urgent: int = 0
    hidden: int = 0
    total_time_ms: int = 0
    expired: Optional[bool] = None

    def to_blob(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ItemStatusView(BaseModel):
    """Polling view of an item's classification progress."""
    id: str
    status: ItemStatus
    category: Optional[str] = None
    confidence: Optional[float] = None
    error: Optional[str] = None
    retry_count: int = 0


class QueueCounts(BaseModel):
    needs_review: int
    disagreements: int
    mandatory: int
    is_complete: bool


@dataclass
class BatchResult:
    """
    Outcome of a batch classification run.

    ``results`` maps item id to its ClassificationResult, or to the error
    message when that item failed.
    """
    succeeded: int = 0
    failed: int = 0
    results: Dict[str, Union[ClassificationResult, str]] = field(default_factory=dict)
