"""
Classification package: AI classification of inbox items.

Main components:
- schemas: Pydantic views over the item's JSON blobs and pipeline value objects
- provider: Classification provider abstraction (OpenAI, Ollama)
- prompts: Versioned prompt templates
- normalizer: Total normalization of provider output
- engine: Single-item orchestration with retries and persistence
- ledger: Retry/failure bookkeeping and dead-letter records
- batch: Bounded-concurrency fan-out over the engine
"""

from inbox_triage.classification.schemas import (
    # Enums
    ItemStatus,
    ItemType,
    Category,
    ActionPriority,
    TagType,
    SwipeDirection,
    ReviewAction,

    # Models
    Classification,
    ClassificationContext,
    ClassificationResult,
    ExtractedAction,
    ProcessingMeta,
    Tag,
    UserFeedback,
    BatchResult,
)

__all__ = [
    # Enums
    "ItemStatus",
    "ItemType",
    "Category",
    "ActionPriority",
    "TagType",
    "SwipeDirection",
    "ReviewAction",

    # Models
    "Classification",
    "ClassificationContext",
    "ClassificationResult",
    "ExtractedAction",
    "ProcessingMeta",
    "Tag",
    "UserFeedback",
    "BatchResult",
]
