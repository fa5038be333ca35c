"""
Normalization of provider output.

This is the single place where raw provider JSON is turned into a
``ClassificationResult``. Normalization is total: any value the provider may
send (missing keys, wrong types, out-of-range or non-numeric confidences)
maps to a valid result. Only output that is not a JSON object at all is
rejected, as a ``ValidationError`` the engine retries like any provider error.
"""

import json
import math
from typing import Any, Dict, List, Optional

import structlog

from inbox_triage.classification.schemas import (
    ActionPriority,
    Category,
    ClassificationResult,
    ExtractedAction,
    Tag,
    TagType,
)
from inbox_triage.errors import ValidationError


logger = structlog.get_logger(__name__)

DEFAULT_REASONING = "Classification completed"
DEFAULT_ACTION_CONFIDENCE = 0.5
DEFAULT_TAG_CONFIDENCE = 1.0

_CATEGORIES = {c.value for c in Category}
_PRIORITIES = {p.value for p in ActionPriority}
_TAG_TYPES = {t.value for t in TagType}


# ============================================================================
# PAYLOAD PARSING
# ============================================================================

def parse_provider_payload(content: Optional[str]) -> Dict[str, Any]:
    """
    Parse the provider's JSON text.

    Raises:
        ValidationError: Empty body, invalid JSON, or JSON that is not an object
    """
    if not content or not content.strip():
        raise ValidationError("Empty response from provider")

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid JSON from provider: {e}") from e

    if not isinstance(data, dict):
        raise ValidationError(
            f"Invalid classification response structure: expected object, got {type(data).__name__}"
        )

    return data


# ============================================================================
# FIELD COERCION
# ============================================================================

def clamp_confidence(value: Any, default: float = 0.0) -> float:
    """
    Coerce any value to a confidence in [0, 1].

    Numbers and numeric strings are clamped; booleans, NaN, infinities and
    anything else fall back to ``default``.

    Examples:
        >>> clamp_confidence(1.5)
        1.0
        >>> clamp_confidence("0.42")
        0.42
        >>> clamp_confidence(None)
        0.0
    """
    if isinstance(value, bool) or value is None:
        return default
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return default
    if not isinstance(value, (int, float)):
        return default

    value = float(value)
    if math.isnan(value) or math.isinf(value):
        return default
    return max(0.0, min(1.0, value))


def _normalize_category(value: Any) -> Category:
    if isinstance(value, str) and value.strip().lower() in _CATEGORIES:
        return Category(value.strip().lower())
    return Category.UNKNOWN


def _normalize_reasoning(value: Any) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return DEFAULT_REASONING


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def _first_present(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def normalize_actions(raw_actions: Any) -> List[ExtractedAction]:
    """Normalize extracted actions; a non-list becomes [] and non-object entries are dropped."""
    if not isinstance(raw_actions, list):
        return []

    actions = []
    for raw in raw_actions:
        if not isinstance(raw, dict):
            continue

        priority = raw.get("priority")
        priority = priority.lower() if isinstance(priority, str) else None
        due_date = _first_present(raw, "dueDate", "due_date")
        owner = raw.get("owner")

        action = ExtractedAction(
            description=_as_text(raw.get("description")),
            confidence=clamp_confidence(raw.get("confidence"), default=DEFAULT_ACTION_CONFIDENCE),
            priority=priority if priority in _PRIORITIES else ActionPriority.NORMAL,
            owner=owner if isinstance(owner, str) and owner else None,
            due_date=due_date if isinstance(due_date, str) and due_date else None,
        )
        if isinstance(raw.get("id"), str) and raw["id"]:
            action.id = raw["id"]
        actions.append(action)

    return actions


def normalize_tags(raw_tags: Any) -> List[Tag]:
    """Normalize tags; a non-list becomes [] and non-object entries are dropped."""
    if not isinstance(raw_tags, list):
        return []

    tags = []
    for raw in raw_tags:
        if not isinstance(raw, dict):
            continue

        tag_type = raw.get("type")
        tag_type = tag_type.lower() if isinstance(tag_type, str) else None
        linked_id = _first_present(raw, "linkedId", "linked_id")

        tags.append(Tag(
            type=tag_type if tag_type in _TAG_TYPES else TagType.TOPIC,
            value=_as_text(raw.get("value")),
            confidence=clamp_confidence(raw.get("confidence"), default=DEFAULT_TAG_CONFIDENCE),
            linked_id=linked_id if isinstance(linked_id, str) and linked_id else None,
        ))

    return tags


# ============================================================================
# RESULT NORMALIZATION
# ============================================================================

def normalize_result(raw: Any) -> ClassificationResult:
    """
    Normalize a raw provider result into a ClassificationResult.

    Args:
        raw: Parsed provider JSON (any shape)

    Returns:
        ClassificationResult with category defaulted to "unknown", confidence
        clamped to [0, 1], reasoning defaulted when blank, and actions/tags
        defaulted to empty lists when malformed
    """
    data = raw if isinstance(raw, dict) else {}

    result = ClassificationResult(
        category=_normalize_category(data.get("category")),
        confidence=clamp_confidence(data.get("confidence")),
        reasoning=_normalize_reasoning(data.get("reasoning")),
        extracted_actions=normalize_actions(_first_present(data, "extractedActions", "extracted_actions")),
        tags=normalize_tags(data.get("tags")),
    )

    if result.category == Category.UNKNOWN and data.get("category") not in (None, "unknown"):
        logger.debug("unrecognized_category_normalized", raw_category=str(data.get("category")))

    return result
