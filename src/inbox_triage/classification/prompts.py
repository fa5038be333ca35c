"""
Prompt management for inbox item classification.

Provides the versioned system prompt and the user message builder that
combines the (truncated) item content with the owner's context.
"""

from typing import Optional, Tuple

from inbox_triage.classification.schemas import ClassificationContext
from inbox_triage.config import settings
from inbox_triage.version import PROMPT_VERSION


# ============================================================================
# SYSTEM PROMPT
# ============================================================================

SYSTEM_PROMPT_V1_2 = """You are an AI assistant that classifies inbox items for a personal productivity app.

Analyze the content and return a JSON response with:
1. category: "action" | "note" | "reference" | "meeting" | "unknown"
2. confidence: 0.0-1.0 (how certain you are)
3. reasoning: Brief explanation (1-2 sentences)
4. extractedActions: Array of action items (if category is "action")
5. tags: Array of extracted tags

CLASSIFICATION RULES:
- "action": Contains something the user needs to DO
  - Keywords: call, buy, schedule, email, send, fix, update, create, book, remind
  - Examples: "Call John tomorrow", "Buy groceries", "Schedule dentist appointment"

- "note": Information to remember but no action required
  - Examples: "Great quote from the book", "Interesting fact about space"

- "reference": Reference material to save for later
  - Examples: "Article about React patterns", "Link to documentation"

- "meeting": Meeting notes, agenda items, or calendar-related
  - Examples: "Meeting with Sarah - discussed Q4 goals", "Team standup notes"

- "unknown": Cannot determine category with confidence
  - Use when content is ambiguous or unclear

For extractedActions, include:
- description: The action text
- confidence: How certain this is an action (0.0-1.0)
- priority: "urgent" | "high" | "normal" | "low" (based on language)
- dueDate: ISO date string if mentioned (null otherwise)

For tags, include:
- type: "topic" | "person" | "project" | "area" | "date" | "location"
- value: The extracted value

Return ONLY valid JSON matching this schema."""


_SYSTEM_PROMPTS = {
    "inbox-prompt-1.2": SYSTEM_PROMPT_V1_2,
}


# ============================================================================
# PROMPT BUILDING
# ============================================================================

def get_system_prompt(version: str = PROMPT_VERSION) -> str:
    """
    Get system prompt by version.

    Raises:
        ValueError: If version not found
    """
    try:
        return _SYSTEM_PROMPTS[version]
    except KeyError:
        raise ValueError(f"Unknown prompt version: {version}")


def truncate_content(content: str, max_length: Optional[int] = None) -> str:
    """Bound provider cost and latency by cutting content to max_length characters."""
    max_length = max_length or settings.classification_max_content_length
    return (content or "")[:max_length]


def build_user_message(content: str, context: Optional[ClassificationContext] = None) -> str:
    """
    Build the user message from item content and optional owner context.

    Args:
        content: Raw item text (truncated here)
        context: Area names, active project names and capture source

    Returns:
        Formatted user message
    """
    context_lines = []
    if context is not None:
        if context.source:
            context_lines.append(f"Source: {context.source}")
        if context.areas:
            context_lines.append(f"User's areas: {', '.join(context.areas)}")
        if context.projects:
            context_lines.append(f"User's active projects: {', '.join(context.projects)}")

    message = f'Content to classify:\n"""\n{truncate_content(content)}\n"""\n'
    if context_lines:
        message += "\nContext:\n" + "\n".join(context_lines)

    return message


def build_classification_prompt(
    content: str,
    context: Optional[ClassificationContext] = None,
    prompt_version: Optional[str] = None
) -> Tuple[str, str]:
    """
    Build complete classification prompt.

    Returns:
        (system_prompt, user_message) tuple
    """
    system_prompt = get_system_prompt(prompt_version or PROMPT_VERSION)
    return system_prompt, build_user_message(content, context)
