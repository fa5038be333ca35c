"""
Exception taxonomy for the inbox triage pipeline.

Transient provider failures are contained inside the classification engine and
the retry ledger; structural errors (not found, invalid state) surface to the
caller and are mapped to HTTP status codes by the API layer.
"""

from typing import Optional


class InboxTriageError(Exception):
    """Base class for all inbox triage errors."""


class ProviderError(InboxTriageError):
    """Transient failure calling the classification provider (retried)."""


class ValidationError(ProviderError):
    """Provider output is structurally unusable (retried like any provider error)."""


class ClassificationError(InboxTriageError):
    """
    Classification failed permanently for an item.

    Raised after the retry ledger has recorded the failure, so the item is
    already in its final (pending or error) state when the caller sees this.
    """

    def __init__(self, item_id: str, message: str, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.item_id = item_id
        self.last_error = last_error


class ClassificationCancelled(InboxTriageError):
    """Classification stopped during backoff because the process is shutting down."""


class NotFoundError(InboxTriageError):
    """Unknown item or session, or one owned by another user."""


class InvalidStateError(InboxTriageError):
    """Operation not allowed in the entity's current state."""


class NoActionToUndo(InvalidStateError):
    """No un-undone session action exists for the item."""
