"""Exception types raised by the chat core."""
from __future__ import annotations


class ChatError(Exception):
    """Base class for all chatplus errors."""


class EmptyInputError(ChatError, ValueError):
    """Raised when a message is empty or whitespace-only. Nothing is changed."""


class CompletionError(ChatError):
    """The remote completion call failed (transport, HTTP status or payload)."""


class NotFoundError(ChatError, LookupError):
    """No conversation is stored under the requested id."""

    def __init__(self, conversation_id: object) -> None:
        super().__init__(f"conversation not found: {conversation_id!r}")
        self.conversation_id = conversation_id


class RequestInFlightError(ChatError):
    """A send or regenerate is already waiting on the completion call."""
