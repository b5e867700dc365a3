"""Conversation data model shared by the session, directory and store."""
from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


# -----------------------------
# Constants
# -----------------------------
TITLE_MAX_CHARS = 30
TITLE_ELLIPSIS = "..."

THINKING_TEXT = "Thinking…"
RETHINKING_TEXT = "Rethinking…"
SEND_ERROR_TEXT = "Error: Unable to fetch response. Please try again."
REGENERATE_ERROR_TEXT = "Error: Unable to regenerate response. Please try again."


class Sender(str, Enum):
    """Who wrote a message."""

    USER = "user"
    ASSISTANT = "assistant"


class Status(str, Enum):
    """Lifecycle of a message; only assistant replies are ever pending."""

    FINAL = "final"
    PENDING = "pending"
    ERROR = "error"


class Message(BaseModel):
    """A single chat entry. Frozen: replacements swap the whole object."""

    model_config = ConfigDict(frozen=True)

    sender: Sender
    text: str
    status: Status = Status.FINAL

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(sender=Sender.USER, text=text)

    @classmethod
    def assistant(cls, text: str, status: Status = Status.FINAL) -> "Message":
        return cls(sender=Sender.ASSISTANT, text=text, status=status)

    @property
    def is_pending(self) -> bool:
        return self.status is Status.PENDING


class ConversationSummary(BaseModel):
    """Sidebar entry: just enough to list and select a conversation."""

    id: int
    title: str


class Conversation(BaseModel):
    """Persisted record: one per conversation, keyed by ``id``."""

    id: int
    title: str
    messages: List[Message] = Field(default_factory=list)

    def summary(self) -> ConversationSummary:
        return ConversationSummary(id=self.id, title=self.title)


class SessionState(BaseModel):
    """Snapshot of what the chat window currently shows."""

    active_conversation_id: Optional[int] = None
    messages: List[Message] = Field(default_factory=list)
    started: bool = False


def derive_title(text: str, limit: int = TITLE_MAX_CHARS) -> str:
    """Title for a new conversation from its first user input.

    >>> derive_title("Hello")
    'Hello'
    >>> derive_title("x" * 31)[-3:]
    '...'
    """
    if len(text) > limit:
        return text[:limit] + TITLE_ELLIPSIS
    return text


def build_prompt(messages: List[Message]) -> str:
    """Flatten a message log into the single prompt string sent upstream."""
    return "\n".join(m.text for m in messages)
