"""In-process publish/subscribe channel between session, directory and store.

Dispatch is synchronous: ``publish`` returns only after every handler that was
subscribed at publish time has run, in subscription order. Nothing is
buffered, so a handler subscribed later never sees earlier events.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Tuple, Type, TypeVar, Union

from .models import Message

logger = logging.getLogger(__name__)


# -----------------------------
# Events
# -----------------------------
@dataclass(frozen=True)
class ConversationCreated:
    id: int
    title: str


@dataclass(frozen=True)
class ConversationSelected:
    id: int


@dataclass(frozen=True)
class NewChatRequested:
    pass


@dataclass(frozen=True)
class LogChanged:
    id: int
    messages: Tuple[Message, ...]


Event = Union[ConversationCreated, ConversationSelected, NewChatRequested, LogChanged]
E = TypeVar("E", bound=Event)
Handler = Callable[[E], None]


# -----------------------------
# Bus
# -----------------------------
class EventBus:
    """Fire-and-forget event channel; one instance is injected per app."""

    def __init__(self) -> None:
        self._handlers: Dict[type, List[Callable]] = {}

    def subscribe(self, event_type: Type[E], handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``event_type``; returns an unsubscribe function."""
        self._handlers.setdefault(event_type, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, event: Event) -> None:
        # Copy so handlers may (un)subscribe while we iterate.
        handlers = list(self._handlers.get(type(event), ()))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Handler %r failed on %s", handler, type(event).__name__)

    def handler_count(self, event_type: type) -> int:
        return len(self._handlers.get(event_type, ()))
