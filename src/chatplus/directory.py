"""Sidebar conversation list kept in step with the store through the event bus."""
from __future__ import annotations

import logging
from typing import Callable, List, Tuple

from .errors import NotFoundError
from .events import ConversationCreated, ConversationSelected, EventBus, NewChatRequested
from .models import ConversationSummary
from .store import ConversationStore

logger = logging.getLogger(__name__)


class ConversationDirectory:
    """Ordered ``{id, title}`` summaries, oldest first.

    The directory never touches the session. Selecting a conversation or
    asking for a new chat only publishes an event; the session reacts to it.
    """

    def __init__(self, store: ConversationStore, bus: EventBus) -> None:
        self.store = store
        self.bus = bus
        self._summaries: List[ConversationSummary] = store.summaries()
        self._unsubscribe: Callable[[], None] = bus.subscribe(ConversationCreated, self._on_created)
        logger.debug("Directory hydrated with %d conversations", len(self._summaries))

    # --------- queries ----------
    @property
    def summaries(self) -> Tuple[ConversationSummary, ...]:
        return tuple(self._summaries)

    def __len__(self) -> int:
        return len(self._summaries)

    def __contains__(self, conversation_id: object) -> bool:
        return any(s.id == conversation_id for s in self._summaries)

    # --------- user actions ----------
    def select(self, conversation_id: int) -> None:
        """Ask the session to show ``conversation_id``."""
        if conversation_id not in self:
            raise NotFoundError(conversation_id)
        self.bus.publish(ConversationSelected(id=conversation_id))

    def request_new_chat(self) -> None:
        self.bus.publish(NewChatRequested())

    def close(self) -> None:
        self._unsubscribe()

    # --------- events ----------
    def _on_created(self, event: ConversationCreated) -> None:
        if event.id in self:
            logger.warning("Conversation %s already listed; ignoring duplicate", event.id)
            return
        self._summaries.append(ConversationSummary(id=event.id, title=event.title))
        self.store.create(event.id, event.title)
        logger.info("Created conversation %s (%r)", event.id, event.title)
