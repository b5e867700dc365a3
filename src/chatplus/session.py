"""The chat window's live message log and its single in-flight reply."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from .errors import CompletionError, EmptyInputError, NotFoundError, RequestInFlightError
from .events import ConversationCreated, ConversationSelected, EventBus, LogChanged, NewChatRequested
from .llm import Completer
from .models import (
    REGENERATE_ERROR_TEXT,
    RETHINKING_TEXT,
    SEND_ERROR_TEXT,
    THINKING_TEXT,
    Message,
    Sender,
    SessionState,
    Status,
    build_prompt,
    derive_title,
)
from .store import ConversationStore

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class _PendingRequest:
    """Token for the one outstanding completion call.

    A result replaces the placeholder at ``index`` while the session shows
    ``conversation_id``. Otherwise it is written to that conversation's
    stored record, as long as the placeholder is still there.
    """

    conversation_id: int
    index: int


class MessageSession:
    """Owns the active conversation's messages and the send/regenerate protocol.

    States::

        Empty --send--> Active(pending) --reply--> Active(idle) --send/regenerate--> ...
        any --NewChatRequested--> Empty
        any --ConversationSelected--> Active(idle)
        Active(pending) --ConversationSelected(same id)--> Active(pending)

    Only one request may be pending; a second ``send_message`` or
    ``regenerate`` raises :class:`RequestInFlightError`. Navigating away does
    not cancel the outstanding call. Its result is kept out of the newly
    active window and saved to the conversation it was asked for.
    """

    def __init__(
        self,
        completer: Completer,
        store: ConversationStore,
        bus: EventBus,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.completer = completer
        self.store = store
        self.bus = bus
        self._clock = clock

        self._conversation_id: Optional[int] = None
        self._messages: List[Message] = []
        self._started = False
        self._pending: Optional[_PendingRequest] = None
        self._last_id = max((s.id for s in store.summaries()), default=0)

        self._unsubscribers = [
            bus.subscribe(NewChatRequested, self._on_new_chat),
            bus.subscribe(ConversationSelected, self._on_selected),
        ]

    # --------- state ----------
    @property
    def active_conversation_id(self) -> Optional[int]:
        return self._conversation_id

    @property
    def messages(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def started(self) -> bool:
        return self._started

    @property
    def pending(self) -> bool:
        return self._pending is not None

    @property
    def state(self) -> SessionState:
        return SessionState(
            active_conversation_id=self._conversation_id,
            messages=list(self._messages),
            started=self._started,
        )

    # --------- user actions ----------
    async def send_message(self, text: str) -> Optional[Message]:
        """Append ``text`` and a reply to it.

        Returns the resolved assistant message (final or error), or ``None``
        if the window shows another conversation when the reply arrives.
        """
        if not text or not text.strip():
            raise EmptyInputError("message is empty")
        self._ensure_idle()

        if not self._started:
            self._conversation_id = self._new_conversation_id()
            self.bus.publish(ConversationCreated(id=self._conversation_id, title=derive_title(text)))
            self._started = True

        self._append(Message.user(text.strip()))
        index = self._append(Message.assistant(THINKING_TEXT, Status.PENDING))
        request = self._begin(index)
        prompt = build_prompt(self._messages)
        return await self._resolve(request, prompt, SEND_ERROR_TEXT)

    async def regenerate(self) -> Optional[Message]:
        """Ask again for the most recent assistant reply.

        No-op returning ``None`` when the log has no assistant message.
        """
        self._ensure_idle()
        index = self._last_assistant_index()
        if index is None:
            return None

        self._replace(index, Message.assistant(RETHINKING_TEXT, Status.PENDING))
        request = self._begin(index)
        prompt = build_prompt(self._messages[:index])
        return await self._resolve(request, prompt, REGENERATE_ERROR_TEXT)

    def reset(self) -> None:
        """Back to an empty, unstarted window."""
        self._drop_pending()
        self._conversation_id = None
        self._messages = []
        self._started = False

    def load(self, conversation_id: int) -> None:
        """Replace the window's contents with a stored conversation.

        Re-selecting the conversation that is waiting for a reply keeps the
        request pending, so the reply still lands in the window.
        """
        conv = self.store.load(conversation_id)
        if conv is None:
            raise NotFoundError(conversation_id)
        if self._pending is not None and self._pending.conversation_id != conv.id:
            self._drop_pending()
        self._conversation_id = conv.id
        self._messages = list(conv.messages)
        self._started = True

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    # --------- events ----------
    def _on_new_chat(self, event: NewChatRequested) -> None:
        self.reset()

    def _on_selected(self, event: ConversationSelected) -> None:
        try:
            self.load(event.id)
        except NotFoundError:
            logger.warning("Selected conversation %s is not in the store; keeping current session", event.id)

    # --------- internals ----------
    def _ensure_idle(self) -> None:
        if self._pending is not None:
            raise RequestInFlightError("a reply is already pending")

    def _new_conversation_id(self) -> int:
        # Creation timestamp in ms, bumped so ids stay unique and increasing.
        cid = max(int(self._clock() * 1000), self._last_id + 1)
        self._last_id = cid
        return cid

    def _last_assistant_index(self) -> Optional[int]:
        for i in range(len(self._messages) - 1, -1, -1):
            if self._messages[i].sender is Sender.ASSISTANT:
                return i
        return None

    def _begin(self, index: int) -> _PendingRequest:
        self._pending = _PendingRequest(conversation_id=self._conversation_id, index=index)
        logger.debug("Requesting completion for conversation %s at index %d", self._conversation_id, index)
        return self._pending

    def _drop_pending(self) -> None:
        if self._pending is not None:
            logger.debug("Abandoning pending reply for conversation %s", self._pending.conversation_id)
        self._pending = None

    def _supersedes(self, request: _PendingRequest) -> bool:
        # A newer request waiting on the same slot owns its placeholder.
        other = self._pending
        return (
            other is not None
            and other is not request
            and other.conversation_id == request.conversation_id
            and other.index == request.index
        )

    async def _resolve(self, request: _PendingRequest, prompt: str, error_text: str) -> Optional[Message]:
        try:
            reply = await self.completer.complete(prompt)
        except asyncio.CancelledError:
            self._settle(request, Message.assistant(error_text, Status.ERROR))
            raise
        except CompletionError as e:
            logger.warning("Completion failed for conversation %s: %s", request.conversation_id, e)
            result = Message.assistant(error_text, Status.ERROR)
        except Exception:
            logger.exception("Completion backend raised for conversation %s", request.conversation_id)
            result = Message.assistant(error_text, Status.ERROR)
        else:
            result = Message.assistant(reply)
        return self._settle(request, result)

    def _settle(self, request: _PendingRequest, result: Message) -> Optional[Message]:
        """Put ``result`` where the request's placeholder is.

        Returns ``result`` when it landed in the window. A reply for a
        conversation the user has left goes to the store only.
        """
        if self._pending is request:
            self._pending = None
        elif self._supersedes(request):
            logger.debug("Discarding superseded reply for conversation %s", request.conversation_id)
            return None

        if self._conversation_id != request.conversation_id:
            self._settle_abandoned(request, result)
            return None
        if not _holds_placeholder(self._messages, request.index):
            logger.debug("Discarding late reply for conversation %s", request.conversation_id)
            return None
        self._replace(request.index, result)
        return result

    def _settle_abandoned(self, request: _PendingRequest, result: Message) -> None:
        try:
            conv = self.store.load(request.conversation_id)
        except OSError:
            logger.exception("Could not read conversation %s to store a late reply", request.conversation_id)
            return
        if conv is None or not _holds_placeholder(conv.messages, request.index):
            logger.debug("Discarding late reply for conversation %s", request.conversation_id)
            return
        messages = list(conv.messages)
        messages[request.index] = result
        logger.debug("Storing late reply for inactive conversation %s", request.conversation_id)
        self.bus.publish(LogChanged(id=request.conversation_id, messages=tuple(messages)))

    def _append(self, message: Message) -> int:
        self._messages.append(message)
        self._publish_log()
        return len(self._messages) - 1

    def _replace(self, index: int, message: Message) -> None:
        self._messages[index] = message
        self._publish_log()

    def _publish_log(self) -> None:
        if self._conversation_id is None:
            return
        self.bus.publish(LogChanged(id=self._conversation_id, messages=tuple(self._messages)))


def _holds_placeholder(messages: List[Message], index: int) -> bool:
    return 0 <= index < len(messages) and messages[index].is_pending
