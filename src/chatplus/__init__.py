"""chatplus: a chat window over a remote LLM with locally stored conversations.

The core is three cooperating components joined by an :class:`EventBus`:
a :class:`MessageSession` (the open conversation and its pending reply), a
:class:`ConversationDirectory` (the sidebar list) and a
:class:`ConversationStore` (persistence). :func:`create_app` wires them into a
FastAPI application.

Typical usage
-------------
from chatplus import create_app
app = create_app()

or, from the provided launcher:

python scripts/run_server.py --host 127.0.0.1 --port 8000
"""

from __future__ import annotations

from .directory import ConversationDirectory
from .errors import (
    ChatError,
    CompletionError,
    EmptyInputError,
    NotFoundError,
    RequestInFlightError,
)
from .events import (
    ConversationCreated,
    ConversationSelected,
    EventBus,
    LogChanged,
    NewChatRequested,
)
from .models import Conversation, ConversationSummary, Message, Sender, SessionState, Status
from .session import MessageSession
from .store import ConversationStore, DiskStore, MemoryStore, StoreWriter

__all__ = [
    "create_app",
    "__version__",
    "get_version",
    "ChatError",
    "CompletionError",
    "Conversation",
    "ConversationCreated",
    "ConversationDirectory",
    "ConversationSelected",
    "ConversationStore",
    "ConversationSummary",
    "DiskStore",
    "EmptyInputError",
    "EventBus",
    "LogChanged",
    "MemoryStore",
    "Message",
    "MessageSession",
    "NewChatRequested",
    "NotFoundError",
    "RequestInFlightError",
    "Sender",
    "SessionState",
    "Status",
    "StoreWriter",
]

# ---------------------------------------------------------------------
# Version handling
# ---------------------------------------------------------------------
__version__ = "0.1.0"


def get_version() -> str:
    """Return the package version."""
    return __version__


def create_app(*args, **kwargs):
    """Return a configured FastAPI application.

    This forwards to :func:`chatplus.server.create_app`; the import is
    deferred so the core can be used without loading FastAPI.
    """
    from .server import create_app as _create_app

    return _create_app(*args, **kwargs)
