"""FastAPI application exposing the chat window and sidebar actions."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import load_config, redact
from .directory import ConversationDirectory
from .errors import EmptyInputError, NotFoundError, RequestInFlightError
from .events import EventBus
from .llm import Completer, create_from_config
from .models import Conversation, ConversationSummary, SessionState
from .session import MessageSession
from .store import ConversationStore, StoreWriter, create_store

logger = logging.getLogger(__name__)


# -----------------------------
# Pydantic request/response
# -----------------------------
class ChatRequest(BaseModel):
    message: str = Field(..., description="Text typed by the user.")


class HealthResponse(BaseModel):
    ok: bool
    conversations: int
    store: str


# -----------------------------
# Utilities
# -----------------------------
def _configure_logging(cfg: Dict[str, Any]) -> None:
    level = str(cfg.get("logging", {}).get("level", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _in_flight() -> HTTPException:
    return HTTPException(status_code=409, detail="A reply is still pending.")


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    completer: Optional[Completer] = None,
    store: Optional[ConversationStore] = None,
) -> FastAPI:
    cfg = load_config(config_path)
    _configure_logging(cfg)

    # CORS
    cors_origins = cfg.get("server", {}).get("cors_origins", ["*"])

    # Services: one bus per app, every component gets it injected.
    if completer is None:
        completer = create_from_config(cfg)
    if store is None:
        store = create_store(cfg)
    bus = EventBus()
    writer = StoreWriter(store, bus)
    directory = ConversationDirectory(store, bus)
    session = MessageSession(completer, store, bus)

    app = FastAPI(title="Chat A.I+", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.bus = bus
    app.state.store = store
    app.state.writer = writer
    app.state.directory = directory
    app.state.session = session

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(ok=True, conversations=len(directory), store=type(store).__name__)

    @app.get("/config")
    def get_config() -> JSONResponse:
        return JSONResponse(redact(cfg))

    # ---- chat window ----
    # Session handlers are coroutines so every mutation runs on the event loop thread.
    @app.get("/session", response_model=SessionState)
    async def get_session() -> SessionState:
        return session.state

    @app.post("/chat", response_model=SessionState)
    async def chat(req: ChatRequest) -> SessionState:
        try:
            await session.send_message(req.message)
        except EmptyInputError:
            raise HTTPException(status_code=400, detail="Message cannot be empty.")
        except RequestInFlightError:
            raise _in_flight()
        return session.state

    @app.post("/chat/regenerate", response_model=SessionState)
    async def regenerate() -> SessionState:
        try:
            await session.regenerate()
        except RequestInFlightError:
            raise _in_flight()
        return session.state

    @app.post("/chat/new", response_model=SessionState)
    async def new_chat() -> SessionState:
        directory.request_new_chat()
        return session.state

    # ---- sidebar ----
    @app.get("/conversations", response_model=List[ConversationSummary])
    async def list_conversations() -> List[ConversationSummary]:
        return list(directory.summaries)

    @app.get("/conversations/{conversation_id}", response_model=Conversation)
    def get_conversation(conversation_id: int) -> Conversation:
        conv = store.load(conversation_id)
        if conv is None:
            raise HTTPException(status_code=404, detail="Conversation not found.")
        return conv

    @app.post("/conversations/{conversation_id}/select", response_model=SessionState)
    async def select_conversation(conversation_id: int) -> SessionState:
        try:
            directory.select(conversation_id)
        except NotFoundError:
            raise HTTPException(status_code=404, detail="Conversation not found.")
        return session.state

    return app
