"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path
from typing import List, Optional

import pytest

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from chatplus.directory import ConversationDirectory  # noqa: E402
from chatplus.errors import CompletionError  # noqa: E402
from chatplus.events import EventBus  # noqa: E402
from chatplus.session import MessageSession  # noqa: E402
from chatplus.store import MemoryStore, StoreWriter  # noqa: E402

FIXED_NOW = 1_700_000_000.0


# -----------------------------------------------------------------------------
# Completion doubles
# -----------------------------------------------------------------------------
class SpyCompleter:
    """Records every prompt and answers with a canned reply (or fails)."""

    def __init__(self, reply: str = "ok", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.prompts: List[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply


class GatedCompleter:
    """Blocks each call until :meth:`release` so tests can act mid-request."""

    def __init__(self, reply: str = "late reply"):
        self.reply = reply
        self.prompts: List[str] = []
        self._gate: Optional[asyncio.Future] = None

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        self._gate = asyncio.get_running_loop().create_future()
        await self._gate
        return self.reply

    def release(self) -> None:
        assert self._gate is not None, "no call is waiting"
        self._gate.set_result(None)

    async def wait_for_call(self, n: int = 1) -> None:
        while len(self.prompts) < n:
            await asyncio.sleep(0)


def failing_completer() -> SpyCompleter:
    return SpyCompleter(error=CompletionError("upstream down"))


# -----------------------------------------------------------------------------
# Wiring
# -----------------------------------------------------------------------------
class Chat:
    """Bus + store + directory + session wired the way the server does it."""

    def __init__(self, completer, store: Optional[MemoryStore] = None):
        self.bus = EventBus()
        self.store = store if store is not None else MemoryStore()
        self.writer = StoreWriter(self.store, self.bus)
        self.directory = ConversationDirectory(self.store, self.bus)
        self.session = MessageSession(completer, self.store, self.bus, clock=lambda: FIXED_NOW)
        self.completer = completer


@pytest.fixture(scope="function")
def spy() -> SpyCompleter:
    return SpyCompleter(reply="Hi there")


@pytest.fixture(scope="function")
def chat(spy: SpyCompleter) -> Chat:
    return Chat(spy)


@pytest.fixture(scope="function")
def tmp_data_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for the conversation store during tests."""
    d = tmp_path / "data"
    d.mkdir(parents=True, exist_ok=True)
    return d


@pytest.fixture(scope="function")
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    for var in ["CHATPLUS_CONFIG", "GEMINI_API_KEY", "GOOGLE_API_KEY"]:
        monkeypatch.delenv(var, raising=False)
    for var in list(os.environ):
        if var.startswith("CHATPLUS__"):
            monkeypatch.delenv(var, raising=False)
    yield
