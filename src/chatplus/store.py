"""Conversation persistence: an in-memory fake and a JSON file store (atomic writes)."""
from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from .events import EventBus, LogChanged
from .models import Conversation, ConversationSummary, Message

logger = logging.getLogger(__name__)

STORE_FILENAME = "conversations.json"


# -----------------------------
# Helpers
# -----------------------------
def _atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", encoding="utf-8", delete=False, dir=str(path.parent)) as tmp:
        tmp.write(text)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_name = tmp.name
    os.replace(tmp_name, path)


def _read_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _write_json(path: Path, obj: Any) -> None:
    _atomic_write_text(path, json.dumps(obj, ensure_ascii=False, indent=2))


# -----------------------------
# Interface
# -----------------------------
class ConversationStore(ABC):
    """Durable mapping from conversation id to its full record.

    Records are kept in creation order. ``save`` only ever replaces the
    message log of a record that ``create`` already inserted.
    """

    @abstractmethod
    def load(self, conversation_id: int) -> Optional[Conversation]:
        """Return the record for ``conversation_id`` or ``None``."""

    @abstractmethod
    def load_all(self) -> List[Conversation]:
        """Return every record, oldest first."""

    @abstractmethod
    def create(self, conversation_id: int, title: str) -> None:
        """Insert an empty record; no-op if it already exists."""

    @abstractmethod
    def save(self, conversation_id: int, messages: Iterable[Message]) -> bool:
        """Replace the message log. Returns ``False`` for an unknown id."""

    def summaries(self) -> List[ConversationSummary]:
        return [c.summary() for c in self.load_all()]


# -----------------------------
# MemoryStore
# -----------------------------
class MemoryStore(ConversationStore):
    """Process-local store; nothing survives a restart. Used in tests."""

    def __init__(self, conversations: Iterable[Conversation] = ()) -> None:
        self._records: Dict[int, Conversation] = {}
        for conv in conversations:
            self._records[conv.id] = conv.model_copy(deep=True)

    def load(self, conversation_id: int) -> Optional[Conversation]:
        conv = self._records.get(conversation_id)
        return conv.model_copy(deep=True) if conv is not None else None

    def load_all(self) -> List[Conversation]:
        return [c.model_copy(deep=True) for c in self._records.values()]

    def create(self, conversation_id: int, title: str) -> None:
        if conversation_id not in self._records:
            self._records[conversation_id] = Conversation(id=conversation_id, title=title)

    def save(self, conversation_id: int, messages: Iterable[Message]) -> bool:
        conv = self._records.get(conversation_id)
        if conv is None:
            logger.warning("Ignoring save for unknown conversation %s", conversation_id)
            return False
        conv.messages = list(messages)
        return True


# -----------------------------
# DiskStore
# -----------------------------
class DiskStore(ConversationStore):
    """All conversations in one JSON array under ``data_dir``.

    Layout:
        data_dir/
          conversations.json    # [{"id", "title", "messages": [...]}, ...]

    Every write replaces the whole file through a temp file and
    ``os.replace``, so readers never observe a half-written file.
    """

    def __init__(self, data_dir: str, *, filename: str = STORE_FILENAME) -> None:
        self.root = Path(data_dir)
        self.root.mkdir(parents=True, exist_ok=True)
        self.path = self.root / filename
        self._lock = threading.RLock()

    # --------- core API ----------
    def load(self, conversation_id: int) -> Optional[Conversation]:
        for conv in self.load_all():
            if conv.id == conversation_id:
                return conv
        return None

    def load_all(self) -> List[Conversation]:
        raw = self._read_raw()
        out: List[Conversation] = []
        for item in raw:
            try:
                out.append(Conversation.model_validate(item))
            except ValidationError as e:
                logger.warning("Skipping malformed record in %s: %s", self.path, e)
        return out

    def create(self, conversation_id: int, title: str) -> None:
        with self._lock:
            records = self.load_all()
            if any(c.id == conversation_id for c in records):
                return
            records.append(Conversation(id=conversation_id, title=title))
            self._write(records)

    def save(self, conversation_id: int, messages: Iterable[Message]) -> bool:
        with self._lock:
            records = self.load_all()
            for conv in records:
                if conv.id == conversation_id:
                    conv.messages = list(messages)
                    self._write(records)
                    return True
        logger.warning("Ignoring save for unknown conversation %s", conversation_id)
        return False

    # --------- internals ----------
    def _read_raw(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            data = _read_json(self.path)
        except ValueError:
            # Corruption fallback: keep a backup and start fresh.
            with self._lock:
                bad = self.path.with_suffix(".corrupt.json")
                logger.warning("Corrupt store file %s, moving it to %s", self.path, bad)
                try:
                    self.path.replace(bad)
                except OSError:
                    logger.exception("Could not move corrupt store file %s", self.path)
            return []
        if not isinstance(data, list):
            logger.warning("Unexpected store format in %s, expected a list", self.path)
            return []
        return data

    def _write(self, records: List[Conversation]) -> None:
        _write_json(self.path, [c.model_dump(mode="json") for c in records])


# -----------------------------
# LogChanged subscriber
# -----------------------------
class StoreWriter:
    """Writes every ``LogChanged`` event to the store, in arrival order."""

    def __init__(self, store: ConversationStore, bus: EventBus) -> None:
        self.store = store
        self._unsubscribe: Callable[[], None] = bus.subscribe(LogChanged, self._on_log_changed)

    def close(self) -> None:
        self._unsubscribe()

    def _on_log_changed(self, event: LogChanged) -> None:
        try:
            self.store.save(event.id, event.messages)
        except OSError:
            # Best effort: the in-memory session stays authoritative.
            logger.exception("Failed to persist conversation %s", event.id)


def create_store(cfg: Dict[str, Any]) -> ConversationStore:
    """Build the configured store from the ``storage`` config section."""
    st_cfg = (cfg or {}).get("storage", {}) or {}
    backend = str(st_cfg.get("backend", "disk")).lower()
    if backend == "memory":
        return MemoryStore()
    if backend != "disk":
        raise ValueError(f"Unknown storage backend: {backend!r}")
    return DiskStore(str(st_cfg.get("data_dir") or "data"))
