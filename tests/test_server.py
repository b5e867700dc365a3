from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from chatplus.errors import CompletionError
from chatplus.models import THINKING_TEXT
from chatplus.server import create_app
from chatplus.store import DiskStore, MemoryStore

from conftest import GatedCompleter, SpyCompleter


def _client(tmp_path: Path, completer=None, store=None) -> TestClient:
    app = create_app(
        config_path=str(tmp_path / "missing.yaml"),
        completer=completer or SpyCompleter("ok"),
        store=store if store is not None else MemoryStore(),
    )
    return TestClient(app)


def test_chat_endpoint_roundtrip(clean_env, tmp_path: Path):
    """Basic sanity check: /chat returns the resolved reply and persists it."""
    store = DiskStore(str(tmp_path / "data"))
    client = _client(tmp_path, store=store)

    r = client.post("/chat", json={"message": "Hello"})
    assert r.status_code == 200
    body = r.json()
    assert body["started"] is True
    assert body["messages"] == [
        {"sender": "user", "text": "Hello", "status": "final"},
        {"sender": "assistant", "text": "ok", "status": "final"},
    ]

    cid = body["active_conversation_id"]
    assert client.get("/conversations").json() == [{"id": cid, "title": "Hello"}]
    assert [m.text for m in store.load(cid).messages] == ["Hello", "ok"]


def test_prompt_includes_history(clean_env, tmp_path: Path):
    """Second turn sends every earlier message plus the new placeholder."""
    spy = SpyCompleter(reply="second")
    client = _client(tmp_path, completer=spy)

    client.post("/chat", json={"message": "Hi there"})
    client.post("/chat", json={"message": "How are you?"})

    assert spy.prompts[-1] == "\n".join(["Hi there", "second", "How are you?", THINKING_TEXT])
    assert len(client.get("/session").json()["messages"]) == 4


def test_empty_message_is_rejected(clean_env, tmp_path: Path):
    client = _client(tmp_path)
    r = client.post("/chat", json={"message": "   "})
    assert r.status_code == 400
    assert client.get("/session").json() == {"active_conversation_id": None, "messages": [], "started": False}
    assert client.get("/conversations").json() == []


def test_completion_failure_is_shown_in_chat(clean_env, tmp_path: Path):
    client = _client(tmp_path, completer=SpyCompleter(error=CompletionError("down")))
    r = client.post("/chat", json={"message": "Hello"})
    assert r.status_code == 200
    assert r.json()["messages"][-1]["status"] == "error"


def test_regenerate_endpoint(clean_env, tmp_path: Path):
    spy = SpyCompleter("first")
    client = _client(tmp_path, completer=spy)
    client.post("/chat", json={"message": "Hello"})
    spy.reply = "second"

    r = client.post("/chat/regenerate")

    assert r.status_code == 200
    assert [m["text"] for m in r.json()["messages"]] == ["Hello", "second"]
    assert spy.prompts[-1] == "Hello"


def test_regenerate_on_empty_session_is_noop(clean_env, tmp_path: Path):
    client = _client(tmp_path)
    r = client.post("/chat/regenerate")
    assert r.status_code == 200
    assert r.json()["messages"] == []


def test_new_chat_and_select(clean_env, tmp_path: Path):
    client = _client(tmp_path)
    first = client.post("/chat", json={"message": "first chat"}).json()["active_conversation_id"]

    r = client.post("/chat/new")
    assert r.json() == {"active_conversation_id": None, "messages": [], "started": False}

    second = client.post("/chat", json={"message": "second chat"}).json()["active_conversation_id"]
    assert second != first
    assert [c["title"] for c in client.get("/conversations").json()] == ["first chat", "second chat"]

    r = client.post(f"/conversations/{first}/select")
    assert r.status_code == 200
    assert r.json()["active_conversation_id"] == first
    assert r.json()["messages"][0]["text"] == "first chat"

    record = client.get(f"/conversations/{second}").json()
    assert record["title"] == "second chat"
    assert len(record["messages"]) == 2


def test_unknown_conversation_is_404(clean_env, tmp_path: Path):
    client = _client(tmp_path)
    assert client.get("/conversations/123").status_code == 404
    assert client.post("/conversations/123/select").status_code == 404


def test_health_and_config(clean_env, monkeypatch, tmp_path: Path):
    monkeypatch.setenv("CHATPLUS__LLM__API_KEY", "very-secret")
    client = _client(tmp_path)
    client.post("/chat", json={"message": "Hello"})

    assert client.get("/health").json() == {"ok": True, "conversations": 1, "store": "MemoryStore"}
    cfg = client.get("/config").json()
    assert cfg["llm"]["api_key"] == "***"


@pytest.mark.asyncio
async def test_concurrent_chat_request_gets_409(clean_env, tmp_path: Path):
    gated = GatedCompleter("done")
    app = create_app(config_path=str(tmp_path / "missing.yaml"), completer=gated, store=MemoryStore())
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        first = asyncio.create_task(client.post("/chat", json={"message": "one"}))
        await gated.wait_for_call()

        second = await client.post("/chat", json={"message": "two"})
        assert second.status_code == 409
        assert (await client.post("/chat/regenerate")).status_code == 409

        gated.release()
        r = await first
        assert r.status_code == 200
        assert [m["text"] for m in r.json()["messages"]] == ["one", "done"]
