"""Completion backends: the Gemini REST API over httpx."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx

from .errors import CompletionError

logger = logging.getLogger(__name__)


# -----------------------------
# Types & defaults
# -----------------------------
DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_TIMEOUT = 60.0


class Completer(Protocol):
    """Anything that turns a prompt into a reply, raising CompletionError on failure."""

    async def complete(self, prompt: str) -> str:
        ...


@dataclass
class GenerationConfig:
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    max_output_tokens: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.temperature is not None:
            out["temperature"] = float(self.temperature)
        if self.top_p is not None:
            out["topP"] = float(self.top_p)
        if self.top_k is not None:
            out["topK"] = int(self.top_k)
        if self.max_output_tokens is not None:
            out["maxOutputTokens"] = int(self.max_output_tokens)
        return out


# -----------------------------
# Gemini client
# -----------------------------
class GeminiCompleter:
    """Single-turn ``generateContent`` calls against the Gemini API.

    No retries and no streaming: one prompt in, the concatenated text parts
    of the first candidate out. Every failure surfaces as
    :class:`CompletionError`.
    """

    def __init__(
        self,
        api_key: str,
        *,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        generation: Optional[GenerationConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not api_key:
            raise ValueError("Gemini API key is required")
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.generation = generation or GenerationConfig()
        self._api_key = api_key
        self._timeout = httpx.Timeout(timeout, connect=min(10.0, timeout))
        # Tests inject httpx.MockTransport here.
        self._transport = transport

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    async def complete(self, prompt: str) -> str:
        payload: Dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
        gen = self.generation.to_payload()
        if gen:
            payload["generationConfig"] = gen

        headers = {"x-goog-api-key": self._api_key, "Content-Type": "application/json"}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(self.endpoint, json=payload, headers=headers)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            raise CompletionError(f"Gemini returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise CompletionError(f"Gemini request failed: {e}") from e
        except ValueError as e:
            raise CompletionError("Gemini returned invalid JSON") from e

        return _extract_text(data)


def _extract_text(data: Any) -> str:
    try:
        parts = data["candidates"][0]["content"]["parts"]
        text = "".join(str(p.get("text", "")) for p in parts)
    except (KeyError, IndexError, TypeError, AttributeError) as e:
        raise CompletionError("Gemini response had no candidates") from e
    if not text:
        raise CompletionError("Gemini response was empty")
    return text


# -----------------------------
# Convenience factory
# -----------------------------
def create_from_config(cfg: Dict[str, Any]) -> GeminiCompleter:
    """Create the completion backend from a config dict (e.g., loaded YAML)."""
    llm_cfg = (cfg or {}).get("llm", {}) if isinstance(cfg, dict) else {}
    provider = str(llm_cfg.get("provider", "gemini")).lower()
    if provider != "gemini":
        raise ValueError(f"Unsupported llm provider: {provider!r}")

    api_key = (
        llm_cfg.get("api_key")
        or os.environ.get("GEMINI_API_KEY")
        or os.environ.get("GOOGLE_API_KEY")
    )
    if not api_key:
        raise ValueError("No Gemini API key configured (llm.api_key or GEMINI_API_KEY).")

    generation = GenerationConfig(
        temperature=llm_cfg.get("temperature"),
        top_p=llm_cfg.get("top_p"),
        top_k=llm_cfg.get("top_k"),
        max_output_tokens=llm_cfg.get("max_output_tokens"),
    )
    logger.info("Using Gemini model %s", llm_cfg.get("model", DEFAULT_MODEL))
    return GeminiCompleter(
        str(api_key),
        model=str(llm_cfg.get("model") or DEFAULT_MODEL),
        base_url=str(llm_cfg.get("base_url") or DEFAULT_BASE_URL),
        timeout=float(llm_cfg.get("timeout") or DEFAULT_TIMEOUT),
        generation=generation,
    )
