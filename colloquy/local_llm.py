"""Utilities for calling locally hosted models (Ollama) for chat and embeddings."""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any
from urllib import error, request

DEFAULT_OLLAMA_BASE_URL = "http://127.0.0.1:11434"
_CHAT_ENDPOINT = "/api/chat"
_EMBEDDINGS_ENDPOINT = "/api/embeddings"


class LocalLLMError(RuntimeError):
    """Raised when a local LLM invocation fails."""


def _perform_ollama_request(
    endpoint: str,
    payload: dict[str, Any],
    base_url: str,
    timeout: float,
) -> dict[str, Any]:
    """Execute the blocking HTTP request against the Ollama REST API."""

    url = f"{base_url.rstrip('/')}{endpoint}"
    data = json.dumps(payload).encode("utf-8")
    req = request.Request(
        url,
        data=data,
        headers={"Content-Type": "application/json"},
        method="POST",
    )

    try:
        with request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read().decode("utf-8")
    except error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="ignore") if exc.fp else ""
        message = body or exc.reason
        raise LocalLLMError(
            f"Ollama request to {endpoint} failed with status {exc.code}: {message}"
        ) from exc
    except error.URLError as exc:
        raise LocalLLMError(
            f"Could not reach Ollama at {url}: {exc.reason}"
        ) from exc

    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LocalLLMError("Ollama returned non-JSON response.") from exc


def _resolve_base_url(base_url: str | None) -> str:
    return (
        base_url or os.getenv("OLLAMA_BASE_URL") or DEFAULT_OLLAMA_BASE_URL
    ).rstrip("/")


async def call_ollama_chat(
    *,
    system_prompt: str,
    user_prompt: str,
    llm_model: str,
    base_url: str | None = None,
    timeout: float = 120.0,
) -> str:
    """Invoke a local Ollama model and return the assistant text."""

    resolved_base = _resolve_base_url(base_url)

    system_prompt = system_prompt.strip()
    user_prompt = user_prompt.strip()
    if not user_prompt:
        raise LocalLLMError("Cannot call Ollama with an empty user prompt.")

    messages: list[dict[str, str]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": user_prompt})

    payload = {
        "model": llm_model,
        "messages": messages,
        "stream": False,
    }

    parsed = await asyncio.to_thread(
        _perform_ollama_request,
        _CHAT_ENDPOINT,
        payload,
        resolved_base,
        timeout,
    )

    message = parsed.get("message") or {}
    content = message.get("content")
    if not content:
        raise LocalLLMError("Ollama response did not include assistant content.")

    return content


async def call_ollama_embedding(
    *,
    text: str,
    embedding_model: str,
    base_url: str | None = None,
    timeout: float = 120.0,
) -> list[float]:
    """Return the embedding vector for ``text`` from a local Ollama model."""

    if not text.strip():
        raise LocalLLMError("Cannot embed an empty string.")

    parsed = await asyncio.to_thread(
        _perform_ollama_request,
        _EMBEDDINGS_ENDPOINT,
        {"model": embedding_model, "prompt": text},
        _resolve_base_url(base_url),
        timeout,
    )

    vector = parsed.get("embedding")
    if not isinstance(vector, list) or not vector:
        raise LocalLLMError("Ollama response did not include an embedding.")

    return [float(value) for value in vector]


__all__ = [
    "LocalLLMError",
    "call_ollama_chat",
    "call_ollama_embedding",
    "DEFAULT_OLLAMA_BASE_URL",
]
