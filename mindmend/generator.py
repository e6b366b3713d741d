"""
Response generator - the one call in the pipeline allowed to be fatal.

Converts internal messages to the chat-completions wire format, puts the
fixed persona in front as a single system message (any system messages
the caller supplies are merged under it), calls the backend with a hard
timeout, and returns the first choice's text.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator

from mindmend.backends import OpenAICompatibleBackend, RetryableBackendWrapper
from mindmend.context import PERSONA_PROMPT
from mindmend.errors import GenerationError
from mindmend.models import Message, message_text

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "Qwen/Qwen2.5-7B-Instruct"
DEFAULT_URL = "https://router.huggingface.co"
BUSY_MESSAGE = "AI is busy, try again in a few seconds"

_WIRE_ROLES = {"user", "assistant", "system"}


def to_wire_messages(messages) -> list[dict]:
    """Message objects or dicts → [{"role", "content"}]; unknown roles become user."""
    wire = []
    for msg in messages or []:
        if isinstance(msg, Message):
            role = msg.role
        elif isinstance(msg, dict):
            role = msg.get("role", "user")
        else:
            role = "user"
        if role not in _WIRE_ROLES:
            role = "user"
        text = message_text(msg)
        if not text:
            continue
        wire.append({"role": role, "content": text})
    return wire


def _with_persona(wire: list[dict], persona: str) -> list[dict]:
    """Fold leading system messages into one system message headed by the persona."""
    extra = []
    i = 0
    while i < len(wire) and wire[i]["role"] == "system":
        extra.append(wire[i]["content"])
        i += 1
    system = "\n\n".join([persona] + extra)
    return [{"role": "system", "content": system}] + wire[i:]


def _delta_from_sse(line: str) -> str | None:
    """Text delta from one upstream SSE line; None marks [DONE]."""
    if not line.startswith("data:"):
        return ""
    data_str = line[5:].strip()
    if data_str == "[DONE]":
        return None
    try:
        chunk = json.loads(data_str)
        return chunk.get("choices", [{}])[0].get("delta", {}).get("content") or ""
    except (json.JSONDecodeError, IndexError, AttributeError):
        return ""


class ResponseGenerator:
    """Persona + history → one assistant reply."""

    def __init__(
        self,
        backend,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.7,
        max_tokens: int = 300,
        timeout: float = 30.0,
        persona: str = PERSONA_PROMPT,
    ):
        self.backend = backend
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.persona = persona

    @classmethod
    def from_config(cls, cfg: dict) -> ResponseGenerator:
        inf_cfg = cfg.get("inference", {})
        gen_cfg = cfg.get("generation", {})
        timeout = gen_cfg.get("timeout", 30)
        backend = OpenAICompatibleBackend(
            name=inf_cfg.get("name", "huggingface"),
            url=inf_cfg.get("url", DEFAULT_URL),
            timeout=timeout,
            api_key=inf_cfg.get("api_key", ""),
        )
        retries = gen_cfg.get("max_retries", 1)
        if retries > 0:
            backend = RetryableBackendWrapper(backend, max_retries=retries)
        return cls(
            backend=backend,
            model=gen_cfg.get("model", DEFAULT_MODEL),
            temperature=gen_cfg.get("temperature", 0.7),
            max_tokens=gen_cfg.get("max_tokens", 300),
            timeout=timeout,
        )

    def _body(self, messages, model, temperature, max_tokens) -> dict:
        return {
            "model": model or self.model,
            "messages": _with_persona(to_wire_messages(messages), self.persona),
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self.max_tokens,
            "stream": False,
        }

    async def generate_chat_response(
        self,
        messages,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        body = self._body(messages, model, temperature, max_tokens)
        try:
            response = await asyncio.wait_for(self.backend.forward(body), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error("Generation timed out after %ss", self.timeout)
            raise GenerationError(BUSY_MESSAGE, detail=f"timeout after {self.timeout}s") from e
        except Exception as e:
            logger.error("Generation failed: %s", e)
            raise GenerationError(BUSY_MESSAGE, detail=str(e)) from e

        if not response.ok:
            logger.error("Generation failed (%s): %s", response.status_code, response.error)
            raise GenerationError(BUSY_MESSAGE, detail=response.error)

        text = response.content.strip()
        if not text:
            raise GenerationError(BUSY_MESSAGE, detail="empty completion")

        logger.debug("Generated %d chars in %.0fms", len(text), response.latency_ms)
        return text

    async def stream_chat_response(
        self,
        messages,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        """Yield text fragments as the upstream model produces them."""
        body = self._body(messages, model, temperature, max_tokens)
        body["stream"] = True
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        lines = self.backend.forward_stream(body)
        try:
            while True:
                # a stalled upstream still has to answer before the deadline
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise asyncio.TimeoutError()
                try:
                    line = await asyncio.wait_for(lines.__anext__(), timeout=remaining)
                except StopAsyncIteration:
                    return
                delta = _delta_from_sse(line)
                if delta is None:
                    return
                if delta:
                    yield delta
        except asyncio.TimeoutError as e:
            logger.error("Streaming generation timed out after %ss", self.timeout)
            raise GenerationError(BUSY_MESSAGE, detail=f"timeout after {self.timeout}s") from e
        except Exception as e:
            logger.error("Streaming generation failed: %s", e)
            raise GenerationError(BUSY_MESSAGE, detail=str(e)) from e
        finally:
            await lines.aclose()
