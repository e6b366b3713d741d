"""
Chat completion backend interface.

The response generator only ever sees a BaseBackend and the
BackendResponse it returns, so tests can hand in a mock and another
provider can be wired in without touching the pipeline.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass, field


@dataclass
class BackendResponse:
    """
    Outcome of one completion call.

    status_code 0 means the request never got an HTTP answer (connection
    refused, DNS, TLS). retry_after is the upstream's own hint in seconds:
    a Retry-After header on 429, or the "estimated_time" a hosted model
    reports while it is still loading.
    """
    ok: bool
    status_code: int = 200
    data: dict = field(default_factory=dict)
    backend_name: str = ""
    latency_ms: float = 0.0
    error: str = ""
    retry_after: float | None = None

    @property
    def content(self) -> str:
        """First choice's message text, or "" when there is none."""
        choices = self.data.get("choices") or []
        if not choices:
            return ""
        return (choices[0].get("message") or {}).get("content") or ""


class BaseBackend(abc.ABC):
    """A chat-completions endpoint: one-shot, streamed, and a reachability check."""

    def __init__(self, name: str, url: str, timeout: float = 30):
        self.name = name
        self.url = url.rstrip("/")
        self.timeout = timeout

    @abc.abstractmethod
    async def forward(self, body: dict) -> BackendResponse:
        """Send an OpenAI-format request body. Never raises; failures come back as ok=False."""

    @abc.abstractmethod
    async def forward_stream(self, body: dict):
        """Send a streaming request and yield raw SSE lines. Raises on transport errors."""

    @abc.abstractmethod
    async def health_check(self) -> bool:
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} {self.url}>"
