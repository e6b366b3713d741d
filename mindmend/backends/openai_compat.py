"""
OpenAI-format chat completions over HTTPS.

The Hugging Face router serves /v1/chat/completions in this format, so
the same class also works against vLLM, llama.cpp server or OpenAI
itself by changing the URL and key. Upstream error bodies come back as
{"error": "..."} or {"error": {"message": ...}}; a model that is still
loading answers 503 with an "estimated_time" that is passed on as a
retry hint.
"""

from __future__ import annotations

import logging
import time

import httpx

from mindmend.backends.base import BaseBackend, BackendResponse

logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> float:
    return (time.monotonic() - started) * 1000


def _upstream_error(resp: httpx.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        return resp.text[:200]
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        error = error.get("message")
    return str(error)[:200] if error else resp.text[:200]


def _retry_hint(resp: httpx.Response) -> float | None:
    header = resp.headers.get("retry-after")
    if header:
        try:
            return float(header)
        except ValueError:
            pass
    if resp.status_code != 503:
        return None
    try:
        payload = resp.json()
    except ValueError:
        return None
    if isinstance(payload, dict) and isinstance(payload.get("estimated_time"), (int, float)):
        return float(payload["estimated_time"])
    return None


class OpenAICompatibleBackend(BaseBackend):
    """POST {url}/v1/chat/completions with an optional bearer key."""

    def __init__(self, name: str, url: str, timeout: float = 30, api_key: str = ""):
        super().__init__(name, url, timeout)
        self.api_key = api_key

    @property
    def completions_url(self) -> str:
        return f"{self.url}/v1/chat/completions"

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

    def _failed(self, status: int, error: str, started: float, retry_after: float | None = None) -> BackendResponse:
        return BackendResponse(
            ok=False,
            status_code=status,
            backend_name=self.name,
            latency_ms=_elapsed_ms(started),
            error=error,
            retry_after=retry_after,
        )

    async def forward(self, body: dict) -> BackendResponse:
        started = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(self.completions_url, json=body, headers=self._headers())
        except httpx.TimeoutException:
            logger.warning("Backend '%s' timed out after %.0fms", self.name, _elapsed_ms(started))
            return self._failed(504, f"Timeout after {self.timeout}s", started)
        except Exception as e:
            logger.warning("Backend '%s' unreachable: %s", self.name, e)
            return self._failed(0, str(e), started)

        if resp.status_code >= 400:
            return self._failed(
                resp.status_code,
                f"HTTP {resp.status_code}: {_upstream_error(resp)}",
                started,
                _retry_hint(resp),
            )

        try:
            data = resp.json()
        except ValueError:
            return self._failed(502, f"Non-JSON completion: {resp.text[:200]}", started)

        return BackendResponse(
            ok=True,
            status_code=resp.status_code,
            data=data,
            backend_name=self.name,
            latency_ms=_elapsed_ms(started),
        )

    async def forward_stream(self, body: dict):
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            async with client.stream(
                "POST",
                self.completions_url,
                json={**body, "stream": True},
                headers=self._headers(),
            ) as resp:
                if resp.status_code >= 400:
                    await resp.aread()
                    message = f"HTTP {resp.status_code}: {_upstream_error(resp)}"
                    logger.warning("Backend '%s' refused stream: %s", self.name, message)
                    raise httpx.HTTPStatusError(message, request=resp.request, response=resp)
                async for line in resp.aiter_lines():
                    if line:
                        yield line

    async def health_check(self) -> bool:
        """GET /v1/models answers 200."""
        try:
            async with httpx.AsyncClient(timeout=5) as client:
                resp = await client.get(f"{self.url}/v1/models", headers=self._headers())
        except Exception as e:
            logger.debug("Health check for '%s' failed: %s", self.name, e)
            return False
        return resp.status_code == 200
