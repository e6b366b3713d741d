"""
Retry with exponential backoff for transient completion failures.

Retried:      0 (no HTTP answer), 429, 500, 502, 503 (also "model loading")
Not retried:  400, 401, 403, 404, 422 and 504, which is our own timeout

When the upstream says how long to wait (Retry-After, or estimated_time
while a hosted model loads) that wait is used instead of the schedule,
still capped at backoff_max. Streams are only retried before the first
line arrives; after that a failure belongs to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator

import httpx

from mindmend.backends.base import BaseBackend, BackendResponse

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = (0, 429, 500, 502, 503)


@dataclass
class RetryPolicy:
    max_retries: int = 2
    backoff_base: float = 1.5
    backoff_max: float = 10.0
    retry_on: tuple[int, ...] = RETRYABLE_STATUSES

    def should_retry(self, status_code: int) -> bool:
        return status_code in self.retry_on

    def delay(self, attempt: int, hint: float | None = None) -> float:
        """Seconds to wait before retry number `attempt` (1-based)."""
        wait = hint if hint is not None and hint > 0 else self.backoff_base ** attempt
        return min(wait, self.backoff_max)


class RetryableBackendWrapper:
    """Same interface as the wrapped backend, with transient failures retried."""

    def __init__(
        self,
        backend: BaseBackend,
        max_retries: int = 2,
        backoff_base: float = 1.5,
        backoff_max: float = 10.0,
    ):
        self.backend = backend
        self.policy = RetryPolicy(max_retries, backoff_base, backoff_max)
        self.name = backend.name
        self.url = backend.url
        self.timeout = backend.timeout

    async def forward(self, body: dict) -> BackendResponse:
        model = body.get("model", "")
        attempt = 0
        while True:
            response = await self.backend.forward(body)
            if response.ok:
                return response
            if not self.policy.should_retry(response.status_code):
                logger.debug("'%s' gave up on %s: %s", model, response.status_code, response.error)
                return response

            attempt += 1
            if attempt > self.policy.max_retries:
                logger.error(
                    "Backend '%s' still failing for '%s' after %d retries: %s",
                    self.name, model, self.policy.max_retries, response.error,
                )
                return response

            wait = self.policy.delay(attempt, response.retry_after)
            logger.warning(
                "Backend '%s' returned %d for '%s', retry %d/%d in %.1fs",
                self.name, response.status_code, model, attempt, self.policy.max_retries, wait,
            )
            await asyncio.sleep(wait)

    def _stream_retryable(self, error: Exception) -> bool:
        if isinstance(error, httpx.HTTPStatusError):
            return self.policy.should_retry(error.response.status_code)
        return True

    async def forward_stream(self, body: dict) -> AsyncIterator[str]:
        model = body.get("model", "")
        attempt = 0
        while True:
            started = False
            try:
                async for line in self.backend.forward_stream(body):
                    started = True
                    yield line
                return
            except Exception as e:
                attempt += 1
                if started or attempt > self.policy.max_retries or not self._stream_retryable(e):
                    logger.error("Backend '%s' stream failed for '%s': %s", self.name, model, e)
                    raise
                wait = self.policy.delay(attempt)
                logger.warning(
                    "Backend '%s' stream error for '%s', retry %d/%d in %.1fs: %s",
                    self.name, model, attempt, self.policy.max_retries, wait, e,
                )
                await asyncio.sleep(wait)

    async def health_check(self) -> bool:
        return await self.backend.health_check()
