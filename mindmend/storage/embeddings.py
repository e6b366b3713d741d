"""
Embedder - turns text into a vector via a hosted feature-extraction model.

Kept separate from the conversation store so the store only deals in
vectors and metadata, and tests can hand it a fake embedder.
"""

from __future__ import annotations

import logging

import httpx

from mindmend.errors import EmbeddingError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "BAAI/bge-large-en-v1.5"  # 1024 dimensions
DEFAULT_URL = "https://router.huggingface.co/hf-inference"


def _as_vector(data) -> list[float]:
    """Accept a flat vector or a single-row nested vector."""
    if isinstance(data, list) and data and isinstance(data[0], list):
        data = data[0]
    if not isinstance(data, list) or not data:
        return []
    return [float(x) for x in data]


class Embedder:
    """Hosted embedding endpoint (async)."""

    def __init__(
        self,
        api_key: str = "",
        model: str = DEFAULT_MODEL,
        url: str = DEFAULT_URL,
        timeout: float = 30.0,
    ):
        self.api_key = api_key
        self.model = model
        self.url = url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_config(cls, cfg: dict) -> Embedder:
        emb_cfg = cfg.get("embedding", {})
        return cls(
            api_key=cfg.get("inference", {}).get("api_key", ""),
            model=emb_cfg.get("model", DEFAULT_MODEL),
            url=emb_cfg.get("url", DEFAULT_URL),
            timeout=emb_cfg.get("timeout", 30.0),
        )

    async def embed(self, text: str) -> list[float]:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                resp = await client.post(
                    f"{self.url}/models/{self.model}",
                    json={"inputs": text},
                    headers=headers,
                )
                resp.raise_for_status()
            except httpx.HTTPStatusError as e:
                if e.response.status_code == 404:
                    raise EmbeddingError(
                        f"Embedding model '{self.model}' not found at {self.url}"
                    ) from e
                raise EmbeddingError(
                    f"Embedding endpoint returned HTTP {e.response.status_code}"
                ) from e
            except httpx.HTTPError as e:
                raise EmbeddingError(f"Embedding request failed: {e}") from e

            try:
                data = resp.json()
            except Exception as e:
                raise EmbeddingError(
                    f"Embedding endpoint returned non-JSON response: {resp.text[:200]}"
                ) from e

        vector = _as_vector(data)
        if not vector:
            raise EmbeddingError(
                f"Embedding model '{self.model}' returned an empty vector"
            )
        logger.debug("Embedded %d chars into %d dims", len(text), len(vector))
        return vector
