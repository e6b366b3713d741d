"""
Emotion classifier client.

Sends the user's latest message to a hosted text-classification model
and returns the top label. The result is advisory: it only decides
whether the prompt gets an empathy directive. Any failure degrades to
neutral/0.0 and never reaches the caller.
"""

from __future__ import annotations

import logging
import time

import httpx

from mindmend.models import EmotionAnnotation

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "bhadresh-savani/distilbert-base-uncased-emotion"
DEFAULT_URL = "https://router.huggingface.co/hf-inference"


def _top_label(data) -> EmotionAnnotation:
    """
    Pick the highest scoring label.
    The endpoint returns either [{label, score}, ...] or [[{label, score}, ...]].
    """
    candidates = data
    if isinstance(candidates, list) and candidates and isinstance(candidates[0], list):
        candidates = candidates[0]
    if not isinstance(candidates, list) or not candidates:
        raise ValueError(f"unexpected classification payload: {str(data)[:200]}")

    best = max(
        (c for c in candidates if isinstance(c, dict) and "label" in c),
        key=lambda c: float(c.get("score", 0.0)),
    )
    return EmotionAnnotation(str(best["label"]), float(best.get("score", 0.0)))


class EmotionClassifier:
    """Hosted emotion classification with a neutral fallback."""

    def __init__(
        self,
        api_key: str = "",
        model: str = DEFAULT_MODEL,
        url: str = DEFAULT_URL,
        timeout: float = 10.0,
    ):
        self.api_key = api_key
        self.model = model
        self.url = url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_config(cls, cfg: dict) -> EmotionClassifier:
        e_cfg = cfg.get("emotion", {})
        inf_cfg = cfg.get("inference", {})
        return cls(
            api_key=inf_cfg.get("api_key", ""),
            model=e_cfg.get("model", DEFAULT_MODEL),
            url=e_cfg.get("url", DEFAULT_URL),
            timeout=e_cfg.get("timeout", 10.0),
        )

    async def analyze(self, text: str) -> EmotionAnnotation:
        """Classify `text`. Never raises."""
        if not text or not text.strip():
            return EmotionAnnotation.neutral()

        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        t0 = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    f"{self.url}/models/{self.model}",
                    json={"inputs": text},
                    headers=headers,
                )
                resp.raise_for_status()
                emotion = _top_label(resp.json())
        except Exception as e:
            logger.warning("Emotion classification failed, using neutral: %s", e)
            return EmotionAnnotation.neutral()

        logger.debug(
            "Emotion: %s (%.3f) in %.0fms",
            emotion.label, emotion.score, (time.monotonic() - t0) * 1000,
        )
        return emotion
