"""
Data models for conversation storage.
These define the shape of data flowing through the chat pipeline and
the flattened metadata map kept next to each vector in the index.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from uuid import uuid4

ROLES = ("user", "assistant", "system")

# Metadata keys that belong to the record itself; anything else is "extra".
_RESERVED_KEYS = {"userId", "user_id", "role", "content", "timestamp", "emotion", "emotionScore"}


def now_ms() -> int:
    return int(time.time() * 1000)


def message_text(msg) -> str:
    """
    Plain text of an incoming message.

    Clients send either {"role", "content"} or {"role", "parts": [{"type": "text", "text"}]};
    content may itself be a list of parts.
    """
    if msg is None:
        return ""
    if isinstance(msg, Message):
        return msg.content
    if not isinstance(msg, dict):
        return str(msg)

    content = msg.get("content")
    if isinstance(content, str) and content:
        return content

    parts = msg.get("parts")
    if parts is None and isinstance(content, list):
        parts = content
    if isinstance(parts, list):
        texts = [
            p.get("text", "")
            for p in parts
            if isinstance(p, dict) and p.get("type", "text") == "text"
        ]
        return "".join(t for t in texts if isinstance(t, str))

    if content is None:
        return ""
    return content if isinstance(content, str) else json.dumps(content)


@dataclass
class Message:
    """A single turn in a conversation."""
    id: str = field(default_factory=lambda: uuid4().hex)
    role: str = ""           # "user", "assistant", "system"
    content: str = ""
    timestamp: int = field(default_factory=now_ms)

    def to_chat_format(self) -> dict:
        """Export in the chat-completion messages format."""
        return {"role": self.role, "content": self.content}


@dataclass
class EmotionAnnotation:
    """Classifier output for one user message. Advisory only."""
    label: str = "neutral"
    score: float = 0.0

    def __post_init__(self):
        self.label = (self.label or "neutral").lower()
        try:
            score = float(self.score)
        except (TypeError, ValueError):
            score = 0.0
        self.score = min(1.0, max(0.0, score))

    @classmethod
    def neutral(cls) -> EmotionAnnotation:
        return cls("neutral", 0.0)

    def to_dict(self) -> dict:
        return {"label": self.label, "score": self.score}


@dataclass
class UserSession:
    """The isolation key for stored messages plus an optional display name."""
    user_id: str
    display_name: str | None = None


@dataclass
class ConversationRecord:
    """A stored turn: message + userId + emotion, keyed by an embedding of the content."""
    id: str
    user_id: str
    role: str
    content: str
    timestamp: int = field(default_factory=now_ms)
    emotion: EmotionAnnotation | None = None
    extra: dict = field(default_factory=dict)

    def to_metadata(self) -> dict:
        """Flatten into the metadata map stored next to the vector."""
        meta = {
            key: value
            for key, value in self.extra.items()
            if key not in _RESERVED_KEYS and isinstance(value, (str, int, float, bool))
        }
        meta.update({
            "userId": self.user_id,
            "user_id": self.user_id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
        })
        if self.emotion is not None:
            meta["emotion"] = self.emotion.label
            meta["emotionScore"] = self.emotion.score
        return meta

    @classmethod
    def from_match(cls, record_id: str, metadata: dict | None, document: str | None = None) -> ConversationRecord:
        """Rebuild a record from an index match (id + metadata + optional document)."""
        meta = dict(metadata or {})
        emotion = None
        if meta.get("emotion"):
            emotion = EmotionAnnotation(meta["emotion"], meta.get("emotionScore", 0.0))
        try:
            timestamp = int(float(meta.get("timestamp", 0) or 0))
        except (TypeError, ValueError):
            timestamp = 0
        return cls(
            id=record_id,
            user_id=meta.get("userId") or meta.get("user_id") or "",
            role=meta.get("role", ""),
            content=document if document else meta.get("content", ""),
            timestamp=timestamp,
            emotion=emotion,
            extra={k: v for k, v in meta.items() if k not in _RESERVED_KEYS},
        )

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
        }
        if self.emotion is not None:
            data["emotion"] = self.emotion.to_dict()
        return data
