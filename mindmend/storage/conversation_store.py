"""
ConversationStore - per-user conversation memory over a VectorBackend.

Owns embedding calls and user scoping; the backend only sees vectors,
ids and metadata. Every record carries the owning userId in metadata and
in its id prefix ("<userId>#<timestamp>-<suffix>"), which is how a
user's records are enumerated for listing, stats and bulk delete
(Pinecone has no delete-by-filter on serverless indexes).

Failure policy:
  store_conversation      raises PersistenceError; the caller decides
  retrieve_conversations  returns [] on upstream failure, context is optional
  listing / delete / stats raise UpstreamUnavailable
"""

from __future__ import annotations

import asyncio
import logging
from uuid import uuid4

from mindmend.config import is_secret_set
from mindmend.errors import PersistenceError, UpstreamUnavailable, ValidationError
from mindmend.models import ROLES, ConversationRecord, EmotionAnnotation, now_ms
from mindmend.storage.backends import VectorBackend, backend_from_config
from mindmend.storage.embeddings import Embedder

logger = logging.getLogger(__name__)

EMPTY_QUERY_PLACEHOLDER = "general conversation"
ID_SEPARATOR = "#"


def _require_user_id(user_id) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValidationError("Valid user ID is required")
    return user_id


def record_prefix(user_id: str) -> str:
    return f"{user_id}{ID_SEPARATOR}"


def make_record_id(user_id: str, timestamp: int) -> str:
    return f"{record_prefix(user_id)}{timestamp}-{uuid4().hex[:8]}"


def is_store_configured(cfg: dict) -> bool:
    """False when memory should be off and the app should run stateless."""
    s_cfg = cfg.get("storage", {})
    if not s_cfg.get("enabled", True):
        return False
    backend = s_cfg.get("vector_backend", "pinecone")
    if backend == "pinecone":
        return is_secret_set(s_cfg.get("pinecone", {}).get("api_key"))
    return True


class ConversationStore:
    """Embedding + user-scoped storage/retrieval facade."""

    def __init__(
        self,
        embedder: Embedder,
        backend: VectorBackend,
        overfetch: int = 3,
        empty_query_placeholder: str = EMPTY_QUERY_PLACEHOLDER,
    ):
        self.embedder = embedder
        self._backend = backend
        self.overfetch = max(1, overfetch)
        self.empty_query_placeholder = empty_query_placeholder
        logger.info(
            "ConversationStore initialised (backend=%s, model=%s)",
            type(self._backend).__name__,
            getattr(embedder, "model", "?"),
        )

    @classmethod
    def from_config(cls, cfg: dict) -> ConversationStore:
        s_cfg = cfg.get("storage", {})
        return cls(
            embedder=Embedder.from_config(cfg),
            backend=backend_from_config(s_cfg),
            overfetch=s_cfg.get("overfetch", 3),
        )

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def store_conversation(
        self,
        user_id: str,
        content: str,
        role: str,
        metadata: dict | None = None,
    ) -> str:
        """Embed and upsert one turn. Returns the record id."""
        _require_user_id(user_id)
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Message content is required")
        if role not in ROLES:
            raise ValidationError(f"Unknown role: {role!r}")

        extra = dict(metadata or {})
        emotion = extra.pop("emotion", None)
        if isinstance(emotion, dict):
            emotion = EmotionAnnotation(emotion.get("label", "neutral"), emotion.get("score", 0.0))
        elif not isinstance(emotion, EmotionAnnotation):
            emotion = None

        timestamp = now_ms()
        record = ConversationRecord(
            id=make_record_id(user_id, timestamp),
            user_id=user_id,
            role=role,
            content=content,
            timestamp=timestamp,
            emotion=emotion,
            extra=extra,
        )

        try:
            embedding = await self.embedder.embed(content)
            await asyncio.to_thread(
                self._backend.upsert,
                [record.id],
                [embedding],
                [content],
                [record.to_metadata()],
            )
        except Exception as e:
            raise PersistenceError(f"Failed to store {role} turn for {user_id}: {e}") from e

        logger.debug("Stored %s turn %s: %s", role, record.id, content[:50])
        return record.id

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def _owned(self, user_id: str, record_id: str, metadata: dict | None) -> bool:
        """Re-check ownership of a match returned by the filtered query."""
        meta = metadata or {}
        owner = meta.get("userId")
        backup = meta.get("user_id")
        if owner != user_id or (backup is not None and backup != user_id):
            logger.warning(
                "Dropping record %s: owner %r does not match requested user %r",
                record_id, owner if owner is not None else backup, user_id,
            )
            return False
        return True

    async def retrieve_conversations(
        self,
        user_id: str,
        query: str = "",
        top_k: int = 5,
    ) -> list[ConversationRecord]:
        """Top-K semantically similar past turns for this user, newest first."""
        _require_user_id(user_id)
        if top_k <= 0:
            return []

        text = query if query and query.strip() else self.empty_query_placeholder
        try:
            embedding = await self.embedder.embed(text)
            results = await asyncio.to_thread(
                self._backend.query,
                embedding,
                top_k * self.overfetch,
                {"userId": user_id},
            )
        except Exception as e:
            logger.error("retrieve_conversations: lookup failed for %s: %s", user_id, e)
            return []

        records = []
        ids = (results.get("ids") or [[]])[0]
        docs = (results.get("documents") or [[]])[0]
        metas = (results.get("metadatas") or [[]])[0]
        for i, record_id in enumerate(ids):
            meta = metas[i] if i < len(metas) else {}
            if not self._owned(user_id, record_id, meta):
                continue
            doc = docs[i] if i < len(docs) else None
            records.append(ConversationRecord.from_match(record_id, meta, doc))

        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records[:top_k]

    async def _load_user_records(self, user_id: str) -> list[ConversationRecord]:
        try:
            ids = await asyncio.to_thread(self._backend.list_ids, record_prefix(user_id))
            if not ids:
                return []
            fetched = await asyncio.to_thread(self._backend.fetch, ids)
        except Exception as e:
            raise UpstreamUnavailable(f"Could not list conversations for {user_id}: {e}") from e

        records = []
        for i, record_id in enumerate(fetched.get("ids", [])):
            meta = fetched["metadatas"][i] if i < len(fetched.get("metadatas", [])) else {}
            if not self._owned(user_id, record_id, meta):
                continue
            doc = fetched["documents"][i] if i < len(fetched.get("documents", [])) else None
            records.append(ConversationRecord.from_match(record_id, meta, doc))
        records.sort(key=lambda r: r.timestamp)
        return records

    async def get_recent_conversations(self, user_id: str, limit: int = 20) -> list[ConversationRecord]:
        """The user's last `limit` turns in chronological order."""
        _require_user_id(user_id)
        if limit <= 0:
            return []
        records = await self._load_user_records(user_id)
        return records[-limit:]

    async def delete_user_conversations(self, user_id: str) -> int:
        """Delete every stored turn for this user. Returns the number deleted."""
        _require_user_id(user_id)
        # "a#" also prefixes user "a#b"; only ids whose metadata names this user go
        ids = [r.id for r in await self._load_user_records(user_id)]
        try:
            if ids:
                await asyncio.to_thread(self._backend.delete, ids)
        except Exception as e:
            raise UpstreamUnavailable(f"Could not delete conversations for {user_id}: {e}") from e
        logger.info("Deleted %d stored turns for %s", len(ids), user_id)
        return len(ids)

    async def get_user_stats(self, user_id: str) -> dict:
        _require_user_id(user_id)
        records = await self._load_user_records(user_id)

        emotions: dict[str, int] = {}
        for r in records:
            if r.emotion is not None:
                emotions[r.emotion.label] = emotions.get(r.emotion.label, 0) + 1

        return {
            "user_id": user_id,
            "total_messages": len(records),
            "user_messages": sum(1 for r in records if r.role == "user"),
            "assistant_messages": sum(1 for r in records if r.role == "assistant"),
            "emotions": emotions,
            "first_message_at": records[0].timestamp if records else None,
            "last_message_at": records[-1].timestamp if records else None,
        }

    def get_stats(self) -> dict:
        """Backend-wide collection stats."""
        return {"total_embeddings": self._backend.count()}

    def close(self) -> None:
        self._backend.close()
