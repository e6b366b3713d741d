"""
ChromaBackend - local, file-backed stand-in for Pinecone.

Useful for development and self-hosting: same VectorBackend surface,
nothing leaves the machine. Records are keyed by the same
"{userId}#{ts}-{suffix}" ids, so prefix listing works the same way.

PersistentClient is not thread-safe and the conversation store calls in
from asyncio.to_thread, so every collection call holds one lock.
"""

import logging
import threading
from pathlib import Path

import chromadb

from .base import VectorBackend

logger = logging.getLogger(__name__)

_EMPTY_FETCH = {"ids": [], "documents": [], "metadatas": []}


def _to_chroma_where(where: dict | None) -> dict | None:
    """Chroma wants $and for more than one equality clause."""
    if not where:
        return None
    clauses = [{key: {"$eq": value}} for key, value in where.items()]
    return clauses[0] if len(clauses) == 1 else {"$and": clauses}


class ChromaBackend(VectorBackend):

    def __init__(self, path: str, collection: str = "conversations"):
        root = Path(path)
        root.mkdir(parents=True, exist_ok=True)
        self.path = root
        self._lock = threading.Lock()
        client = chromadb.PersistentClient(path=str(root))
        # cosine so 1 - distance reads as similarity, matching Pinecone scores
        self._col = client.get_or_create_collection(collection, metadata={"hnsw:space": "cosine"})
        logger.info("Chroma collection '%s' ready at %s", collection, root)

    def upsert(self, ids, embeddings, documents, metadatas) -> None:
        with self._lock:
            self._col.upsert(ids=ids, embeddings=embeddings, documents=documents, metadatas=metadatas)

    def query(self, embedding, n_results, where=None) -> dict:
        request = {
            "query_embeddings": [embedding],
            "n_results": n_results,
            "include": ["documents", "metadatas", "distances"],
        }
        chroma_where = _to_chroma_where(where)
        if chroma_where:
            request["where"] = chroma_where
        with self._lock:
            return self._col.query(**request)

    def fetch(self, ids: list[str]) -> dict:
        if not ids:
            return dict(_EMPTY_FETCH)
        with self._lock:
            got = self._col.get(ids=ids, include=["documents", "metadatas"])
        return {key: list(got.get(key) or []) for key in _EMPTY_FETCH}

    def list_ids(self, prefix: str) -> list[str]:
        # Chroma has no id-prefix query; ids come back with every get()
        with self._lock:
            got = self._col.get(include=[])
        return [record_id for record_id in got.get("ids") or [] if record_id.startswith(prefix)]

    def delete(self, ids: list[str]) -> None:
        if ids:
            with self._lock:
                self._col.delete(ids=ids)

    def count(self) -> int:
        with self._lock:
            return self._col.count()
