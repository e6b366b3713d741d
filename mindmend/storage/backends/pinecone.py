"""
PineconeBackend - hosted Pinecone index spoken over its REST data plane.

Talks JSON over httpx instead of pulling in the Pinecone SDK; the data
plane is six endpoints:

    POST /vectors/upsert        store vectors + metadata
    POST /query                 top-K by vector, metadata filter
    GET  /vectors/fetch         read back by id
    GET  /vectors/list          ids by prefix (serverless indexes)
    POST /vectors/delete        delete by id
    POST /describe_index_stats  counts

Pinecone keeps no separate document field, so the text lives in
metadata["content"]. Scores come back as similarities; they are turned
into distances (1 - score) so callers see the same shape as Chroma.

The index host is resolved once from the control plane unless it is
configured explicitly.
"""

import logging
import threading

import httpx

from .base import VectorBackend

logger = logging.getLogger(__name__)

CONTROL_PLANE_URL = "https://api.pinecone.io"
API_VERSION = "2025-01"

# Ids per fetch/delete request; keeps query strings and bodies well under limits.
_BATCH = 100


def _to_pinecone_filter(where: dict | None) -> dict | None:
    if not where:
        return None
    return {key: {"$eq": value} for key, value in where.items()}


class PineconeBackend(VectorBackend):
    """Pinecone serverless index over HTTPS."""

    def __init__(
        self,
        api_key: str,
        index_name: str = "chat-conversations",
        namespace: str = "conversations",
        index_host: str = "",
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ):
        if not api_key:
            raise ValueError("PineconeBackend requires an api_key")
        self.index_name = index_name
        self.namespace = namespace
        self.timeout = timeout
        self._headers = {
            "Api-Key": api_key,
            "X-Pinecone-API-Version": API_VERSION,
            "Content-Type": "application/json",
        }
        self._transport = transport
        self._host = index_host.rstrip("/") if index_host else ""
        self._client: httpx.Client | None = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def _resolve_host(self) -> str:
        with httpx.Client(timeout=self.timeout, transport=self._transport) as control:
            resp = control.get(
                f"{CONTROL_PLANE_URL}/indexes/{self.index_name}",
                headers=self._headers,
            )
            resp.raise_for_status()
            host = resp.json().get("host", "")
        if not host:
            raise RuntimeError(f"Pinecone index '{self.index_name}' has no host")
        logger.info("Pinecone index '%s' resolved to %s", self.index_name, host)
        return host

    def _http(self) -> httpx.Client:
        with self._lock:
            if self._client is None:
                host = self._host or self._resolve_host()
                if not host.startswith("http"):
                    host = f"https://{host}"
                self._host = host
                self._client = httpx.Client(
                    base_url=host,
                    headers=self._headers,
                    timeout=self.timeout,
                    transport=self._transport,
                )
            return self._client

    def close(self):
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None

    def _post(self, path: str, payload: dict) -> dict:
        resp = self._http().post(path, json=payload)
        resp.raise_for_status()
        return resp.json() if resp.content else {}

    # ------------------------------------------------------------------
    # VectorBackend interface
    # ------------------------------------------------------------------

    def upsert(
        self,
        ids: list[str],
        embeddings: list[list[float]],
        documents: list[str],
        metadatas: list[dict],
    ) -> None:
        vectors = []
        for id_, values, doc, meta in zip(ids, embeddings, documents, metadatas):
            metadata = dict(meta)
            metadata.setdefault("content", doc)
            vectors.append({"id": id_, "values": values, "metadata": metadata})
        self._post("/vectors/upsert", {"vectors": vectors, "namespace": self.namespace})

    def query(
        self,
        embedding: list[float],
        n_results: int,
        where: dict | None = None,
    ) -> dict:
        payload = {
            "vector": embedding,
            "topK": n_results,
            "namespace": self.namespace,
            "includeMetadata": True,
            "includeValues": False,
        }
        pc_filter = _to_pinecone_filter(where)
        if pc_filter:
            payload["filter"] = pc_filter
        data = self._post("/query", payload)

        ids, documents, metadatas, distances = [], [], [], []
        for match in data.get("matches", []):
            meta = match.get("metadata") or {}
            ids.append(match.get("id", ""))
            documents.append(meta.get("content", ""))
            metadatas.append(meta)
            distances.append(round(1.0 - float(match.get("score", 0.0)), 6))
        return {
            "ids": [ids],
            "documents": [documents],
            "metadatas": [metadatas],
            "distances": [distances],
        }

    def fetch(self, ids: list[str]) -> dict:
        out = {"ids": [], "documents": [], "metadatas": []}
        for start in range(0, len(ids), _BATCH):
            batch = ids[start:start + _BATCH]
            resp = self._http().get(
                "/vectors/fetch",
                params=[("ids", i) for i in batch] + [("namespace", self.namespace)],
            )
            resp.raise_for_status()
            vectors = resp.json().get("vectors", {}) or {}
            for id_ in batch:
                vec = vectors.get(id_)
                if not vec:
                    continue
                meta = vec.get("metadata") or {}
                out["ids"].append(id_)
                out["documents"].append(meta.get("content", ""))
                out["metadatas"].append(meta)
        return out

    def list_ids(self, prefix: str) -> list[str]:
        ids: list[str] = []
        token = None
        while True:
            params = {"prefix": prefix, "namespace": self.namespace, "limit": _BATCH}
            if token:
                params["paginationToken"] = token
            resp = self._http().get("/vectors/list", params=params)
            resp.raise_for_status()
            data = resp.json()
            ids.extend(v["id"] for v in data.get("vectors", []) if v.get("id"))
            token = (data.get("pagination") or {}).get("next")
            if not token:
                return ids

    def delete(self, ids: list[str]) -> None:
        for start in range(0, len(ids), _BATCH):
            self._post(
                "/vectors/delete",
                {"ids": ids[start:start + _BATCH], "namespace": self.namespace},
            )

    def count(self) -> int:
        data = self._post("/describe_index_stats", {})
        ns = (data.get("namespaces") or {}).get(self.namespace) or {}
        return int(ns.get("vectorCount", 0))
