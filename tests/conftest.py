"""
Shared fakes for the MindMend test suite.
"""

import pytest

from mindmend.config import reset_config
from mindmend.storage.backends.base import VectorBackend


class FakeEmbedder:
    """Deterministic 3-dim vectors; records every text it was asked to embed."""

    model = "fake-embedder"

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            from mindmend.errors import EmbeddingError
            raise EmbeddingError("embedding endpoint down")
        return [float(len(text)), 1.0, 0.5]


class InMemoryBackend(VectorBackend):
    """
    Dict-backed VectorBackend.
    With ignore_filter=True, query() returns every record regardless of the
    metadata filter, simulating an index that leaks other users' records.
    """

    def __init__(self, ignore_filter: bool = False):
        self.ignore_filter = ignore_filter
        self.records: dict[str, dict] = {}
        self.fail_queries = False

    def upsert(self, ids, embeddings, documents, metadatas):
        for id_, emb, doc, meta in zip(ids, embeddings, documents, metadatas):
            self.records[id_] = {"embedding": emb, "document": doc, "metadata": dict(meta)}

    def _matches(self, meta, where):
        if self.ignore_filter or not where:
            return True
        return all(meta.get(k) == v for k, v in where.items())

    def query(self, embedding, n_results, where=None):
        if self.fail_queries:
            raise RuntimeError("index unreachable")
        hits = [
            (id_, rec) for id_, rec in self.records.items()
            if self._matches(rec["metadata"], where)
        ][:n_results]
        return {
            "ids": [[h[0] for h in hits]],
            "documents": [[h[1]["document"] for h in hits]],
            "metadatas": [[h[1]["metadata"] for h in hits]],
            "distances": [[0.1 for _ in hits]],
        }

    def fetch(self, ids):
        found = [i for i in ids if i in self.records]
        return {
            "ids": found,
            "documents": [self.records[i]["document"] for i in found],
            "metadatas": [self.records[i]["metadata"] for i in found],
        }

    def list_ids(self, prefix):
        return [i for i in self.records if i.startswith(prefix)]

    def delete(self, ids):
        for i in ids:
            self.records.pop(i, None)

    def count(self):
        return len(self.records)


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def memory_backend():
    return InMemoryBackend()


@pytest.fixture
def leaky_backend():
    return InMemoryBackend(ignore_filter=True)


@pytest.fixture(autouse=True)
def _fresh_config():
    """No test sees another test's cached config."""
    reset_config()
    yield
    reset_config()
