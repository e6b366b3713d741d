"""
VectorBackend - abstract base for vector storage backends.

Backends only move vectors around; embedding stays in the store.
Six primitives:
  upsert    - store vectors + documents + metadata
  query     - nearest-neighbour search by vector, optional equality filter
  fetch     - read records back by id
  list_ids  - ids sharing a prefix (how per-user records are enumerated)
  delete    - remove records by id
  count     - total stored vectors
"""

from abc import ABC, abstractmethod


class VectorBackend(ABC):
    """Abstract vector storage backend."""

    @abstractmethod
    def upsert(
        self,
        ids: list[str],
        embeddings: list[list[float]],
        documents: list[str],
        metadatas: list[dict],
    ) -> None:
        """Insert or update vectors with associated documents and metadata."""
        ...

    @abstractmethod
    def query(
        self,
        embedding: list[float],
        n_results: int,
        where: dict | None = None,
    ) -> dict:
        """
        Nearest-neighbour search. `where` is a flat {field: value} equality filter.

        Returns a dict with keys:
          ids        - list[list[str]]
          documents  - list[list[str]]
          metadatas  - list[list[dict]]
          distances  - list[list[float]]
        (the ChromaDB collection.query() shape, whatever the backend)
        """
        ...

    @abstractmethod
    def fetch(self, ids: list[str]) -> dict:
        """Return {"ids": [...], "documents": [...], "metadatas": [...]} for known ids."""
        ...

    @abstractmethod
    def list_ids(self, prefix: str) -> list[str]:
        """Return every stored id that starts with `prefix`."""
        ...

    @abstractmethod
    def delete(self, ids: list[str]) -> None:
        """Delete records by id. Unknown ids are ignored."""
        ...

    @abstractmethod
    def count(self) -> int:
        """Return total number of stored vectors."""
        ...

    def close(self) -> None:
        """Release connections held by the backend. Nothing to do by default."""
