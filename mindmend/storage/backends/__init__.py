"""
Vector backends, chosen by storage.vector_backend in config.yaml.

    pinecone  hosted index over REST (default; needs PINECONE_API_KEY)
    chromadb  local PersistentClient under storage.chroma_path

Each entry maps a name to a builder that turns the storage section of
the config into constructor kwargs. Backend modules are imported only
when their builder runs, so chromadb is never loaded for a Pinecone
deployment.
"""

from typing import Callable

from .base import VectorBackend


def _pinecone(**kwargs) -> VectorBackend:
    from .pinecone import PineconeBackend
    return PineconeBackend(**kwargs)


def _chromadb(**kwargs) -> VectorBackend:
    from .chroma import ChromaBackend
    return ChromaBackend(**kwargs)


_BUILDERS: dict[str, Callable[..., VectorBackend]] = {
    "pinecone": _pinecone,
    "chromadb": _chromadb,
}


def make_backend(backend_type: str, **kwargs) -> VectorBackend:
    """Build a backend by registry name; kwargs go to its constructor."""
    build = _BUILDERS.get(backend_type)
    if build is None:
        raise ValueError(
            f"Unknown vector backend: '{backend_type}'. "
            f"Available: {', '.join(sorted(_BUILDERS))}"
        )
    return build(**kwargs)


def backend_from_config(storage_cfg: dict) -> VectorBackend:
    """Build the backend named by a storage config section."""
    backend_type = storage_cfg.get("vector_backend", "pinecone")
    if backend_type == "pinecone":
        pc = storage_cfg.get("pinecone") or {}
        return make_backend(
            "pinecone",
            api_key=pc.get("api_key", ""),
            index_name=pc.get("index_name") or "chat-conversations",
            namespace=pc.get("namespace", "conversations"),
            index_host=pc.get("index_host", ""),
        )
    if backend_type == "chromadb":
        return make_backend("chromadb", path=storage_cfg.get("chroma_path", "./data/chroma"))
    return make_backend(backend_type)


__all__ = ["VectorBackend", "backend_from_config", "make_backend"]
