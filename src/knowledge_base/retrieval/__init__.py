"""
Retrieval — chunk storage backends and embedding-based search.

Public surface
--------------
- :class:`RetrievalService` — main entry point for tenant-scoped search.
- :class:`ChunkStore`, :class:`DocumentStore` — abstract backends.
- :class:`InMemoryChunkStore`, :class:`InMemoryDocumentStore` — reference backends.
- :class:`ChromaChunkStore` — Chroma backend (imported lazily).
"""

from knowledge_base.retrieval.base import ChunkStore, DocumentStore
from knowledge_base.retrieval.memory_store import InMemoryChunkStore, InMemoryDocumentStore
from knowledge_base.retrieval.retriever import RetrievalService

__all__ = [
    "ChromaChunkStore",
    "ChunkStore",
    "DocumentStore",
    "InMemoryChunkStore",
    "InMemoryDocumentStore",
    "RetrievalService",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaChunkStore to avoid pulling in chromadb at import time."""
    if name == "ChromaChunkStore":
        from knowledge_base.retrieval.chroma_store import ChromaChunkStore

        return ChromaChunkStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
