"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import hashlib

import pytest
from langchain_core.embeddings import Embeddings

from knowledge_base.ingestion.coordinator import IngestionCoordinator
from knowledge_base.ingestion.embedder import EmbeddingClient
from knowledge_base.models import KnowledgeDocument
from knowledge_base.retrieval.memory_store import InMemoryChunkStore, InMemoryDocumentStore
from knowledge_base.retrieval.retriever import RetrievalService


class FakeEmbeddings(Embeddings):
    """Deterministic, call-recording embeddings provider.

    Vectors are derived from a SHA-256 of the text, so equal texts map
    to equal vectors across calls.  Explicit vectors can be pinned per
    text through *vectors*.
    """

    def __init__(self, size: int = 8, *, fail: bool = False, vectors: dict[str, list[float]] | None = None) -> None:
        self.size = size
        self.fail = fail
        self.vectors = dict(vectors or {})
        self.document_calls: list[list[str]] = []
        self.query_calls: list[str] = []

    def vector_for(self, text: str) -> list[float]:
        if text in self.vectors:
            return list(self.vectors[text])
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [b / 255.0 + 0.01 for b in digest[: self.size]]

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.document_calls.append(list(texts))
        if self.fail:
            raise RuntimeError("embedding provider unavailable")
        return [self.vector_for(t) for t in texts]

    def embed_query(self, text: str) -> list[float]:
        self.query_calls.append(text)
        if self.fail:
            raise RuntimeError("embedding provider unavailable")
        return self.vector_for(text)


LONG_CONTENT = "\n\n".join(
    f"Section {i}. The refund policy covers purchases made within thirty days. "
    f"Customers must provide a receipt for every claim number {i}."
    for i in range(40)
)


@pytest.fixture()
def fake_provider() -> FakeEmbeddings:
    return FakeEmbeddings()


@pytest.fixture()
def embedder(fake_provider: FakeEmbeddings) -> EmbeddingClient:
    return EmbeddingClient(fake_provider, batch_size=4, timeout=5.0)


@pytest.fixture()
def document() -> KnowledgeDocument:
    return KnowledgeDocument(
        id="doc-1",
        tenant_id="tenant-a",
        title="Refund policy",
        content=LONG_CONTENT,
        category_id="cat-policies",
        tags=["billing"],
    )


@pytest.fixture()
def document_store(document: KnowledgeDocument) -> InMemoryDocumentStore:
    return InMemoryDocumentStore([document])


@pytest.fixture()
def chunk_store() -> InMemoryChunkStore:
    return InMemoryChunkStore()


@pytest.fixture()
def coordinator(
    document_store: InMemoryDocumentStore,
    chunk_store: InMemoryChunkStore,
    embedder: EmbeddingClient,
) -> IngestionCoordinator:
    return IngestionCoordinator(document_store, chunk_store, embedder)


@pytest.fixture()
def retrieval(chunk_store: InMemoryChunkStore, embedder: EmbeddingClient) -> RetrievalService:
    return RetrievalService(chunk_store, embedder)
