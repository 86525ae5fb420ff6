"""Wire the ingestion and retrieval components from :class:`Settings`.

Usage::

    kb = build_knowledge_base(documents=my_document_store)
    async with kb.queue:
        await kb.queue.submit(doc.id, doc.tenant_id)
    results = await kb.retrieval.search(doc.tenant_id, "pricing tiers")
"""

from __future__ import annotations

from dataclasses import dataclass

from knowledge_base.config import Settings, settings as default_settings
from knowledge_base.ingestion.chunker import ChunkOptions
from knowledge_base.ingestion.coordinator import IngestionCoordinator
from knowledge_base.ingestion.embedder import EmbeddingClient
from knowledge_base.ingestion.queue import IngestionQueue
from knowledge_base.retrieval.base import ChunkStore, DocumentStore
from knowledge_base.retrieval.retriever import RetrievalService


@dataclass
class KnowledgeBase:
    """The assembled components, sharing one embedder and chunk store."""

    documents: DocumentStore
    chunks: ChunkStore
    embedder: EmbeddingClient
    coordinator: IngestionCoordinator
    retrieval: RetrievalService
    queue: IngestionQueue


def build_knowledge_base(
    *,
    documents: DocumentStore,
    chunks: ChunkStore | None = None,
    embedder: EmbeddingClient | None = None,
    settings: Settings | None = None,
) -> KnowledgeBase:
    """Assemble a :class:`KnowledgeBase`.

    Parameters
    ----------
    documents:
        Document store; always supplied by the host application.
    chunks:
        Chunk store.  Defaults to a :class:`ChromaChunkStore` built from
        the Chroma settings.
    embedder:
        Embedding client.  Defaults to the provider named by
        ``settings.embedding_provider``.
    settings:
        Configuration; defaults to the module-level ``settings``.
    """
    settings = settings or default_settings

    if chunks is None:
        from knowledge_base.retrieval.chroma_store import ChromaChunkStore

        chunks = ChromaChunkStore(
            settings.chroma_collection,
            host=settings.chroma_host,
            port=settings.chroma_port,
            dimensions=settings.embedding_dimensions,
        )
    if embedder is None:
        embedder = EmbeddingClient.from_settings(settings)

    coordinator = IngestionCoordinator(
        documents,
        chunks,
        embedder,
        chunk_options=ChunkOptions.from_settings(settings),
    )
    return KnowledgeBase(
        documents=documents,
        chunks=chunks,
        embedder=embedder,
        coordinator=coordinator,
        retrieval=RetrievalService.from_settings(chunks, embedder, settings),
        queue=IngestionQueue(
            coordinator,
            workers=settings.ingestion_workers,
            maxsize=settings.ingestion_queue_size,
        ),
    )
