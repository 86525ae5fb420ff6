"""Ingestion coordinator — turn a stored document into searchable chunks.

Pipeline for one document::

    load → mark processing → chunk → embed (best effort) → replace chunks → mark indexed

Contract
--------
* :meth:`IngestionCoordinator.ingest` never raises; every failure is
  reported through :class:`~knowledge_base.models.IngestionResult` and,
  once the document has entered ``processing``, a ``failed`` status.
* An embedding failure does not fail the ingestion: chunks are stored
  without vectors and can be filled in later with :meth:`reembed`.
* Chunks are always replaced, never appended: prior chunks are deleted
  before the new set is inserted.
* Ingestions of the same document are serialised by an in-process lock.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from knowledge_base.exceptions import NotFoundError
from knowledge_base.ingestion.chunker import ChunkOptions, chunk_text_with_options
from knowledge_base.ingestion.embedder import EmbeddingClient
from knowledge_base.models import (
    ChunkMetadata,
    ChunkRecord,
    DocumentStatus,
    IngestionResult,
    KnowledgeDocument,
)
from knowledge_base.retrieval.base import ChunkStore, DocumentStore

logger = logging.getLogger(__name__)


class DocumentLocks:
    """Registry of per-document :class:`asyncio.Lock` objects.

    Locks are created on first use and dropped once nobody holds or
    waits on them, so the registry does not grow with the corpus.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._locks

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


class IngestionCoordinator:
    """Run the chunk → embed → persist pipeline for stored documents.

    Parameters
    ----------
    documents:
        Store holding document content and lifecycle status.
    chunks:
        Store receiving the computed chunks.
    embedder:
        Client used to embed chunk texts.
    chunk_options:
        Chunking parameters; defaults to :class:`ChunkOptions` defaults.
    """

    def __init__(
        self,
        documents: DocumentStore,
        chunks: ChunkStore,
        embedder: EmbeddingClient,
        *,
        chunk_options: ChunkOptions | None = None,
    ) -> None:
        self._documents = documents
        self._chunks = chunks
        self._embedder = embedder
        self.chunk_options = chunk_options or ChunkOptions()
        self._locks = DocumentLocks()

    # -- public API -----------------------------------------------------------

    async def ingest(self, document_id: str, tenant_id: str) -> IngestionResult:
        """Index *document_id* for *tenant_id*; always returns a result."""
        async with self._locks.hold(document_id):
            try:
                document = await self._load(document_id, tenant_id)
            except Exception as exc:
                logger.warning("Ingestion of document %s not started: %s", document_id, exc)
                return IngestionResult(document_id=document_id, success=False, error=str(exc))

            try:
                return await self._run(document)
            except asyncio.CancelledError:
                await self._mark_failed(document_id)
                raise
            except Exception as exc:
                logger.error("Ingestion of document %s failed", document_id, exc_info=True)
                await self._mark_failed(document_id)
                return IngestionResult(document_id=document_id, success=False, error=str(exc))

    async def reembed(self, document_id: str, tenant_id: str) -> IngestionResult:
        """Fill in missing embeddings of an indexed document without re-chunking.

        ``chunks_created`` in the result counts the chunks that received
        a vector.  The document status is left untouched: on failure the
        document stays searchable exactly as before.
        """
        async with self._locks.hold(document_id):
            try:
                document = await self._load(document_id, tenant_id)
                if document.status != DocumentStatus.INDEXED:
                    return IngestionResult(
                        document_id=document_id,
                        success=False,
                        error=f"Document {document_id} is {document.status.value}, not indexed",
                    )

                existing = await self._chunks.select_chunks_for_document(document_id)
                missing = [c for c in existing if not c.has_embedding]
                if not missing:
                    return IngestionResult(document_id=document_id, success=True, embedded=True)

                vectors = await self._embedder.embed_many([c.content for c in missing])
                # Vectors are written in place; the chunks themselves are never removed.
                await self._chunks.update_embeddings(
                    document_id, {c.chunk_index: v for c, v in zip(missing, vectors)}
                )
            except Exception as exc:
                logger.warning("Re-embedding of document %s failed: %s", document_id, exc)
                return IngestionResult(document_id=document_id, success=False, error=str(exc))

        logger.info("Re-embedded %d chunks of document %s", len(missing), document_id)
        return IngestionResult(
            document_id=document_id,
            chunks_created=len(missing),
            success=True,
            embedded=True,
        )

    async def delete_document(self, document_id: str, tenant_id: str) -> int:
        """Delete a document and, first, all of its chunks.

        Returns the number of chunks removed.

        Raises
        ------
        NotFoundError
            If the document does not exist for this tenant.
        """
        async with self._locks.hold(document_id):
            await self._load(document_id, tenant_id)
            removed = await self._chunks.delete_chunks_for_document(document_id)
            await self._documents.delete_document(document_id, tenant_id)
        logger.info("Deleted document %s (%d chunks)", document_id, removed)
        return removed

    # -- internals ------------------------------------------------------------

    async def _load(self, document_id: str, tenant_id: str) -> KnowledgeDocument:
        document = await self._documents.get_document(document_id, tenant_id)
        if document is None:
            raise NotFoundError("document", document_id, tenant_id)
        return document

    async def _run(self, document: KnowledgeDocument) -> IngestionResult:
        await self._documents.set_status(document.id, DocumentStatus.PROCESSING)

        texts = chunk_text_with_options(document.content, self.chunk_options)
        embeddings, embedded = await self._embed(document.id, texts)

        records = [
            ChunkRecord(
                document_id=document.id,
                tenant_id=document.tenant_id,
                chunk_index=index,
                content=content,
                embedding=vector or None,
                metadata=ChunkMetadata.from_content(content),
                category_id=document.category_id,
                document_title=document.title,
            )
            for index, (content, vector) in enumerate(zip(texts, embeddings))
        ]

        removed = await self._chunks.delete_chunks_for_document(document.id)
        await self._chunks.insert_chunks(records)

        await self._documents.set_status(
            document.id,
            DocumentStatus.INDEXED,
            indexed_at=datetime.now(timezone.utc),
            chunk_count=len(records),
        )
        logger.info(
            "Indexed document %s: %d chunks (replaced %d, embedded=%s)",
            document.id,
            len(records),
            removed,
            embedded,
        )
        return IngestionResult(
            document_id=document.id,
            chunks_created=len(records),
            success=True,
            embedded=embedded,
        )

    async def _embed(self, document_id: str, texts: list[str]) -> tuple[list[list[float] | None], bool]:
        if not texts:
            return [], False
        try:
            vectors = await self._embedder.embed_many(texts)
        except Exception:
            logger.warning(
                "Embedding failed for document %s; storing %d chunks without vectors",
                document_id,
                len(texts),
                exc_info=True,
            )
            return [None] * len(texts), False
        return list(vectors), True

    async def _mark_failed(self, document_id: str) -> None:
        try:
            await self._documents.set_status(document_id, DocumentStatus.FAILED)
        except Exception:
            logger.error("Could not mark document %s as failed", document_id, exc_info=True)
