"""Chroma implementation of the chunk-store abstraction."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

import chromadb

from knowledge_base.config import settings
from knowledge_base.models import ChunkMetadata, ChunkRecord, DocumentChunk, SearchResult
from knowledge_base.retrieval.base import ChunkStore, rank_results, term_overlap_score

logger = logging.getLogger(__name__)


def _build_where(tenant_id: str, category_ids: Sequence[str] | None, *, embedded_only: bool) -> dict[str, Any]:
    """Build a Chroma ``where`` clause scoping a query to one tenant."""
    clauses: list[dict[str, Any]] = [{"tenant_id": {"$eq": tenant_id}}]
    if category_ids:
        clauses.append({"category_id": {"$in": list(category_ids)}})
    if embedded_only:
        clauses.append({"embedded": {"$eq": True}})

    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


class ChromaChunkStore(ChunkStore):
    """Chroma-backed chunk store.

    Chunks live in a single collection using cosine distance; tenant,
    document and category ids are stored as metadata and applied as
    ``where`` filters.  Chroma requires a vector for every record, so
    chunks whose embedding failed are written with a placeholder vector
    and ``embedded=False``, which keeps them out of similarity search
    while leaving them available to :meth:`text_search`.

    Parameters
    ----------
    collection_name:
        Name of the Chroma collection.
    host:
        Chroma server hostname (ignored when *client* is given).
    port:
        Chroma server port (ignored when *client* is given).
    dimensions:
        Embedding length used to size placeholder vectors while the
        collection holds no vectors yet.  Once it does, placeholders take
        the collection's own length.
    client:
        Pre-built Chroma client, e.g. ``chromadb.EphemeralClient()`` in tests.
    upsert_batch_size:
        Max records per upsert call.
    """

    def __init__(
        self,
        collection_name: str = settings.chroma_collection,
        *,
        host: str = settings.chroma_host,
        port: int = settings.chroma_port,
        dimensions: int = settings.embedding_dimensions,
        client: Any | None = None,
        upsert_batch_size: int = 5000,
    ) -> None:
        self.collection_name = collection_name
        self._client = client if client is not None else chromadb.HttpClient(host=host, port=port)
        self._collection = self._client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
            embedding_function=None,
        )
        self._dimensions = dimensions
        self._collection_dimensions: int | None = None
        self._upsert_batch_size = upsert_batch_size

    # -- ChunkStore overrides -------------------------------------------------

    async def delete_chunks_for_document(self, document_id: str) -> int:
        return await asyncio.to_thread(self._delete_for_document, document_id)

    async def insert_chunks(self, records: Sequence[ChunkRecord]) -> list[DocumentChunk]:
        if not records:
            return []
        chunks = [DocumentChunk.from_record(r) for r in records]
        await asyncio.to_thread(self._upsert, chunks)
        return chunks

    async def select_chunks_for_document(self, document_id: str) -> list[DocumentChunk]:
        results = await asyncio.to_thread(
            self._collection.get,
            where={"document_id": {"$eq": document_id}},
            include=["documents", "metadatas", "embeddings"],
        )
        chunks = self._chunks_from_get(results)
        return sorted(chunks, key=lambda c: c.chunk_index)

    async def update_embeddings(self, document_id: str, embeddings: Mapping[int, Sequence[float]]) -> int:
        if not embeddings:
            return 0
        return await asyncio.to_thread(self._update_embeddings, document_id, embeddings)

    async def similarity_search(
        self,
        tenant_id: str,
        query_vector: Sequence[float],
        *,
        category_ids: Sequence[str] | None = None,
        limit: int = 10,
        min_score: float = 0.0,
    ) -> list[SearchResult]:
        results = await asyncio.to_thread(
            self._collection.query,
            query_embeddings=[list(query_vector)],
            n_results=limit,
            where=_build_where(tenant_id, category_ids, embedded_only=True),
            include=["documents", "metadatas", "distances", "embeddings"],
        )

        ids = results.get("ids", [[]])[0]
        docs = results.get("documents", [[]])[0]
        metas = results.get("metadatas", [[]])[0]
        distances = results.get("distances", [[]])[0]
        embeddings = _first_row(results.get("embeddings"), len(ids))

        hits: list[SearchResult] = []
        for chunk_id, content, meta, dist, emb in zip(ids, docs, metas, distances, embeddings):
            # Cosine distance is 1 - cosine similarity.
            score = max(-1.0, min(1.0, 1.0 - float(dist)))
            if score < min_score:
                continue
            chunk = self._chunk_from_row(chunk_id, content, meta, emb)
            hits.append(SearchResult(chunk=chunk, score=score))
        return rank_results(hits, limit)

    async def text_search(
        self,
        tenant_id: str,
        query: str,
        *,
        category_ids: Sequence[str] | None = None,
        limit: int = 10,
    ) -> list[SearchResult]:
        results = await asyncio.to_thread(
            self._collection.get,
            where=_build_where(tenant_id, category_ids, embedded_only=False),
            include=["documents", "metadatas", "embeddings"],
        )
        hits: list[SearchResult] = []
        for chunk in self._chunks_from_get(results):
            score = term_overlap_score(query, chunk.content)
            if score > 0:
                hits.append(SearchResult(chunk=chunk, score=score))
        return rank_results(hits, limit)

    async def health_check(self) -> bool:
        try:
            await asyncio.to_thread(self._client.heartbeat)
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False

    # -- internals ------------------------------------------------------------

    def _delete_for_document(self, document_id: str) -> int:
        existing = self._collection.get(where={"document_id": {"$eq": document_id}}, include=["metadatas"])
        ids = existing.get("ids", [])
        if ids:
            self._collection.delete(ids=ids)
        return len(ids)

    def _update_embeddings(self, document_id: str, embeddings: Mapping[int, Sequence[float]]) -> int:
        existing = self._collection.get(
            ids=[f"{document_id}:{index}" for index in embeddings],
            include=["documents", "metadatas"],
        )
        ids = existing.get("ids", [])
        if not ids:
            return 0
        docs = existing.get("documents") or [""] * len(ids)
        metas = existing.get("metadatas") or [{}] * len(ids)

        vectors: list[list[float]] = []
        metadatas: list[dict[str, Any]] = []
        for meta in metas:
            meta = dict(meta or {})
            vectors.append([float(x) for x in embeddings[int(meta["chunk_index"])]])
            meta["embedded"] = True
            metadatas.append(meta)

        self._collection.upsert(ids=ids, embeddings=vectors, documents=docs, metadatas=metadatas)
        self._collection_dimensions = len(vectors[0])
        logger.debug("updated %d embeddings for document %s", len(ids), document_id)
        return len(ids)

    def _vector_dimensions(self, chunks: list[DocumentChunk]) -> int:
        """Length every vector in *chunks* must have to fit the collection."""
        for chunk in chunks:
            if chunk.has_embedding:
                return len(chunk.embedding)
        if self._collection_dimensions is None:
            # The first stored vector fixes the collection's length.
            peek = self._collection.get(limit=1, include=["embeddings"])
            stored = peek.get("embeddings")
            if stored is not None and len(stored) > 0:
                self._collection_dimensions = len(stored[0])
        return self._collection_dimensions or self._dimensions

    def _upsert(self, chunks: list[DocumentChunk]) -> None:
        ids: list[str] = []
        embeddings: list[list[float]] = []
        documents: list[str] = []
        metadatas: list[dict[str, Any]] = []

        dims = self._vector_dimensions(chunks)
        for chunk in chunks:
            ids.append(chunk.id)
            embeddings.append(chunk.embedding if chunk.has_embedding else _placeholder(dims))
            documents.append(chunk.content)
            # Chroma metadata values must be flat str/int/float/bool.
            metadatas.append(
                {
                    "document_id": chunk.document_id,
                    "tenant_id": chunk.tenant_id,
                    "chunk_index": chunk.chunk_index,
                    "category_id": chunk.category_id or "",
                    "document_title": chunk.document_title,
                    "char_count": chunk.metadata.char_count,
                    "word_count": chunk.metadata.word_count,
                    "embedded": chunk.has_embedding,
                    "created_at": chunk.created_at.isoformat(),
                }
            )

        for start in range(0, len(ids), self._upsert_batch_size):
            end = start + self._upsert_batch_size
            self._collection.upsert(
                ids=ids[start:end],
                embeddings=embeddings[start:end],
                documents=documents[start:end],
                metadatas=metadatas[start:end],
            )
        self._collection_dimensions = dims
        logger.debug("upserted %d chunks into %s", len(ids), self.collection_name)

    def _chunks_from_get(self, results: dict[str, Any]) -> list[DocumentChunk]:
        ids = results.get("ids", [])
        docs = results.get("documents") or [""] * len(ids)
        metas = results.get("metadatas") or [{}] * len(ids)
        embeddings = results.get("embeddings")
        if embeddings is None:
            embeddings = [None] * len(ids)
        return [
            self._chunk_from_row(cid, content, meta, emb)
            for cid, content, meta, emb in zip(ids, docs, metas, embeddings)
        ]

    @staticmethod
    def _chunk_from_row(chunk_id: str, content: str | None, meta: dict[str, Any] | None, embedding: Any) -> DocumentChunk:
        meta = meta or {}
        vector = None
        if meta.get("embedded") and embedding is not None:
            vector = [float(x) for x in embedding]
        created_at = meta.get("created_at")
        extra: dict[str, Any] = {}
        if created_at:
            extra["created_at"] = datetime.fromisoformat(created_at)
        return DocumentChunk(
            id=chunk_id,
            document_id=meta.get("document_id", ""),
            tenant_id=meta.get("tenant_id", ""),
            chunk_index=int(meta.get("chunk_index", 0)),
            content=content or "",
            embedding=vector,
            metadata=ChunkMetadata(
                char_count=int(meta.get("char_count", 0)),
                word_count=int(meta.get("word_count", 0)),
            ),
            category_id=meta.get("category_id") or None,
            document_title=meta.get("document_title", ""),
            **extra,
        )


def _first_row(matrix: Any, length: int) -> list[Any]:
    """Return the first row of a per-query result matrix, or ``None`` padding."""
    if matrix is None or len(matrix) == 0:
        return [None] * length
    return list(matrix[0])


def _placeholder(dims: int) -> list[float]:
    # Unit vector; never scored because of the ``embedded`` filter.
    return [1.0] + [0.0] * (dims - 1)
