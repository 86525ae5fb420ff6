"""In-memory implementations of the storage interfaces.

Used in tests and local development.  Ranking is exact: every embedded
chunk of the tenant is scored with :func:`cosine_similarity`.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone

from knowledge_base.exceptions import NotFoundError
from knowledge_base.ingestion.embedder import cosine_similarity
from knowledge_base.models import (
    ChunkRecord,
    DocumentChunk,
    DocumentStatus,
    KnowledgeDocument,
    SearchResult,
)
from knowledge_base.retrieval.base import (
    ChunkStore,
    DocumentStore,
    rank_results,
    term_overlap_score,
)

logger = logging.getLogger(__name__)


class InMemoryChunkStore(ChunkStore):
    """Dict-backed chunk store keyed by chunk id."""

    def __init__(self) -> None:
        self._chunks: dict[str, DocumentChunk] = {}

    def __len__(self) -> int:
        return len(self._chunks)

    async def delete_chunks_for_document(self, document_id: str) -> int:
        doomed = [cid for cid, c in self._chunks.items() if c.document_id == document_id]
        for cid in doomed:
            del self._chunks[cid]
        return len(doomed)

    async def insert_chunks(self, records: Sequence[ChunkRecord]) -> list[DocumentChunk]:
        inserted = [DocumentChunk.from_record(r) for r in records]
        for chunk in inserted:
            self._chunks[chunk.id] = chunk
        return inserted

    async def select_chunks_for_document(self, document_id: str) -> list[DocumentChunk]:
        chunks = [c for c in self._chunks.values() if c.document_id == document_id]
        return sorted(chunks, key=lambda c: c.chunk_index)

    async def update_embeddings(self, document_id: str, embeddings: Mapping[int, Sequence[float]]) -> int:
        updated = 0
        for index, vector in embeddings.items():
            chunk_id = f"{document_id}:{index}"
            chunk = self._chunks.get(chunk_id)
            if chunk is None:
                continue
            self._chunks[chunk_id] = chunk.model_copy(update={"embedding": list(vector)})
            updated += 1
        return updated

    async def similarity_search(
        self,
        tenant_id: str,
        query_vector: Sequence[float],
        *,
        category_ids: Sequence[str] | None = None,
        limit: int = 10,
        min_score: float = 0.0,
    ) -> list[SearchResult]:
        hits: list[SearchResult] = []
        for chunk in self._candidates(tenant_id, category_ids):
            if not chunk.has_embedding:
                continue
            score = cosine_similarity(query_vector, chunk.embedding)
            if score >= min_score:
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
        hits: list[SearchResult] = []
        for chunk in self._candidates(tenant_id, category_ids):
            score = term_overlap_score(query, chunk.content)
            if score > 0:
                hits.append(SearchResult(chunk=chunk, score=score))
        return rank_results(hits, limit)

    def _candidates(self, tenant_id: str, category_ids: Sequence[str] | None):
        allowed = set(category_ids) if category_ids else None
        for chunk in self._chunks.values():
            if chunk.tenant_id != tenant_id:
                continue
            if allowed is not None and chunk.category_id not in allowed:
                continue
            yield chunk


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed document store keyed by document id."""

    def __init__(self, documents: Sequence[KnowledgeDocument] = ()) -> None:
        self._documents: dict[str, KnowledgeDocument] = {d.id: d for d in documents}

    async def get_document(self, document_id: str, tenant_id: str) -> KnowledgeDocument | None:
        doc = self._documents.get(document_id)
        if doc is None or doc.tenant_id != tenant_id:
            return None
        return doc.model_copy(deep=True)

    async def set_status(
        self,
        document_id: str,
        status: DocumentStatus,
        *,
        indexed_at: datetime | None = None,
        chunk_count: int | None = None,
    ) -> KnowledgeDocument:
        doc = self._documents.get(document_id)
        if doc is None:
            raise NotFoundError("document", document_id)

        update: dict = {"status": status, "updated_at": datetime.now(timezone.utc)}
        if indexed_at is not None:
            update["indexed_at"] = indexed_at
        if chunk_count is not None:
            update["chunk_count"] = chunk_count

        updated = doc.model_copy(update=update)
        self._documents[document_id] = updated
        logger.debug("document %s -> %s", document_id, status.value)
        return updated.model_copy(deep=True)

    async def insert_document(self, document: KnowledgeDocument) -> KnowledgeDocument:
        self._documents[document.id] = document.model_copy(deep=True)
        return document

    async def list_documents(
        self,
        tenant_id: str,
        *,
        status: DocumentStatus | None = None,
        category_id: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[KnowledgeDocument]:
        docs = [
            d
            for d in self._documents.values()
            if d.tenant_id == tenant_id
            and (status is None or d.status == status)
            and (category_id is None or d.category_id == category_id)
        ]
        docs.sort(key=lambda d: d.created_at, reverse=True)
        end = offset + limit if limit is not None else None
        return [d.model_copy(deep=True) for d in docs[offset:end]]

    async def delete_document(self, document_id: str, tenant_id: str) -> bool:
        doc = self._documents.get(document_id)
        if doc is None or doc.tenant_id != tenant_id:
            return False
        del self._documents[document_id]
        return True
