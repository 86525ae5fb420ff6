"""Abstract base classes for the document and chunk storage backends.

The ingestion coordinator and the retrieval service only ever talk to
these interfaces.  Adding a backend (pgvector, Qdrant, …) only requires
subclassing :class:`DocumentStore` / :class:`ChunkStore` and implementing
the abstract coroutines.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from datetime import datetime

from knowledge_base.models import (
    ChunkRecord,
    DocumentChunk,
    DocumentStatus,
    KnowledgeDocument,
    SearchResult,
)


class ChunkStore(ABC):
    """Backend-agnostic chunk persistence and similarity search."""

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    async def delete_chunks_for_document(self, document_id: str) -> int:
        """Delete every chunk of *document_id*; return how many were removed.

        Must be idempotent: deleting chunks of a document that has none
        returns ``0``.
        """
        ...

    @abstractmethod
    async def insert_chunks(self, records: Sequence[ChunkRecord]) -> list[DocumentChunk]:
        """Persist *records* in one bulk operation.  An empty list is a no-op."""
        ...

    @abstractmethod
    async def select_chunks_for_document(self, document_id: str) -> list[DocumentChunk]:
        """Return the chunks of *document_id* ordered by ``chunk_index``."""
        ...

    @abstractmethod
    async def update_embeddings(self, document_id: str, embeddings: Mapping[int, Sequence[float]]) -> int:
        """Set the vectors of existing chunks of *document_id*, keyed by ``chunk_index``.

        Chunks not named in *embeddings* are left untouched, as are the
        content and metadata of the ones that are.  Indices with no stored
        chunk are ignored.  Returns the number of chunks updated.
        """
        ...

    @abstractmethod
    async def similarity_search(
        self,
        tenant_id: str,
        query_vector: Sequence[float],
        *,
        category_ids: Sequence[str] | None = None,
        limit: int = 10,
        min_score: float = 0.0,
    ) -> list[SearchResult]:
        """Rank the tenant's embedded chunks against *query_vector*.

        Ranking contract:

        * results are ordered by descending cosine similarity;
        * ties are broken by chunk id, ascending;
        * chunks scoring below *min_score* are excluded;
        * chunks without an embedding never match;
        * at most *limit* results are returned.

        Parameters
        ----------
        tenant_id:
            Only chunks owned by this tenant are considered.
        query_vector:
            Dense vector for the query.
        category_ids:
            Optional category filter; empty or ``None`` disables it.
        limit:
            Result cap.
        min_score:
            Minimum similarity score.
        """
        ...

    @abstractmethod
    async def text_search(
        self,
        tenant_id: str,
        query: str,
        *,
        category_ids: Sequence[str] | None = None,
        limit: int = 10,
    ) -> list[SearchResult]:
        """Lexical search used when no query vector is available.

        The score is the fraction of distinct query terms found in the
        chunk (case-insensitive); chunks matching no term are excluded.
        Ordering follows the same contract as :meth:`similarity_search`.
        """
        ...

    # -- optional overrides ---------------------------------------------------

    async def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        return True


class DocumentStore(ABC):
    """Backend-agnostic tenant-scoped document persistence."""

    @abstractmethod
    async def get_document(self, document_id: str, tenant_id: str) -> KnowledgeDocument | None:
        """Return the document, or ``None`` if it does not exist for this tenant."""
        ...

    @abstractmethod
    async def set_status(
        self,
        document_id: str,
        status: DocumentStatus,
        *,
        indexed_at: datetime | None = None,
        chunk_count: int | None = None,
    ) -> KnowledgeDocument:
        """Update the lifecycle status.

        ``indexed_at`` and ``chunk_count`` are only written when given.

        Raises
        ------
        NotFoundError
            If the document does not exist.
        """
        ...

    @abstractmethod
    async def insert_document(self, document: KnowledgeDocument) -> KnowledgeDocument:
        """Create a document (normally in ``pending`` status)."""
        ...

    @abstractmethod
    async def list_documents(
        self,
        tenant_id: str,
        *,
        status: DocumentStatus | None = None,
        category_id: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[KnowledgeDocument]:
        """List a tenant's documents, newest first."""
        ...

    @abstractmethod
    async def delete_document(self, document_id: str, tenant_id: str) -> bool:
        """Delete the document row; return ``False`` if it did not exist.

        Callers are responsible for removing the document's chunks first.
        """
        ...


# -- helpers shared by backends -------------------------------------------------


def rank_results(results: Sequence[SearchResult], limit: int) -> list[SearchResult]:
    """Order by descending score, then chunk id, and keep the first *limit*."""
    ordered = sorted(results, key=lambda r: (-r.score, r.chunk.id))
    return ordered[:limit]


def term_overlap_score(query: str, content: str) -> float:
    """Fraction of distinct query terms that occur in *content* (case-insensitive)."""
    terms = {t for t in query.lower().split() if t}
    if not terms:
        return 0.0
    haystack = content.lower()
    matched = sum(1 for t in terms if t in haystack)
    return matched / len(terms)
