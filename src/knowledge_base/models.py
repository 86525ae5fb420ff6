"""Domain models for documents, chunks, search results and ingestion outcomes."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

MAX_SEARCH_LIMIT = 50

# Similarity threshold applied when a search does not set ``min_score``.
DEFAULT_MIN_SCORE = 0.7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentStatus(str, Enum):
    """Document indexing lifecycle.

    ``pending → processing → indexed | failed``.  ``indexed``, ``failed``
    and ``archived`` documents re-enter ``processing`` when ingested again.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    INDEXED = "indexed"
    FAILED = "failed"
    ARCHIVED = "archived"


class KnowledgeDocument(BaseModel):
    """A tenant-owned source document.

    Attributes
    ----------
    id:
        Document identifier, unique within the tenant.
    tenant_id:
        Owning tenant.  Every lookup is scoped by this value.
    status:
        Current :class:`DocumentStatus`; written only by ingestion.
    chunk_count:
        Number of chunks persisted by the last successful ingestion.
    indexed_at:
        Set only when ingestion completes successfully.
    """

    id: str
    tenant_id: str
    title: str
    content: str
    status: DocumentStatus = DocumentStatus.PENDING
    category_id: str | None = None
    tags: list[str] = Field(default_factory=list)
    source_url: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    chunk_count: int = 0
    indexed_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class ChunkMetadata(BaseModel):
    """Size statistics stored alongside every chunk."""

    char_count: int = Field(ge=0)
    word_count: int = Field(ge=0)

    @classmethod
    def from_content(cls, content: str) -> ChunkMetadata:
        return cls(char_count=len(content), word_count=len(content.split()))


class ChunkRecord(BaseModel):
    """A chunk ready to be persisted.

    ``category_id`` and ``document_title`` are copied from the parent
    document so chunk stores can filter and label results without a join.
    """

    document_id: str
    tenant_id: str
    chunk_index: int = Field(ge=0)
    content: str
    embedding: list[float] | None = None
    metadata: ChunkMetadata
    category_id: str | None = None
    document_title: str = ""

    @property
    def chunk_id(self) -> str:
        """Deterministic id, so re-inserting the same chunk overwrites it."""
        return f"{self.document_id}:{self.chunk_index}"


class DocumentChunk(ChunkRecord):
    """A persisted chunk."""

    id: str
    created_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def from_record(cls, record: ChunkRecord) -> DocumentChunk:
        return cls(id=record.chunk_id, **record.model_dump(exclude={"id", "created_at"}))

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)


class SearchResult(BaseModel):
    """A ranked chunk together with its similarity score."""

    chunk: DocumentChunk
    score: float

    def short_ref(self) -> str:
        """Return a compact ``[title§chunk]`` reference string."""
        title = self.chunk.document_title or self.chunk.document_id
        return f"[{title}§{self.chunk.chunk_index}]"

    def __str__(self) -> str:  # noqa: D105
        return f"{self.short_ref()} ({self.score:.3f}) {self.chunk.content[:120]}"


class SearchOptions(BaseModel):
    """Filters and bounds for a knowledge search.

    Attributes
    ----------
    category_ids:
        Restrict results to chunks whose document is in one of these
        categories.  ``None`` or an empty list means no category filter.
    limit:
        Maximum number of results, ``1..50``.
    min_score:
        Results scoring below this threshold are dropped.  ``None`` lets
        the retrieval service apply its configured default.
    """

    category_ids: list[str] | None = None
    limit: int = Field(default=10, ge=1, le=MAX_SEARCH_LIMIT)
    min_score: float | None = Field(default=None, ge=-1.0, le=1.0)


class IngestionResult(BaseModel):
    """Outcome of one ingestion attempt.  Always returned, never raised."""

    document_id: str
    chunks_created: int = 0
    success: bool
    error: str | None = None
    embedded: bool = False

    @model_validator(mode="after")
    def _error_only_on_failure(self) -> IngestionResult:
        if self.success and self.error is not None:
            raise ValueError("a successful ingestion cannot carry an error")
        return self
