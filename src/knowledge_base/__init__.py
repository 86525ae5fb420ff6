"""Knowledge base — tenant-scoped document ingestion and semantic retrieval."""

from knowledge_base.exceptions import (
    KnowledgeBaseError,
    NotFoundError,
    ProviderError,
    QueueFullError,
    ValidationError,
)
from knowledge_base.models import (
    DocumentStatus,
    IngestionResult,
    KnowledgeDocument,
    SearchOptions,
    SearchResult,
)

__version__ = "0.1.0"

__all__ = [
    "DocumentStatus",
    "IngestionResult",
    "KnowledgeBaseError",
    "KnowledgeDocument",
    "NotFoundError",
    "ProviderError",
    "QueueFullError",
    "SearchOptions",
    "SearchResult",
    "ValidationError",
]
