"""Exception hierarchy for the knowledge base.

Every error carries a ``details`` dict so that log lines and
:class:`~knowledge_base.models.IngestionResult` messages include the
identifiers needed to trace a failure back to a tenant / document.
"""

from __future__ import annotations

from typing import Any


class KnowledgeBaseError(Exception):
    """Base exception for all knowledge-base errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class NotFoundError(KnowledgeBaseError):
    """Raised when a tenant-scoped resource does not exist."""

    def __init__(
        self,
        resource: str,
        resource_id: str,
        tenant_id: str | None = None,
    ) -> None:
        details: dict[str, Any] = {f"{resource}_id": resource_id}
        if tenant_id is not None:
            details["tenant_id"] = tenant_id
        super().__init__(f"{resource.capitalize()} not found: {resource_id}", details)
        self.resource = resource
        self.resource_id = resource_id


class ProviderError(KnowledgeBaseError):
    """Raised when the embedding provider fails, times out, or misbehaves."""


class ValidationError(KnowledgeBaseError):
    """Raised when options, vectors, or queries are malformed."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details)
        self.field = field


class QueueFullError(KnowledgeBaseError):
    """Raised by a non-blocking submit when the ingestion queue is at capacity."""
