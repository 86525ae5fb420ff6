"""Retrieval service — embed a query and rank stored chunks against it.

Usage::

    from knowledge_base.retrieval import RetrievalService

    service = RetrievalService(chunk_store, embedding_client)
    results = await service.search("tenant-1", "How are refunds handled?", limit=5)
    for r in results:
        print(r.short_ref(), r.score)
"""

from __future__ import annotations

import logging
from typing import Any

import pydantic

from knowledge_base.config import Settings
from knowledge_base.exceptions import ProviderError, ValidationError
from knowledge_base.ingestion.embedder import EmbeddingClient
from knowledge_base.models import DEFAULT_MIN_SCORE, SearchOptions, SearchResult
from knowledge_base.retrieval.base import ChunkStore

logger = logging.getLogger(__name__)

MAX_QUERY_LENGTH = 2000


class RetrievalService:
    """Tenant-scoped semantic search over a :class:`ChunkStore`.

    Parameters
    ----------
    chunks:
        Backend holding chunk vectors; does the nearest-neighbour work.
    embedder:
        Client used to embed the query text.
    default_min_score:
        Threshold applied when a search does not specify ``min_score``.
    text_fallback:
        When ``True``, a failed query embedding falls back to the
        store's lexical :meth:`~ChunkStore.text_search` instead of
        raising :class:`ProviderError`.
    """

    def __init__(
        self,
        chunks: ChunkStore,
        embedder: EmbeddingClient,
        *,
        default_min_score: float = DEFAULT_MIN_SCORE,
        text_fallback: bool = False,
    ) -> None:
        self._chunks = chunks
        self._embedder = embedder
        self.default_min_score = default_min_score
        self.text_fallback = text_fallback

    @classmethod
    def from_settings(cls, chunks: ChunkStore, embedder: EmbeddingClient, settings: Settings) -> RetrievalService:
        return cls(
            chunks,
            embedder,
            default_min_score=settings.search_min_score,
            text_fallback=settings.search_text_fallback,
        )

    # -- public API -----------------------------------------------------------

    async def search(
        self,
        tenant_id: str,
        query: str,
        options: SearchOptions | None = None,
        **overrides: Any,
    ) -> list[SearchResult]:
        """Return the tenant's chunks most similar to *query*.

        Parameters
        ----------
        tenant_id:
            Tenant whose chunks are searched.
        query:
            Natural-language query string.
        options:
            Filters and bounds; keyword *overrides* (``category_ids``,
            ``limit``, ``min_score``) are merged on top.

        Returns
        -------
        list[SearchResult]
            Ranked by descending score, exactly as the store returned them.

        Raises
        ------
        ValidationError
            Blank / oversized query or out-of-range options.
        ProviderError
            The query could not be embedded and text fallback is off.
        """
        opts = _resolve_options(options, overrides)
        query = _validate_query(query)
        min_score = opts.min_score if opts.min_score is not None else self.default_min_score

        try:
            vector = await self._embedder.embed_one(query)
        except ProviderError:
            if not self.text_fallback:
                raise
            logger.warning(
                "Query embedding failed for tenant=%s; falling back to text search",
                tenant_id,
                exc_info=True,
            )
            return await self._chunks.text_search(
                tenant_id,
                query,
                category_ids=opts.category_ids,
                limit=opts.limit,
            )

        results = await self._chunks.similarity_search(
            tenant_id,
            vector,
            category_ids=opts.category_ids,
            limit=opts.limit,
            min_score=min_score,
        )
        logger.debug("search tenant=%s limit=%d -> %d hits", tenant_id, opts.limit, len(results))
        return results


# -- internals ----------------------------------------------------------------


def _resolve_options(options: SearchOptions | None, overrides: dict[str, Any]) -> SearchOptions:
    base = options.model_dump() if options is not None else {}
    unknown = set(overrides) - set(SearchOptions.model_fields)
    if unknown:
        raise ValidationError(f"Unknown search options: {sorted(unknown)}")
    try:
        return SearchOptions(**{**base, **overrides})
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or None
        raise ValidationError(f"Invalid search options: {first.get('msg')}", field=field) from exc


def _validate_query(query: str) -> str:
    if not query or not query.strip():
        raise ValidationError("Query must not be empty", field="query")
    if len(query) > MAX_QUERY_LENGTH:
        raise ValidationError(
            f"Query exceeds {MAX_QUERY_LENGTH} characters",
            field="query",
        )
    return query.strip()
