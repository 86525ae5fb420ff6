"""Embedding client — batched, deadline-bounded calls to an embeddings provider.

The provider is any LangChain :class:`~langchain_core.embeddings.Embeddings`
implementation and is always injected, so tests can swap in a
deterministic fake.  :func:`get_embedding_provider` builds the configured
production provider.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Sequence
from typing import TYPE_CHECKING

from knowledge_base.config import Settings, settings as default_settings
from knowledge_base.exceptions import ProviderError, ValidationError

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)

# Upper bound on inputs per request accepted by OpenAI-compatible APIs.
MAX_PROVIDER_BATCH_SIZE = 2048


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return the cosine similarity of two equal-length, non-zero vectors.

    Raises
    ------
    ValidationError
        If the vectors are empty, differ in length, or either has zero
        magnitude (similarity is undefined).
    """
    if len(a) != len(b):
        raise ValidationError(
            f"Vector length mismatch: {len(a)} != {len(b)}",
            field="vector",
        )
    if not a:
        raise ValidationError("Cannot compare empty vectors", field="vector")

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0.0 or norm_b == 0.0:
        raise ValidationError("Cosine similarity is undefined for a zero vector", field="vector")

    score = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
    # Rounding can push identical vectors a hair past 1.
    return max(-1.0, min(1.0, score))


class EmbeddingClient:
    """Thin async wrapper around an embeddings provider.

    Parameters
    ----------
    provider:
        LangChain embeddings implementation doing the actual work.
    batch_size:
        Maximum number of texts per provider call in :meth:`embed_many`.
    timeout:
        Per-call deadline in seconds; ``None`` disables it.
    """

    similarity = staticmethod(cosine_similarity)

    def __init__(
        self,
        provider: Embeddings,
        *,
        batch_size: int = 100,
        timeout: float | None = 30.0,
    ) -> None:
        if not 1 <= batch_size <= MAX_PROVIDER_BATCH_SIZE:
            raise ValidationError(
                f"batch_size must be between 1 and {MAX_PROVIDER_BATCH_SIZE}, got {batch_size}",
                field="batch_size",
            )
        self._provider = provider
        self.batch_size = batch_size
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> EmbeddingClient:
        """Build a client around the provider configured in *settings*."""
        settings = settings or default_settings
        return cls(
            get_embedding_provider(settings),
            batch_size=settings.embedding_batch_size,
            timeout=settings.embedding_timeout,
        )

    # -- public API -----------------------------------------------------------

    async def embed_one(self, text: str) -> list[float]:
        """Embed a single string (typically a search query)."""
        vector = await self._call(self._provider.aembed_query(text), operation="embed_query")
        return list(vector)

    async def embed_many(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts*, preserving order, one vector per input.

        Batches are sent one after another so a burst of chunks never
        exceeds the provider's rate limits.  The first failing batch
        aborts the whole call.
        """
        if not texts:
            return []

        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = list(texts[start : start + self.batch_size])
            result = await self._call(
                self._provider.aembed_documents(batch),
                operation="embed_documents",
            )
            if len(result) != len(batch):
                raise ProviderError(
                    "Provider returned a different number of vectors than inputs",
                    {"expected": len(batch), "received": len(result), "offset": start},
                )
            vectors.extend(list(v) for v in result)
            logger.debug("embedded %d / %d", len(vectors), len(texts))

        return vectors

    # -- internals ------------------------------------------------------------

    async def _call(self, call: Awaitable, *, operation: str):
        try:
            if self.timeout is None:
                return await call
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise ProviderError(
                f"Embedding provider timed out after {self.timeout}s",
                {"operation": operation},
            ) from exc
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(
                f"Embedding provider failed: {exc}",
                {"operation": operation, "error_type": type(exc).__name__},
            ) from exc


def get_embedding_provider(settings: Settings | None = None) -> Embeddings:
    """Return the configured LangChain embeddings implementation.

    ``openai`` (default) targets OpenAI or any OpenAI-compatible endpoint
    set via ``OPENAI_BASE_URL``; ``huggingface`` runs a local
    sentence-transformer model.
    """
    settings = settings or default_settings

    if settings.embedding_provider == "huggingface":
        from langchain_huggingface import HuggingFaceEmbeddings

        logger.info("Using HuggingFace embeddings: %s", settings.embedding_model)
        return HuggingFaceEmbeddings(model_name=settings.embedding_model)

    from langchain_openai import OpenAIEmbeddings

    kwargs: dict = {"model": settings.embedding_model}
    if settings.embedding_model.startswith("text-embedding-3"):
        kwargs["dimensions"] = settings.embedding_dimensions
    if settings.openai_api_key:
        kwargs["api_key"] = settings.openai_api_key
    if settings.openai_base_url:
        logger.info("Using OpenAI-compatible embeddings endpoint: %s", settings.openai_base_url)
        kwargs["base_url"] = settings.openai_base_url

    return OpenAIEmbeddings(**kwargs)
