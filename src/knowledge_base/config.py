"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings

from knowledge_base.models import DEFAULT_MIN_SCORE


class Settings(BaseSettings):
    """Knowledge-base settings, populated from env vars or .env file."""

    # Embedding
    embedding_provider: Literal["openai", "huggingface"] = Field(
        default="openai",
        description="Which LangChain embeddings backend to build by default.",
    )
    embedding_model: str = Field(
        default="text-embedding-3-small",
        description=(
            "Embedding model identifier. For the huggingface provider use a "
            "sentence-transformers id, e.g. 'sentence-transformers/all-MiniLM-L6-v2'."
        ),
    )
    embedding_dimensions: int = Field(default=1536, ge=1, description="Vector length produced by the model")
    embedding_batch_size: int = Field(default=100, ge=1, le=2048, description="Texts per provider call")
    embedding_timeout: float = Field(default=30.0, gt=0, description="Deadline (seconds) per provider call")
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openai_base_url: str = Field(
        default="",
        description="Base URL for an OpenAI-compatible embeddings API. Leave empty for OpenAI cloud.",
    )

    # Chunking
    chunk_max_size: int = 1000
    chunk_overlap: int = 200
    chunk_separator: str = "\n\n"

    # Search
    search_min_score: float = Field(
        default=DEFAULT_MIN_SCORE,
        ge=-1.0,
        le=1.0,
        description="Similarity threshold used when a search omits min_score",
    )
    search_text_fallback: bool = False

    # Vector store
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_collection: str = "knowledge_chunks"

    # Ingestion queue
    ingestion_workers: int = Field(default=4, ge=1)
    ingestion_queue_size: int = Field(default=100, ge=1)

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Module-level instance; import `settings` wherever defaults are needed.
settings = Settings()
