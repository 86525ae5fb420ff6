"""Logging setup shared by scripts and services embedding the knowledge base."""

from __future__ import annotations

import logging

from knowledge_base.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: str | int | None = None) -> None:
    """Configure root logging once; *level* defaults to ``settings.log_level``."""
    level = level if level is not None else settings.log_level
    if isinstance(level, str):
        level = level.upper()
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # Provider SDKs log every HTTP request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
