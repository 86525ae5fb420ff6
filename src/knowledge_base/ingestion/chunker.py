"""Text chunking — separator-aware greedy packing with overlap.

Sections (text between separators) are packed into chunks of at most
``max_chunk_size`` characters.  Each new chunk is seeded with the last
``overlap_size`` characters of the previous one so that context carries
across chunk boundaries.  Chunks that still end up far larger than the
limit (a single enormous section) are re-split on sentence boundaries.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from knowledge_base.config import Settings
from knowledge_base.exceptions import ValidationError

# Chunks longer than this multiple of ``max_chunk_size`` get sentence-split.
OVERSIZE_FACTOR = 1.5

# A sentence is the shortest run of text ending in terminal punctuation
# that is followed by whitespace, or the remainder of the text.
_SENTENCE_RE = re.compile(r".+?(?:[.!?]+(?=\s)|$)", re.DOTALL)


@dataclass(frozen=True)
class ChunkOptions:
    """Validated chunking parameters.

    Parameters
    ----------
    max_chunk_size:
        Soft upper bound on chunk length, in characters.
    overlap_size:
        Characters copied from the end of one chunk to the start of the
        next.  Must be smaller than ``max_chunk_size``.
    separator:
        Section boundary, a blank line by default.
    """

    max_chunk_size: int = 1000
    overlap_size: int = 200
    separator: str = "\n\n"

    def __post_init__(self) -> None:
        if self.max_chunk_size < 1:
            raise ValidationError(
                f"max_chunk_size must be >= 1, got {self.max_chunk_size}",
                field="max_chunk_size",
            )
        if self.overlap_size < 0:
            raise ValidationError(
                f"overlap_size must be >= 0, got {self.overlap_size}",
                field="overlap_size",
            )
        if self.overlap_size >= self.max_chunk_size:
            raise ValidationError(
                f"overlap_size ({self.overlap_size}) must be < max_chunk_size ({self.max_chunk_size})",
                field="overlap_size",
            )
        if not self.separator:
            raise ValidationError("separator must be a non-empty string", field="separator")

    @property
    def oversize_limit(self) -> float:
        return self.max_chunk_size * OVERSIZE_FACTOR

    @classmethod
    def from_settings(cls, settings: Settings) -> ChunkOptions:
        return cls(
            max_chunk_size=settings.chunk_max_size,
            overlap_size=settings.chunk_overlap,
            separator=settings.chunk_separator,
        )


def chunk_text(
    text: str,
    max_chunk_size: int = 1000,
    overlap_size: int = 200,
    separator: str = "\n\n",
) -> list[str]:
    """Split *text* into ordered, non-empty, overlapping chunks.

    Parameters
    ----------
    text:
        Full document content.
    max_chunk_size:
        Maximum characters per chunk before sentence splitting kicks in.
    overlap_size:
        Number of trailing characters repeated at the head of the next chunk.
    separator:
        Section delimiter used for the first-pass split.

    Returns
    -------
    list[str]
        Chunks in document order.  Empty for blank input.

    Raises
    ------
    ValidationError
        If the options are inconsistent (e.g. overlap >= max size).
    """
    options = ChunkOptions(
        max_chunk_size=max_chunk_size,
        overlap_size=overlap_size,
        separator=separator,
    )
    return chunk_text_with_options(text, options)


def chunk_text_with_options(text: str, options: ChunkOptions) -> list[str]:
    """Same as :func:`chunk_text` but takes a pre-validated :class:`ChunkOptions`."""
    if not text or not text.strip():
        return []

    chunks = _pack_sections(text, options)

    final: list[str] = []
    for chunk in chunks:
        if len(chunk) > options.oversize_limit:
            final.extend(_split_sentences(chunk, options))
        else:
            final.append(chunk)
    return final


# -- internals ----------------------------------------------------------------


def _pack_sections(text: str, options: ChunkOptions) -> list[str]:
    separator = options.separator
    chunks: list[str] = []
    buffer = ""

    for section in text.split(separator):
        if buffer and len(buffer) + len(section) + len(separator) > options.max_chunk_size:
            emitted = buffer.strip()
            if emitted:
                chunks.append(emitted)
            if options.overlap_size:
                buffer = buffer[-options.overlap_size :] + separator + section
            else:
                buffer = section
        else:
            buffer = buffer + separator + section if buffer else section

    if buffer.strip():
        chunks.append(buffer.strip())
    return chunks


def _split_sentences(chunk: str, options: ChunkOptions) -> list[str]:
    max_size = options.max_chunk_size
    pieces: list[str] = []
    current = ""

    for sentence in _SENTENCE_RE.findall(chunk):
        if current and len(current) + len(sentence) > max_size:
            pieces.append(current.strip())
            current = sentence
        else:
            current += sentence
    if current.strip():
        pieces.append(current.strip())

    result: list[str] = []
    for piece in pieces:
        if not piece:
            continue
        if len(piece) > options.oversize_limit:
            # One run-on sentence; fall back to fixed windows.
            windows = (piece[i : i + max_size].strip() for i in range(0, len(piece), max_size))
            result.extend(w for w in windows if w)
        else:
            result.append(piece)
    return result
