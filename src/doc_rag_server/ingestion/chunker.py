"""
Chunker

Slices normalized text into overlapping fixed-size windows and attributes
each window to a source page.

Sizes are expressed in approximate tokens and converted to characters with a
fixed characters-per-token ratio. Page attribution is a best-effort estimate:
a window belongs to the page of the nearest `[Page N]` marker at or before
its midpoint.
"""

from __future__ import annotations

import logging
from bisect import bisect_right
from typing import List, Sequence

from .models import ChunkCandidate, ChunkMetadata, PageMarker
from .normalizer import find_page_markers
from ..core.errors import ConfigurationError

logger = logging.getLogger("rag.chunker")

DEFAULT_CHUNK_SIZE = 500
DEFAULT_OVERLAP = 100
DEFAULT_CHARS_PER_TOKEN = 4


def validate_chunking(
    chunk_size: int,
    overlap: int,
    chars_per_token: int,
    total_pages: int,
) -> None:
    """
    Reject parameters that would produce a non-positive stride or
    meaningless page numbers.

    Raises
    ------
    ConfigurationError
    """
    if chunk_size <= 0:
        raise ConfigurationError(f"chunk_size must be positive, got {chunk_size}")
    if overlap < 0:
        raise ConfigurationError(f"overlap must not be negative, got {overlap}")
    if chunk_size <= overlap:
        raise ConfigurationError(
            f"chunk_size ({chunk_size}) must be greater than overlap ({overlap})"
        )
    if chars_per_token <= 0:
        raise ConfigurationError(
            f"chars_per_token must be positive, got {chars_per_token}"
        )
    if total_pages <= 0:
        raise ConfigurationError(f"total_pages must be positive, got {total_pages}")


def page_for_offset(
    offset: float,
    markers: Sequence[PageMarker],
    total_pages: int,
) -> int:
    """
    Page of the nearest marker at or before `offset`, clamped into
    `[1, total_pages]`. Offsets before the first marker belong to page 1.
    """
    page = 1
    if markers:
        idx = bisect_right([m.position for m in markers], offset) - 1
        if idx >= 0:
            page = markers[idx].page_number
    return min(max(1, page), total_pages)


def chunk_text(
    text: str,
    total_pages: int,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_OVERLAP,
    chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
) -> List[ChunkCandidate]:
    """
    Split normalized text into overlapping chunk candidates.

    Parameters
    ----------
    text : str
        Normalized text containing `[Page N]` markers.

    total_pages : int
        Page count of the source, used to clamp page numbers.

    chunk_size, overlap : int
        Window size and overlap in approximate tokens.

    chars_per_token : int
        Characters per token used to convert sizes to characters.

    Returns
    -------
    List[ChunkCandidate]
        Candidates with contiguous indices starting at 0. Windows that are
        blank after trimming are skipped without consuming an index.
    """
    validate_chunking(chunk_size, overlap, chars_per_token, total_pages)

    window = chunk_size * chars_per_token
    stride = (chunk_size - overlap) * chars_per_token

    markers = find_page_markers(text)
    length = len(text)

    chunks: List[ChunkCandidate] = []
    start = 0
    while start < length:
        end = min(start + window, length)
        content = text[start:end].strip()

        if content:
            midpoint = start + (end - start) / 2
            chunks.append(
                ChunkCandidate(
                    index=len(chunks),
                    content=content,
                    metadata=ChunkMetadata(
                        char_start=start,
                        char_end=end,
                        tokens_approx=round(len(content) / chars_per_token),
                        page_number=page_for_offset(midpoint, markers, total_pages),
                        page_markers_found=len(markers),
                    ),
                )
            )

        start += stride

    logger.debug(
        "Chunked %d chars into %d chunks (%d page markers)",
        length,
        len(chunks),
        len(markers),
    )
    return chunks
