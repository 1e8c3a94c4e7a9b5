"""
Ingestion Data Models

Chunk candidates produced by the chunker and consumed by the embedding
pipeline and the chunk store writer. A candidate is not persisted until its
embedding succeeds.
"""

from __future__ import annotations

from typing import NamedTuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PageMarker(NamedTuple):
    """A `[Page N]` marker and its character position in normalized text."""
    page_number: int
    position: int


class ChunkMetadata(BaseModel):
    """
    Fixed metadata recorded with every stored chunk.

    `page_markers_found` is the number of markers in the whole source text;
    a low value relative to the page count points at weak page attribution.
    """

    char_start: int = Field(..., ge=0)
    char_end: int = Field(..., ge=0)
    tokens_approx: int = Field(..., ge=0)
    page_number: int = Field(..., ge=1)
    page_markers_found: int = Field(..., ge=0)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def _check_range(self) -> "ChunkMetadata":
        if self.char_end < self.char_start:
            raise ValueError("char_end must not precede char_start")
        return self


class ChunkCandidate(BaseModel):
    """A window of normalized text awaiting an embedding."""

    index: int = Field(..., ge=0)
    content: str = Field(..., min_length=1)
    metadata: ChunkMetadata

    model_config = ConfigDict(extra="forbid", frozen=True)

    @property
    def page_number(self) -> int:
        return self.metadata.page_number
