"""
Retrieval Models

Search modes, raw backend matches, and the ranked per-query result. Nothing
here is persisted.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..embeddings.models import EmbeddingModel
from ..registry.models import Document


class SearchMode(str, Enum):
    VECTOR = "vector"
    HYBRID = "hybrid"


class ChunkMatch(BaseModel):
    """
    A single row returned by a similarity backend.

    `score` is the ranking key: the vector similarity in vector mode, the
    weighted vector/text combination in hybrid mode.
    """

    chunk_id: uuid.UUID
    document_id: uuid.UUID
    document_slug: str
    chunk_index: int = Field(..., ge=0)
    content: str
    page_number: int = Field(..., ge=1)
    similarity: float
    text_rank: Optional[float] = None
    score: float

    model_config = ConfigDict(frozen=True)


class RankedChunk(BaseModel):
    """A match paired with its originating document."""

    match: ChunkMatch
    document: Document

    model_config = ConfigDict(frozen=True)

    @property
    def content(self) -> str:
        return self.match.content

    @property
    def page_number(self) -> int:
        return self.match.page_number

    @property
    def score(self) -> float:
        return self.match.score


class RetrievalResult(BaseModel):
    """Ranked chunks for one query over one document set."""

    chunks: List[RankedChunk] = Field(default_factory=list)
    mode: SearchMode
    embedding_model: EmbeddingModel
    threshold: float
    limit_per_document: int

    model_config = ConfigDict(frozen=True)

    @property
    def is_empty(self) -> bool:
        return not self.chunks

    def chunks_for(self, slug: str) -> List[RankedChunk]:
        return [c for c in self.chunks if c.document.slug == slug]
