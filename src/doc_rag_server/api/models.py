"""
API Models

Request/response schemas for the document, ingestion and retrieval
endpoints. Domain models are converted at the route boundary so the wire
format stays stable when internals change.
"""

from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..embeddings.models import EmbeddingModel
from ..prompts.assembler import ResponseStyle
from ..registry.models import Document
from ..retrieval.models import RankedChunk, SearchMode


# ---------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------

class DocumentSummary(BaseModel):
    slug: str
    title: str
    owner: str
    embedding_model: EmbeddingModel
    year: Optional[int] = None
    chunk_limit_override: Optional[int] = None

    @classmethod
    def from_document(cls, document: Document) -> "DocumentSummary":
        return cls(
            slug=document.slug,
            title=document.title,
            owner=document.owner,
            embedding_model=document.embedding_model,
            year=document.year,
            chunk_limit_override=document.chunk_limit_override,
        )


class DocumentListResponse(BaseModel):
    documents: List[DocumentSummary]
    cache_version: int


class RefreshResponse(BaseModel):
    status: Literal["ok"] = "ok"
    count: int = Field(..., ge=0)
    cache_version: int


class IngestRequest(BaseModel):
    """Extracted text of a document plus its page count."""

    text: str = Field(..., min_length=1)
    total_pages: int = Field(..., ge=1)
    replace_existing: bool = True
    retry_failures: bool = False

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------

class ChatTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str

    model_config = ConfigDict(extra="forbid")


class RetrieveRequest(BaseModel):
    query: str = Field(..., min_length=1)
    document_slugs: List[str] = Field(..., min_length=1)
    k: Optional[int] = Field(default=None, ge=1, le=50)
    mode: SearchMode = SearchMode.VECTOR
    timeout_seconds: Optional[float] = Field(default=None, gt=0)
    style: ResponseStyle = ResponseStyle.DEFAULT
    history: List[ChatTurn] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


class RetrievedChunk(BaseModel):
    document_slug: str
    document_title: str
    chunk_index: int
    page_number: int
    content: str
    similarity: float
    text_rank: Optional[float] = None
    score: float

    @classmethod
    def from_ranked(cls, chunk: RankedChunk) -> "RetrievedChunk":
        return cls(
            document_slug=chunk.document.slug,
            document_title=chunk.document.title,
            chunk_index=chunk.match.chunk_index,
            page_number=chunk.page_number,
            content=chunk.content,
            similarity=chunk.match.similarity,
            text_rank=chunk.match.text_rank,
            score=chunk.score,
        )


class RetrieveResponse(BaseModel):
    chunks: List[RetrievedChunk]
    mode: SearchMode
    embedding_model: EmbeddingModel
    threshold: float
    limit_per_document: int
    system_prompt: str
    messages: List[Dict[str, str]]
