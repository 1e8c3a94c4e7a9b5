"""
Document Registry Models

Documents as seen by the query path, and the structured results of
cross-document compatibility checks.
"""

from __future__ import annotations

import uuid
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..embeddings.models import EmbeddingModel


class Document(BaseModel):
    """
    An ingested document.

    Identity and embedding model never change after creation; only the
    activity flag and descriptive metadata do.
    """

    id: uuid.UUID
    slug: str = Field(..., min_length=1, description="Human-readable unique key.")
    title: str = Field(..., min_length=1)
    owner: str = Field(..., min_length=1, description="Owning access-control group.")
    embedding_model: EmbeddingModel
    active: bool = True
    year: Optional[int] = Field(default=None, description="Publication year, if known.")
    chunk_limit_override: Optional[int] = Field(default=None, ge=1)

    model_config = ConfigDict(extra="forbid", frozen=True)


class OwnerValidation(BaseModel):
    """
    Result of checking that a document set shares one owning group.

    On failure, `owners` lists every distinct owner found and `missing`
    lists slugs that did not resolve.
    """

    valid: bool
    owner: Optional[str] = None
    owners: List[str] = Field(default_factory=list)
    missing: List[str] = Field(default_factory=list)
    error: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class EmbeddingModelValidation(BaseModel):
    """Result of checking that a document set shares one embedding model."""

    valid: bool
    embedding_model: Optional[EmbeddingModel] = None
    embedding_models: List[EmbeddingModel] = Field(default_factory=list)
    missing: List[str] = Field(default_factory=list)
    error: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class DocumentSet(BaseModel):
    """
    A resolved, validated set of target documents for one query.

    All members share `owner` and `embedding_model`.
    """

    documents: List[Document] = Field(..., min_length=1)
    owner: str
    embedding_model: EmbeddingModel

    model_config = ConfigDict(frozen=True)

    @property
    def is_multi(self) -> bool:
        return len(self.documents) > 1

    @property
    def slugs(self) -> List[str]:
        return [doc.slug for doc in self.documents]

    def by_id(self, document_id: uuid.UUID) -> Optional[Document]:
        for doc in self.documents:
            if doc.id == document_id:
                return doc
        return None
