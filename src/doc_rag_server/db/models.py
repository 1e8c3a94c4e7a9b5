"""
SQLAlchemy Models

Defines the database schema for:
- Documents (registry metadata)
- Document chunks with pgvector embeddings, one table per embedding model
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional, Type, Union

from sqlalchemy import (
    Boolean,
    Column,
    Computed,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import TSVECTOR, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column
from pgvector.sqlalchemy import Vector

from ..embeddings.models import EmbeddingModel
from ..registry.models import Document


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# ---------------------------------------------------------------------
# Document Model
# ---------------------------------------------------------------------

class DocumentRecord(Base):
    """
    An ingested source document.

    `embedding_type` selects the chunk table and never changes after
    creation.
    """
    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    slug: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    owner: Mapped[str] = mapped_column(String(128), nullable=False)
    embedding_type: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=EmbeddingModel.OPENAI.value,
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    chunk_limit_override: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("idx_documents_owner_active", "owner", "active"),
    )

    def to_document(self) -> Document:
        return Document(
            id=self.id,
            slug=self.slug,
            title=self.title,
            owner=self.owner,
            embedding_model=EmbeddingModel(self.embedding_type),
            active=self.active,
            year=self.year,
            chunk_limit_override=self.chunk_limit_override,
        )


# ---------------------------------------------------------------------
# Chunk Models
# ---------------------------------------------------------------------

class _ChunkColumns:
    """
    Columns shared by both chunk tables.

    Metadata is stored as fixed columns rather than an open JSON map.
    `content_tsv` is generated by PostgreSQL for full-text matching.
    """

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    document_slug: Mapped[str] = mapped_column(String(128), nullable=False)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    char_start: Mapped[int] = mapped_column(Integer, nullable=False)
    char_end: Mapped[int] = mapped_column(Integer, nullable=False)
    tokens_approx: Mapped[int] = mapped_column(Integer, nullable=False)
    page_number: Mapped[int] = mapped_column(Integer, nullable=False)
    page_markers_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    content_tsv: Mapped[Optional[str]] = mapped_column(
        TSVECTOR,
        Computed("to_tsvector('english', content)", persisted=True),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
    )

    @declared_attr
    def document_id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(
            UUID(as_uuid=True),
            ForeignKey("documents.id", ondelete="CASCADE"),
            nullable=False,
        )


class DocumentChunk(_ChunkColumns, Base):
    """Chunk embedded with the OpenAI model."""
    __tablename__ = "document_chunks"

    # pgvector column - 1536 dimensions for text-embedding-3-small
    embedding = Column(Vector(1536), nullable=False)

    __table_args__ = (
        Index("idx_document_chunks_doc", "document_id", "chunk_index"),
        Index("idx_document_chunks_tsv", "content_tsv", postgresql_using="gin"),
    )


class LocalDocumentChunk(_ChunkColumns, Base):
    """Chunk embedded with the local sentence-transformers model."""
    __tablename__ = "document_chunks_local"

    # pgvector column - 384 dimensions for all-MiniLM-L6-v2
    embedding = Column(Vector(384), nullable=False)

    __table_args__ = (
        Index("idx_document_chunks_local_doc", "document_id", "chunk_index"),
        Index("idx_document_chunks_local_tsv", "content_tsv", postgresql_using="gin"),
    )


ChunkModel = Union[Type[DocumentChunk], Type[LocalDocumentChunk]]


def chunk_model_for(model: EmbeddingModel) -> ChunkModel:
    """Chunk table holding vectors of `model`."""
    if model is EmbeddingModel.OPENAI:
        return DocumentChunk
    if model is EmbeddingModel.LOCAL:
        return LocalDocumentChunk
    raise ValueError(f"Unknown embedding model: {model!r}")
