"""
Database Package

Provides SQLAlchemy async session management, model definitions and the
chunk storage / search layers for PostgreSQL with pgvector.
"""

from .session import get_async_session, async_engine, AsyncSessionLocal
from .models import Base, DocumentRecord, DocumentChunk, LocalDocumentChunk, chunk_model_for
from .chunk_writer import ChunkStoreWriter
from .document_store import DocumentMetadataStore
from .vector_store import PgVectorSearchBackend

__all__ = [
    "get_async_session",
    "async_engine",
    "AsyncSessionLocal",
    "Base",
    "DocumentRecord",
    "DocumentChunk",
    "LocalDocumentChunk",
    "chunk_model_for",
    "ChunkStoreWriter",
    "DocumentMetadataStore",
    "PgVectorSearchBackend",
]
