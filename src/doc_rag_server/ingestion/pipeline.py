"""
Ingestion Pipeline

Runs one document through normalize -> chunk -> embed -> write.

Item-level embedding failures are tolerated and reported. A document where
no chunk could be embedded is an error, as is a failing insert batch (the
ChunkWriteError reports what was persisted before it).
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .chunker import chunk_text, validate_chunking
from .normalizer import count_page_markers, normalize_text
from ..config import Settings, settings
from ..core.errors import ConfigurationError, EmbeddingError
from ..db.chunk_writer import ChunkStoreWriter
from ..embeddings.batch import EmbeddingBatchPipeline, ProgressCallback
from ..embeddings.embedder import EmbeddingProvider
from ..embeddings.models import EmbeddingModel
from ..registry.models import Document
from ..retrieval.memory_backend import MemorySearchBackend

logger = logging.getLogger("rag.ingestion")


class IngestionReport(BaseModel):
    document_slug: str
    embedding_model: EmbeddingModel
    total_pages: int = Field(..., ge=1)
    page_markers_found: int = Field(..., ge=0)
    chunk_count: int = Field(..., ge=0)
    embedded_count: int = Field(..., ge=0)
    failed_count: int = Field(..., ge=0)
    rate_limited_count: int = Field(..., ge=0)
    persisted_count: int = Field(..., ge=0)
    replaced_count: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True)


class IngestionPipeline:
    """
    Parameters
    ----------
    providers : Mapping[EmbeddingModel, EmbeddingProvider]
        Provider per embedding model; the document's model selects one.
    session_factory : async_sessionmaker
        Source of the session used by the chunk writer.
    config : Settings, optional
        Chunking, batching and insert sizes.
    retry_failures : bool
        Re-embed failed chunks once before writing.
    memory_backend : MemorySearchBackend, optional
        When given, chunks are stored there instead of the chunk tables.
    """

    def __init__(
        self,
        providers: Mapping[EmbeddingModel, EmbeddingProvider],
        session_factory: async_sessionmaker[AsyncSession],
        config: Optional[Settings] = None,
        retry_failures: bool = False,
        memory_backend: Optional[MemorySearchBackend] = None,
    ) -> None:
        self.config = config or settings
        validate_chunking(
            self.config.chunk_size_tokens,
            self.config.chunk_overlap_tokens,
            self.config.chars_per_token,
            1,
        )
        self._providers = providers
        self._session_factory = session_factory
        self.retry_failures = retry_failures
        self.memory_backend = memory_backend

    def _batch_pipeline(self, model: EmbeddingModel) -> EmbeddingBatchPipeline:
        provider = self._providers.get(model)
        if provider is None:
            raise ConfigurationError(f"No embedding provider configured for {model.value}")
        return EmbeddingBatchPipeline(
            provider,
            batch_size=self.config.embedding_batch_size,
            batch_delay_ms=self.config.embedding_batch_delay_ms,
            use_batch_requests=self.config.embedding_batch_requests,
        )

    async def ingest(
        self,
        document: Document,
        text: str,
        total_pages: int,
        replace_existing: bool = True,
        progress: Optional[ProgressCallback] = None,
        retry_failures: Optional[bool] = None,
    ) -> IngestionReport:
        if total_pages <= 0:
            raise ConfigurationError(f"total_pages must be positive, got {total_pages}")
        if not text or not text.strip():
            raise ConfigurationError(f"No text to ingest for {document.slug}")

        batcher = self._batch_pipeline(document.embedding_model)

        normalized = normalize_text(text, total_pages)
        markers = count_page_markers(normalized)
        chunks = chunk_text(
            normalized,
            total_pages,
            chunk_size=self.config.chunk_size_tokens,
            overlap=self.config.chunk_overlap_tokens,
            chars_per_token=self.config.chars_per_token,
        )
        logger.info(
            "Chunked %s: %d chars, %d page markers, %d chunks",
            document.slug,
            len(normalized),
            markers,
            len(chunks),
        )

        report = await batcher.run(chunks, progress=progress)
        if retry_failures is None:
            retry_failures = self.retry_failures
        if retry_failures and report.failure_count:
            logger.info("Retrying %d failed chunks for %s", report.failure_count, document.slug)
            report = await batcher.retry_failed(report)

        if report.success_count == 0:
            raise EmbeddingError(
                f"No chunks of {document.slug} could be embedded "
                f"({report.failure_count} failed, {report.rate_limited_count} rate limited)"
            )

        replaced = 0
        if self.memory_backend is not None:
            if replace_existing:
                replaced = self.memory_backend.remove_document(document)
            persisted = self.memory_backend.add_chunks(document, report.items)
        else:
            async with self._session_factory() as session:
                writer = ChunkStoreWriter(session, insert_batch_size=self.config.insert_batch_size)
                if replace_existing:
                    replaced = await writer.delete_document_chunks(document)
                persisted = await writer.write(document, report.items)

        if replaced:
            logger.info("Removed %d existing chunks for %s", replaced, document.slug)

        return IngestionReport(
            document_slug=document.slug,
            embedding_model=document.embedding_model,
            total_pages=total_pages,
            page_markers_found=markers,
            chunk_count=len(chunks),
            embedded_count=report.success_count,
            failed_count=report.failure_count,
            rate_limited_count=report.rate_limited_count,
            persisted_count=persisted,
            replaced_count=replaced,
        )
