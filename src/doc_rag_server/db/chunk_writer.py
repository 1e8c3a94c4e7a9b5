"""
Chunk Store Writer

Persists successfully embedded chunks in bulk.

Only chunks whose outcome is `Embedded` are written; failed chunks are never
stored (no rows with missing vectors). Survivors are grouped into batches of
`insert_batch_size`, sized for the store's payload limits independently of
the embedding batch size. Each batch is one bulk insert committed on its own.

If a batch fails, its transaction is rolled back and the write stops with a
ChunkWriteError reporting how many chunks earlier batches persisted. There
is no attempt to split and retry the failed batch.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence

from sqlalchemy import delete, func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import chunk_model_for
from ..core.errors import ChunkWriteError, ConfigurationError
from ..embeddings.models import Embedded, EmbeddedChunk
from ..registry.models import Document

logger = logging.getLogger("rag.chunk_writer")

DEFAULT_INSERT_BATCH_SIZE = 50


class ChunkStoreWriter:
    """
    Bulk writer for a document's chunk rows.
    """

    def __init__(
        self,
        session: AsyncSession,
        insert_batch_size: int = DEFAULT_INSERT_BATCH_SIZE,
    ) -> None:
        """
        Parameters
        ----------
        session : AsyncSession
            SQLAlchemy async session for database operations.

        insert_batch_size : int
            Maximum rows per bulk insert.
        """
        if insert_batch_size <= 0:
            raise ConfigurationError(
                f"insert_batch_size must be positive, got {insert_batch_size}"
            )
        self._session = session
        self.insert_batch_size = insert_batch_size

    @staticmethod
    def build_records(
        document: Document,
        embedded_chunks: Sequence[EmbeddedChunk],
    ) -> List[Dict[str, Any]]:
        """Row dicts for every chunk whose embedding succeeded."""
        records: List[Dict[str, Any]] = []
        for item in embedded_chunks:
            outcome = item.outcome
            if not isinstance(outcome, Embedded):
                continue

            meta = item.chunk.metadata
            records.append(
                {
                    "document_id": document.id,
                    "document_slug": document.slug,
                    "chunk_index": item.chunk.index,
                    "content": item.chunk.content,
                    "embedding": list(outcome.vector),
                    "char_start": meta.char_start,
                    "char_end": meta.char_end,
                    "tokens_approx": meta.tokens_approx,
                    "page_number": meta.page_number,
                    "page_markers_found": meta.page_markers_found,
                }
            )
        return records

    async def write(
        self,
        document: Document,
        embedded_chunks: Sequence[EmbeddedChunk],
    ) -> int:
        """
        Insert the embedded chunks for `document`.

        Returns
        -------
        int
            Number of chunks persisted.

        Raises
        ------
        ChunkWriteError
            If a batch insert fails. `persisted_count` holds the rows
            committed before the failure.
        """
        model = chunk_model_for(document.embedding_model)
        records = self.build_records(document, embedded_chunks)

        skipped = len(embedded_chunks) - len(records)
        if skipped:
            logger.info("Skipping %d chunks without embeddings for %s", skipped, document.slug)

        if not records:
            return 0

        total_batches = (len(records) + self.insert_batch_size - 1) // self.insert_batch_size
        persisted = 0

        for batch_number, start in enumerate(
            range(0, len(records), self.insert_batch_size), start=1
        ):
            batch = records[start : start + self.insert_batch_size]
            try:
                await self._session.execute(insert(model), batch)
                await self._session.commit()
            except Exception as exc:
                await self._session.rollback()
                logger.error(
                    "Chunk insert batch %d/%d failed for %s after %d persisted: %s",
                    batch_number,
                    total_batches,
                    document.slug,
                    persisted,
                    exc,
                )
                raise ChunkWriteError(
                    f"Failed to insert batch {batch_number}/{total_batches}: {type(exc).__name__}",
                    persisted_count=persisted,
                    failed_batch=batch_number,
                ) from exc

            persisted += len(batch)

        logger.info("Stored %d chunks for %s", persisted, document.slug)
        return persisted

    async def delete_document_chunks(self, document: Document) -> int:
        """
        Remove all chunks for a document (before reprocessing).

        Returns the number of deleted rows.
        """
        model = chunk_model_for(document.embedding_model)
        result = await self._session.execute(
            delete(model).where(model.document_id == document.id)
        )
        await self._session.commit()
        return result.rowcount

    async def count_document_chunks(self, document: Document) -> int:
        model = chunk_model_for(document.embedding_model)
        result = await self._session.execute(
            select(func.count()).select_from(model).where(model.document_id == document.id)
        )
        return result.scalar() or 0
