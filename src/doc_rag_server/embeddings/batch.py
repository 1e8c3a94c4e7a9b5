"""
Embedding Batch Pipeline

Turns an ordered list of chunk candidates into (chunk, outcome) pairs.

Processing model
----------------
- Chunks are partitioned into sequential batches of `batch_size`.
- Inside a batch, one embedding call per chunk is issued concurrently. Calls
  are independent: a failure (including rate limiting) is logged and
  recorded as a `Failed` outcome for that chunk only.
- Batches run one after another with `batch_delay_ms` of sleep between
  them (not after the last one). This delay is the backpressure that keeps
  ingestion under the provider's rate limits.

The pipeline never raises because of item failures. Callers read the success
and failure counts from the report and may later re-embed only the failed
subset with `retry_failed`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from .embedder import EmbeddingProvider
from .models import (
    BatchEmbeddingReport,
    Embedded,
    EmbeddedChunk,
    EmbeddingOutcome,
    Failed,
)
from ..core.errors import ConfigurationError, EmbeddingError, RateLimitError
from ..ingestion.models import ChunkCandidate

logger = logging.getLogger("rag.embedding_batch")

ProgressCallback = Callable[[int, int], Awaitable[None]]

DEFAULT_BATCH_SIZE = 50
DEFAULT_BATCH_DELAY_MS = 100


class EmbeddingBatchPipeline:
    """
    Batched, failure-tolerant embedding of chunk candidates.

    The pipeline holds no per-document state and can be reused.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay_ms: int = DEFAULT_BATCH_DELAY_MS,
        use_batch_requests: bool = False,
    ) -> None:
        """
        Parameters
        ----------
        provider : EmbeddingProvider
            Provider for the document's embedding model.

        batch_size : int
            Chunks per batch. Also bounds the number of concurrent calls.

        batch_delay_ms : int
            Sleep between consecutive batches, in milliseconds.

        use_batch_requests : bool
            When the provider offers `embed_many`, first try one request for
            the whole batch and fall back to per-chunk calls if it fails.
        """
        if batch_size <= 0:
            raise ConfigurationError(f"batch_size must be positive, got {batch_size}")
        if batch_delay_ms < 0:
            raise ConfigurationError(
                f"batch_delay_ms must not be negative, got {batch_delay_ms}"
            )

        self.provider = provider
        self.batch_size = batch_size
        self.batch_delay_ms = batch_delay_ms
        self.use_batch_requests = use_batch_requests

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(
        self,
        chunks: Sequence[ChunkCandidate],
        progress: Optional[ProgressCallback] = None,
    ) -> BatchEmbeddingReport:
        """
        Embed all chunks and return outcomes in the original order.
        """
        report = BatchEmbeddingReport()
        if not chunks:
            return report

        total_batches = (len(chunks) + self.batch_size - 1) // self.batch_size

        for batch_number, start in enumerate(range(0, len(chunks), self.batch_size), start=1):
            if progress is not None:
                await progress(batch_number, total_batches)

            batch = list(chunks[start : start + self.batch_size])
            outcomes = await self._embed_batch(batch)
            report.items.extend(
                EmbeddedChunk(chunk=chunk, outcome=outcome)
                for chunk, outcome in zip(batch, outcomes)
            )
            report.batches += 1

            failed = sum(1 for outcome in outcomes if isinstance(outcome, Failed))
            logger.info(
                "Embedded batch %d/%d: %d ok, %d failed",
                batch_number,
                total_batches,
                len(batch) - failed,
                failed,
            )

            if batch_number < total_batches and self.batch_delay_ms > 0:
                await asyncio.sleep(self.batch_delay_ms / 1000)

        logger.info(
            "Embedding finished: %d/%d succeeded, %d failed (%d rate limited)",
            report.success_count,
            report.total,
            report.failure_count,
            report.rate_limited_count,
        )
        return report

    async def retry_failed(self, report: BatchEmbeddingReport) -> BatchEmbeddingReport:
        """
        Re-embed only the chunks whose outcome is `Failed`.

        Returns a new report with the same order as `report`, where retried
        chunks carry their new outcome.
        """
        failed = report.failed_chunks()
        if not failed:
            return report

        retried = await self.run(failed)
        by_index = {item.chunk.index: item for item in retried.items}

        merged = BatchEmbeddingReport(batches=report.batches + retried.batches)
        merged.items = [
            by_index.get(item.chunk.index, item) if not item.succeeded else item
            for item in report.items
        ]
        return merged

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _embed_batch(self, batch: List[ChunkCandidate]) -> List[EmbeddingOutcome]:
        if self.use_batch_requests and hasattr(self.provider, "embed_many"):
            try:
                vectors = await self.provider.embed_many([c.content for c in batch])
                if len(vectors) != len(batch):
                    raise EmbeddingError(
                        f"Batch request returned {len(vectors)} vectors for {len(batch)} chunks"
                    )
                return [Embedded(vector=tuple(v)) for v in vectors]
            except Exception as exc:
                logger.warning(
                    "Batch embedding request failed (%s), falling back to per-chunk calls: %s",
                    type(exc).__name__,
                    exc,
                )

        return list(await asyncio.gather(*(self._embed_one(chunk) for chunk in batch)))

    async def _embed_one(self, chunk: ChunkCandidate) -> EmbeddingOutcome:
        try:
            vector = await self.provider.embed(chunk.content)
        except RateLimitError as exc:
            logger.warning("Rate limited embedding chunk %d: %s", chunk.index, exc)
            return Failed(reason=str(exc), rate_limited=True)
        except Exception as exc:
            logger.warning(
                "Failed to embed chunk %d (%s): %s",
                chunk.index,
                type(exc).__name__,
                exc,
            )
            return Failed(reason=f"{type(exc).__name__}: {exc}")

        return Embedded(vector=tuple(vector))
