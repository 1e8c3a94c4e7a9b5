"""
Retrieval Engine

Embeds a query with the model of the target document set, picks the
threshold for that model and search mode, and asks the similarity backend
for the top K chunks per document.

Failures are kept apart from empty results:
- backend or query-embedding errors raise `RetrievalError`
- an exceeded deadline raises `RetrievalTimeoutError`
- a successful search with nothing above threshold returns an empty result
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Mapping, Optional, assert_never

from .backend import SimilarityBackend
from .models import ChunkMatch, RankedChunk, RetrievalResult, SearchMode
from .thresholds import ThresholdPolicy
from ..config import settings
from ..core.errors import (
    ConfigurationError,
    EmbeddingError,
    RetrievalError,
    RetrievalTimeoutError,
)
from ..embeddings.embedder import EmbeddingProvider
from ..embeddings.models import EmbeddingModel
from ..registry.models import DocumentSet

logger = logging.getLogger("rag.retrieval")


class RetrievalEngine:
    """
    Parameters
    ----------
    providers : Mapping[EmbeddingModel, EmbeddingProvider]
        Query embedders keyed by model.
    backend : SimilarityBackend
        Nearest-neighbour search implementation.
    thresholds : ThresholdPolicy, optional
        Defaults to the configured thresholds.
    default_k : int, optional
        Per-document limit when neither the caller nor the documents set one.
    default_timeout : float, optional
        Deadline in seconds for embedding plus search.
    """

    def __init__(
        self,
        providers: Mapping[EmbeddingModel, EmbeddingProvider],
        backend: SimilarityBackend,
        thresholds: Optional[ThresholdPolicy] = None,
        default_k: Optional[int] = None,
        default_timeout: Optional[float] = None,
    ) -> None:
        self._providers = providers
        self._backend = backend
        self.thresholds = thresholds or ThresholdPolicy.from_settings()
        self.default_k = default_k if default_k is not None else settings.retrieval_top_k
        self.default_timeout = (
            default_timeout
            if default_timeout is not None
            else settings.retrieval_timeout_seconds
        )
        if self.default_k <= 0:
            raise ConfigurationError("default_k must be positive")

    def limit_for(self, document_set: DocumentSet, k: Optional[int] = None) -> int:
        """Per-document result limit: explicit `k`, else the largest document override, else the default."""
        if k is not None:
            if k <= 0:
                raise ConfigurationError("k must be positive")
            return k
        overrides = [
            doc.chunk_limit_override
            for doc in document_set.documents
            if doc.chunk_limit_override
        ]
        return max(overrides) if overrides else self.default_k

    async def retrieve(
        self,
        query: str,
        document_set: DocumentSet,
        k: Optional[int] = None,
        mode: SearchMode = SearchMode.VECTOR,
        timeout: Optional[float] = None,
    ) -> RetrievalResult:
        if not query or not query.strip():
            raise ConfigurationError("Query must not be empty")

        limit = self.limit_for(document_set, k)
        model = document_set.embedding_model
        threshold = self.thresholds.for_(model, mode)
        deadline = timeout if timeout is not None else self.default_timeout

        try:
            matches = await asyncio.wait_for(
                self._search(query, document_set, mode, threshold, limit),
                timeout=deadline,
            )
        except asyncio.TimeoutError as exc:
            logger.warning(
                "Retrieval over %s timed out after %.2fs", document_set.slugs, deadline
            )
            raise RetrievalTimeoutError(deadline) from exc

        chunks: List[RankedChunk] = []
        for match in matches:
            document = document_set.by_id(match.document_id)
            if document is None:
                raise RetrievalError(
                    f"Backend returned chunk {match.chunk_id} from unrequested document {match.document_id}"
                )
            chunks.append(RankedChunk(match=match, document=document))

        logger.info(
            "Retrieved %d chunks for %s (mode=%s, model=%s, threshold=%.2f, k=%d)",
            len(chunks),
            document_set.slugs,
            mode.value,
            model.value,
            threshold,
            limit,
        )
        return RetrievalResult(
            chunks=chunks,
            mode=mode,
            embedding_model=model,
            threshold=threshold,
            limit_per_document=limit,
        )

    async def _embed_query(self, query: str, model: EmbeddingModel) -> List[float]:
        provider = self._providers.get(model)
        if provider is None:
            raise ConfigurationError(f"No embedding provider configured for {model.value}")
        try:
            return await provider.embed(query)
        except EmbeddingError as exc:
            raise RetrievalError(f"Query embedding failed: {exc}") from exc

    async def _search(
        self,
        query: str,
        document_set: DocumentSet,
        mode: SearchMode,
        threshold: float,
        limit: int,
    ) -> List[ChunkMatch]:
        model = document_set.embedding_model
        embedding = await self._embed_query(query, model)
        ids = [doc.id for doc in document_set.documents]

        try:
            if mode is SearchMode.VECTOR:
                if document_set.is_multi:
                    return await self._backend.vector_search_multi(
                        model, ids, embedding, threshold, limit
                    )
                return await self._backend.vector_search(
                    model, ids[0], embedding, threshold, limit
                )
            elif mode is SearchMode.HYBRID:
                if document_set.is_multi:
                    return await self._backend.hybrid_search_multi(
                        model, ids, embedding, query, threshold, limit
                    )
                return await self._backend.hybrid_search(
                    model, ids[0], embedding, query, threshold, limit
                )
            else:
                assert_never(mode)
        except Exception as exc:
            logger.exception("Similarity search failed for %s", document_set.slugs)
            raise RetrievalError(f"Similarity search failed: {exc}") from exc
