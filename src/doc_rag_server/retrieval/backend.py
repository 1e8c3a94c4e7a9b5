"""
Similarity Search Backend Contract

The retrieval engine consumes four nearest-neighbour operations. Each takes
a query vector (hybrid variants also take the raw query text), a similarity
threshold and a result limit, and returns matches ranked best first.

Multi-document variants apply the limit per document, not in total.

Implementations
---------------
- `db.vector_store.PgVectorSearchBackend`: PostgreSQL + pgvector.
- `retrieval.memory_backend.MemorySearchBackend`: in-process, numpy.
"""

from __future__ import annotations

import uuid
from typing import List, Protocol, Sequence

from .models import ChunkMatch
from ..embeddings.models import EmbeddingModel


class SimilarityBackend(Protocol):

    async def vector_search(
        self,
        model: EmbeddingModel,
        document_id: uuid.UUID,
        query_embedding: Sequence[float],
        threshold: float,
        limit: int,
    ) -> List[ChunkMatch]:
        ...

    async def vector_search_multi(
        self,
        model: EmbeddingModel,
        document_ids: Sequence[uuid.UUID],
        query_embedding: Sequence[float],
        threshold: float,
        limit_per_document: int,
    ) -> List[ChunkMatch]:
        ...

    async def hybrid_search(
        self,
        model: EmbeddingModel,
        document_id: uuid.UUID,
        query_embedding: Sequence[float],
        query_text: str,
        threshold: float,
        limit: int,
    ) -> List[ChunkMatch]:
        ...

    async def hybrid_search_multi(
        self,
        model: EmbeddingModel,
        document_ids: Sequence[uuid.UUID],
        query_embedding: Sequence[float],
        query_text: str,
        threshold: float,
        limit_per_document: int,
    ) -> List[ChunkMatch]:
        ...
