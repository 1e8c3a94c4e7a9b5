"""
Vector Store

PostgreSQL + pgvector similarity search over the chunk tables.

Vector mode ranks by cosine similarity (`1 - (embedding <=> query)`).
Hybrid mode ranks by a weighted sum of that similarity and
`ts_rank(content_tsv, plainto_tsquery('english', query))`, and admits rows
that either clear the threshold or match the text query.
"""

from __future__ import annotations

import logging
import uuid
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import ColumnElement, Select, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import ChunkModel, chunk_model_for
from ..embeddings.models import EmbeddingModel
from ..retrieval.models import ChunkMatch

logger = logging.getLogger("rag.vector_store")


class PgVectorSearchBackend:
    """
    pgvector-backed implementation of the similarity backend contract.

    Parameters
    ----------
    session : AsyncSession
        Session used for all queries. The backend never commits.
    vector_weight, text_weight : float
        Weights of the hybrid score components.
    """

    def __init__(
        self,
        session: AsyncSession,
        vector_weight: float = 0.7,
        text_weight: float = 0.3,
    ) -> None:
        self._session = session
        self.vector_weight = vector_weight
        self.text_weight = text_weight

    # ------------------------------------------------------------------
    # Statement builders
    # ------------------------------------------------------------------

    def _scored_select(
        self,
        table: ChunkModel,
        document_ids: Sequence[uuid.UUID],
        query_embedding: Sequence[float],
        threshold: float,
        query_text: Optional[str],
    ) -> Tuple[Select, ColumnElement]:
        similarity = 1 - table.embedding.cosine_distance(list(query_embedding))

        if query_text is None:
            text_rank = None
            score = similarity
            admitted = similarity > threshold
        else:
            ts_query = func.plainto_tsquery("english", query_text)
            text_rank = func.coalesce(func.ts_rank(table.content_tsv, ts_query), 0.0)
            score = self.vector_weight * similarity + self.text_weight * text_rank
            admitted = or_(similarity > threshold, table.content_tsv.op("@@")(ts_query))

        columns = [
            table.id.label("chunk_id"),
            table.document_id,
            table.document_slug,
            table.chunk_index,
            table.content,
            table.page_number,
            similarity.label("similarity"),
            score.label("score"),
        ]
        if text_rank is not None:
            columns.append(text_rank.label("text_rank"))

        stmt = select(*columns).where(
            table.document_id.in_(list(document_ids)),
            admitted,
        )
        return stmt, score

    async def _run(self, stmt: Select) -> List[ChunkMatch]:
        result = await self._session.execute(stmt)
        rows = result.mappings().all()
        return [
            ChunkMatch(
                chunk_id=row["chunk_id"],
                document_id=row["document_id"],
                document_slug=row["document_slug"],
                chunk_index=row["chunk_index"],
                content=row["content"],
                page_number=row["page_number"],
                similarity=float(row["similarity"]),
                text_rank=float(row["text_rank"]) if "text_rank" in row else None,
                score=float(row["score"]),
            )
            for row in rows
        ]

    async def _search_single(
        self,
        model: EmbeddingModel,
        document_id: uuid.UUID,
        query_embedding: Sequence[float],
        query_text: Optional[str],
        threshold: float,
        limit: int,
    ) -> List[ChunkMatch]:
        table = chunk_model_for(model)
        scored, score = self._scored_select(
            table, [document_id], query_embedding, threshold, query_text
        )
        stmt = scored.order_by(score.desc()).limit(limit)
        matches = await self._run(stmt)
        logger.debug("Search in %s returned %d rows", table.__tablename__, len(matches))
        return matches

    async def _search_multi(
        self,
        model: EmbeddingModel,
        document_ids: Sequence[uuid.UUID],
        query_embedding: Sequence[float],
        query_text: Optional[str],
        threshold: float,
        limit_per_document: int,
    ) -> List[ChunkMatch]:
        table = chunk_model_for(model)
        scored, score = self._scored_select(
            table, document_ids, query_embedding, threshold, query_text
        )
        ranked = scored.add_columns(
            func.row_number()
            .over(partition_by=table.document_id, order_by=score.desc())
            .label("rank_in_document")
        ).subquery("ranked")

        stmt = (
            select(ranked)
            .where(ranked.c.rank_in_document <= limit_per_document)
            .order_by(ranked.c.score.desc())
        )
        matches = await self._run(stmt)
        logger.debug(
            "Multi-document search in %s over %d documents returned %d rows",
            table.__tablename__,
            len(document_ids),
            len(matches),
        )
        return matches

    # ------------------------------------------------------------------
    # SimilarityBackend
    # ------------------------------------------------------------------

    async def vector_search(
        self,
        model: EmbeddingModel,
        document_id: uuid.UUID,
        query_embedding: Sequence[float],
        threshold: float,
        limit: int,
    ) -> List[ChunkMatch]:
        return await self._search_single(
            model, document_id, query_embedding, None, threshold, limit
        )

    async def vector_search_multi(
        self,
        model: EmbeddingModel,
        document_ids: Sequence[uuid.UUID],
        query_embedding: Sequence[float],
        threshold: float,
        limit_per_document: int,
    ) -> List[ChunkMatch]:
        return await self._search_multi(
            model, document_ids, query_embedding, None, threshold, limit_per_document
        )

    async def hybrid_search(
        self,
        model: EmbeddingModel,
        document_id: uuid.UUID,
        query_embedding: Sequence[float],
        query_text: str,
        threshold: float,
        limit: int,
    ) -> List[ChunkMatch]:
        return await self._search_single(
            model, document_id, query_embedding, query_text, threshold, limit
        )

    async def hybrid_search_multi(
        self,
        model: EmbeddingModel,
        document_ids: Sequence[uuid.UUID],
        query_embedding: Sequence[float],
        query_text: str,
        threshold: float,
        limit_per_document: int,
    ) -> List[ChunkMatch]:
        return await self._search_multi(
            model, document_ids, query_embedding, query_text, threshold, limit_per_document
        )
