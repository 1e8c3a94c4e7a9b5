"""
In-Memory Similarity Backend

A numpy implementation of the similarity backend contract, selected with
`SEARCH_BACKEND=memory` for local development and used by the tests.
Ingestion writes into it instead of the chunk tables, so chunks live only as
long as the process. Scores follow the PostgreSQL backend:

- similarity: cosine similarity of query and chunk vectors
- text rank: share of query terms present in the chunk, English stopwords
  excluded as `plainto_tsquery('english', ...)` does
- hybrid score: weighted sum of the two; a row is admitted when its
  similarity clears the threshold or it contains at least one query term

Not intended for large corpora: every search is a brute-force scan.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from threading import RLock
from typing import Dict, List, Optional, Sequence

import numpy as np

from .models import ChunkMatch
from ..core.errors import ConfigurationError
from ..embeddings.models import Embedded, EmbeddedChunk, EmbeddingModel
from ..registry.models import Document

_TERM_RE = re.compile(r"[a-z0-9]+")

# Subset of the PostgreSQL english stopword list; plainto_tsquery drops these.
STOPWORDS = frozenset(
    """
    a about above after again against all am an and any are as at be because
    been before being below between both but by can could did do does doing
    down during each few for from further had has have having he her here hers
    him his how i if in into is it its itself just me more most my no nor not
    now of off on once only or other our ours out over own same she should so
    some such than that the their them then there these they this those
    through to too under until up very was we were what when where which while
    who whom why will with would you your yours
    """.split()
)


def _terms(text: str) -> List[str]:
    return [t for t in _TERM_RE.findall(text.lower()) if t not in STOPWORDS]


@dataclass(frozen=True)
class _Row:
    chunk_id: uuid.UUID
    document_id: uuid.UUID
    document_slug: str
    chunk_index: int
    content: str
    page_number: int
    vector: np.ndarray


class MemorySearchBackend:
    """
    Brute-force cosine search over chunks held in memory.

    Thread-safe via an internal lock; searches run synchronously inside the
    async methods.
    """

    def __init__(
        self,
        vector_weight: float = 0.7,
        text_weight: float = 0.3,
    ) -> None:
        self.vector_weight = vector_weight
        self.text_weight = text_weight
        self._rows: Dict[EmbeddingModel, List[_Row]] = {m: [] for m in EmbeddingModel}
        self._lock = RLock()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def add_chunks(
        self,
        document: Document,
        embedded_chunks: Sequence[EmbeddedChunk],
    ) -> int:
        """Add the embedded chunks of `document`. Failed outcomes are skipped."""
        added = 0
        dims = document.embedding_model.dimensions
        with self._lock:
            for item in embedded_chunks:
                if not isinstance(item.outcome, Embedded):
                    continue
                vector = np.asarray(item.outcome.vector, dtype="float32")
                if vector.shape != (dims,):
                    raise ConfigurationError(
                        f"Chunk {item.chunk.index} has {vector.shape[0]} dimensions, expected {dims}"
                    )
                self._rows[document.embedding_model].append(
                    _Row(
                        chunk_id=uuid.uuid4(),
                        document_id=document.id,
                        document_slug=document.slug,
                        chunk_index=item.chunk.index,
                        content=item.chunk.content,
                        page_number=item.chunk.page_number,
                        vector=vector,
                    )
                )
                added += 1
        return added

    def remove_document(self, document: Document) -> int:
        """Drop every chunk of `document`; returns how many were removed."""
        with self._lock:
            rows = self._rows[document.embedding_model]
            kept = [r for r in rows if r.document_id != document.id]
            removed = len(rows) - len(kept)
            self._rows[document.embedding_model] = kept
        return removed

    def clear(self) -> None:
        with self._lock:
            for rows in self._rows.values():
                rows.clear()

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def _score(
        self,
        model: EmbeddingModel,
        document_ids: Sequence[uuid.UUID],
        query_embedding: Sequence[float],
        threshold: float,
        query_text: Optional[str],
    ) -> List[ChunkMatch]:
        wanted = set(document_ids)
        with self._lock:
            rows = [r for r in self._rows[model] if r.document_id in wanted]
        if not rows:
            return []

        query = np.asarray(query_embedding, dtype="float32")
        matrix = np.vstack([r.vector for r in rows])
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        norms[norms == 0] = 1.0
        similarities = (matrix @ query) / norms

        query_terms = set(_terms(query_text)) if query_text else set()

        matches: List[ChunkMatch] = []
        for row, similarity in zip(rows, similarities.tolist()):
            if query_text is None:
                if similarity <= threshold:
                    continue
                matches.append(self._match(row, similarity, None, similarity))
                continue

            text_rank = 0.0
            if query_terms:
                text_rank = len(query_terms & set(_terms(row.content))) / len(query_terms)
            if similarity <= threshold and text_rank == 0.0:
                continue
            combined = self.vector_weight * similarity + self.text_weight * text_rank
            matches.append(self._match(row, similarity, text_rank, combined))

        matches.sort(key=lambda m: m.score, reverse=True)
        return matches

    @staticmethod
    def _match(row: _Row, similarity: float, text_rank: Optional[float], score: float) -> ChunkMatch:
        return ChunkMatch(
            chunk_id=row.chunk_id,
            document_id=row.document_id,
            document_slug=row.document_slug,
            chunk_index=row.chunk_index,
            content=row.content,
            page_number=row.page_number,
            similarity=similarity,
            text_rank=text_rank,
            score=score,
        )

    @staticmethod
    def _limit_per_document(matches: List[ChunkMatch], limit: int) -> List[ChunkMatch]:
        counts: Dict[uuid.UUID, int] = {}
        kept: List[ChunkMatch] = []
        for match in matches:
            seen = counts.get(match.document_id, 0)
            if seen < limit:
                kept.append(match)
                counts[match.document_id] = seen + 1
        return kept

    # ------------------------------------------------------------------
    # SimilarityBackend
    # ------------------------------------------------------------------

    async def vector_search(self, model, document_id, query_embedding, threshold, limit):
        return self._score(model, [document_id], query_embedding, threshold, None)[:limit]

    async def vector_search_multi(
        self, model, document_ids, query_embedding, threshold, limit_per_document
    ):
        matches = self._score(model, document_ids, query_embedding, threshold, None)
        return self._limit_per_document(matches, limit_per_document)

    async def hybrid_search(
        self, model, document_id, query_embedding, query_text, threshold, limit
    ):
        return self._score(model, [document_id], query_embedding, threshold, query_text)[:limit]

    async def hybrid_search_multi(
        self, model, document_ids, query_embedding, query_text, threshold, limit_per_document
    ):
        matches = self._score(model, document_ids, query_embedding, threshold, query_text)
        return self._limit_per_document(matches, limit_per_document)
