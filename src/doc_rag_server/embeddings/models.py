"""
Embedding Data Models

Defines the supported embedding models and the per-chunk embedding outcome.

An outcome is either `Embedded` (carrying the vector) or `Failed` (carrying
the reason). Downstream code must branch on the outcome type to reach a
vector, so a failed chunk cannot be mistaken for an embedded one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Tuple, Union

from ..ingestion.models import ChunkCandidate


class EmbeddingModel(str, Enum):
    """Embedding model identifier stored on each document."""

    OPENAI = "openai"
    LOCAL = "local"

    @property
    def dimensions(self) -> int:
        if self is EmbeddingModel.OPENAI:
            return 1536
        if self is EmbeddingModel.LOCAL:
            return 384
        raise ValueError(f"Unknown embedding model: {self!r}")


@dataclass(frozen=True)
class Embedded:
    vector: Tuple[float, ...]


@dataclass(frozen=True)
class Failed:
    reason: str
    rate_limited: bool = False


EmbeddingOutcome = Union[Embedded, Failed]


@dataclass(frozen=True)
class EmbeddedChunk:
    """A chunk candidate paired with its embedding outcome."""
    chunk: ChunkCandidate
    outcome: EmbeddingOutcome

    @property
    def succeeded(self) -> bool:
        return isinstance(self.outcome, Embedded)


@dataclass
class BatchEmbeddingReport:
    """
    Result of running the batch pipeline over a document's chunks.

    `items` preserves the original chunk order, one entry per input chunk.
    """
    items: List[EmbeddedChunk] = field(default_factory=list)
    batches: int = 0

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def success_count(self) -> int:
        return sum(1 for item in self.items if item.succeeded)

    @property
    def failure_count(self) -> int:
        return self.total - self.success_count

    @property
    def rate_limited_count(self) -> int:
        return sum(
            1
            for item in self.items
            if isinstance(item.outcome, Failed) and item.outcome.rate_limited
        )

    def failed_chunks(self) -> List[ChunkCandidate]:
        return [item.chunk for item in self.items if not item.succeeded]

    def embedded(self) -> List[EmbeddedChunk]:
        return [item for item in self.items if item.succeeded]
