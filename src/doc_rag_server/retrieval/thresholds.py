"""
Similarity thresholds per embedding model and search mode.

The 1536-dimension OpenAI model separates relevant from irrelevant text more
sharply than the 384-dimension local model, so it gets the higher cut-off.
Hybrid mode uses lower thresholds because full-text matches can admit rows
the vector score alone would reject.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, assert_never

from .models import SearchMode
from ..config import Settings, settings
from ..embeddings.models import EmbeddingModel


@dataclass(frozen=True)
class ThresholdPolicy:
    openai_vector: float = 0.3
    local_vector: float = 0.05
    openai_hybrid: float = 0.2
    local_hybrid: float = 0.05

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "ThresholdPolicy":
        config = config or settings
        return cls(
            openai_vector=config.threshold_openai_vector,
            local_vector=config.threshold_local_vector,
            openai_hybrid=config.threshold_openai_hybrid,
            local_hybrid=config.threshold_local_hybrid,
        )

    def for_(self, model: EmbeddingModel, mode: SearchMode) -> float:
        if mode is SearchMode.VECTOR:
            if model is EmbeddingModel.OPENAI:
                return self.openai_vector
            if model is EmbeddingModel.LOCAL:
                return self.local_vector
            assert_never(model)
        elif mode is SearchMode.HYBRID:
            if model is EmbeddingModel.OPENAI:
                return self.openai_hybrid
            if model is EmbeddingModel.LOCAL:
                return self.local_hybrid
            assert_never(model)
        else:
            assert_never(mode)
