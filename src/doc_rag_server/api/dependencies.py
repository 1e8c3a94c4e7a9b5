from functools import lru_cache
from typing import Dict

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..db import AsyncSessionLocal, DocumentMetadataStore, PgVectorSearchBackend, get_async_session
from ..embeddings.embedder import EmbeddingProvider, build_providers
from ..embeddings.models import EmbeddingModel
from ..ingestion.pipeline import IngestionPipeline
from ..prompts.assembler import PromptAssembler
from ..prompts.rules import build_disclosure_rules
from ..registry.cache import RegistryCache
from ..registry.registry import DocumentRegistry
from ..retrieval.backend import SimilarityBackend
from ..retrieval.engine import RetrievalEngine
from ..retrieval.memory_backend import MemorySearchBackend
from ..retrieval.thresholds import ThresholdPolicy


@lru_cache
def get_providers() -> Dict[EmbeddingModel, EmbeddingProvider]:
    return build_providers(settings)


@lru_cache
def get_registry() -> DocumentRegistry:
    # One cache per process; refreshes are idempotent so no lock is needed.
    return DocumentRegistry(
        DocumentMetadataStore(AsyncSessionLocal),
        RegistryCache(ttl_seconds=settings.registry_ttl_seconds),
    )


@lru_cache
def get_prompt_assembler() -> PromptAssembler:
    return PromptAssembler(build_disclosure_rules(settings))


@lru_cache
def get_memory_backend() -> MemorySearchBackend:
    return MemorySearchBackend(
        vector_weight=settings.hybrid_vector_weight,
        text_weight=settings.hybrid_text_weight,
    )


@lru_cache
def get_ingestion_pipeline() -> IngestionPipeline:
    memory_backend = get_memory_backend() if settings.search_backend == "memory" else None
    return IngestionPipeline(
        get_providers(),
        AsyncSessionLocal,
        settings,
        memory_backend=memory_backend,
    )


def get_search_backend(
    session: AsyncSession = Depends(get_async_session),
) -> SimilarityBackend:
    if settings.search_backend == "memory":
        return get_memory_backend()
    return PgVectorSearchBackend(
        session,
        vector_weight=settings.hybrid_vector_weight,
        text_weight=settings.hybrid_text_weight,
    )


def get_retrieval_engine(
    providers: Dict[EmbeddingModel, EmbeddingProvider] = Depends(get_providers),
    backend: SimilarityBackend = Depends(get_search_backend),
) -> RetrievalEngine:
    return RetrievalEngine(
        providers,
        backend,
        thresholds=ThresholdPolicy.from_settings(settings),
        default_k=settings.retrieval_top_k,
        default_timeout=settings.retrieval_timeout_seconds,
    )
