import uuid
from typing import Callable, List, Optional

import pytest

from doc_rag_server.core.errors import EmbeddingError, RateLimitError
from doc_rag_server.embeddings.models import Embedded, EmbeddedChunk, EmbeddingModel, Failed
from doc_rag_server.ingestion.models import ChunkCandidate, ChunkMetadata
from doc_rag_server.registry.cache import RegistryCache
from doc_rag_server.registry.models import Document
from doc_rag_server.registry.registry import DocumentRegistry


# ---------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------

def make_document(
    slug: str,
    owner: str = "acme",
    model: EmbeddingModel = EmbeddingModel.OPENAI,
    title: Optional[str] = None,
    chunk_limit_override: Optional[int] = None,
    year: Optional[int] = None,
) -> Document:
    return Document(
        id=uuid.uuid4(),
        slug=slug,
        title=title or f"{slug.upper()} Manual",
        owner=owner,
        embedding_model=model,
        year=year,
        chunk_limit_override=chunk_limit_override,
    )


def make_chunk(index: int, content: Optional[str] = None, page: int = 1) -> ChunkCandidate:
    content = content or f"chunk {index} text"
    return ChunkCandidate(
        index=index,
        content=content,
        metadata=ChunkMetadata(
            char_start=index * 10,
            char_end=index * 10 + len(content),
            tokens_approx=len(content) // 4,
            page_number=page,
            page_markers_found=0,
        ),
    )


def unit_vector(dimensions: int, axis: int = 0, tilt: float = 0.0) -> List[float]:
    """Vector along `axis`, optionally tilted towards the last axis."""
    vector = [0.0] * dimensions
    vector[axis] = 1.0
    if tilt:
        vector[-1] = tilt
    return vector


def embedded(chunk: ChunkCandidate, vector: List[float]) -> EmbeddedChunk:
    return EmbeddedChunk(chunk=chunk, outcome=Embedded(vector=tuple(vector)))


def failed(chunk: ChunkCandidate, rate_limited: bool = False) -> EmbeddedChunk:
    return EmbeddedChunk(chunk=chunk, outcome=Failed(reason="boom", rate_limited=rate_limited))


# ---------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------

class FakeProvider:
    """
    Embedding provider that counts calls and fails on a schedule.

    `fail_every=k` makes every k-th call raise EmbeddingError;
    `rate_limit_every=k` makes every k-th call raise RateLimitError.
    """

    def __init__(
        self,
        model: EmbeddingModel = EmbeddingModel.OPENAI,
        fail_every: int = 0,
        rate_limit_every: int = 0,
        vector_for: Optional[Callable[[str], List[float]]] = None,
    ) -> None:
        self.model = model
        self.fail_every = fail_every
        self.rate_limit_every = rate_limit_every
        self.vector_for = vector_for
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        n = len(self.calls)
        if self.rate_limit_every and n % self.rate_limit_every == 0:
            raise RateLimitError("rate limited", retry_after=1.0)
        if self.fail_every and n % self.fail_every == 0:
            raise EmbeddingError("provider failure")
        if self.vector_for is not None:
            return list(self.vector_for(text))
        return unit_vector(self.model.dimensions)


class FakeDocumentStore:
    def __init__(self, documents: Optional[List[Document]] = None) -> None:
        self.documents = list(documents or [])
        self.fail = False
        self.calls = 0

    async def list_active_documents(self) -> List[Document]:
        self.calls += 1
        if self.fail:
            raise ConnectionError("store down")
        return [doc for doc in self.documents if doc.active]

    async def list_documents_by_owner(self, owner: str) -> List[Document]:
        if self.fail:
            raise ConnectionError("store down")
        return [doc for doc in self.documents if doc.owner == owner and doc.active]


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def documents():
    return [
        make_document("smh", owner="ukidney", year=2023),
        make_document("smh-tx", owner="ukidney", year=2024),
        make_document("uhn", owner="uhn"),
        make_document("local-doc", owner="ukidney", model=EmbeddingModel.LOCAL),
    ]


@pytest.fixture
def store(documents):
    return FakeDocumentStore(documents)


@pytest.fixture
def registry(store, clock):
    return DocumentRegistry(store, RegistryCache(ttl_seconds=300, clock=clock))
