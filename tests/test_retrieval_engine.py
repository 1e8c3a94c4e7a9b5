"""
Retrieval Engine Tests

Covers model/threshold selection, single vs multi-document dispatch, per
document limits, and keeping failures apart from empty results.
"""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from conftest import FakeProvider, embedded, make_chunk, make_document, unit_vector
from doc_rag_server.core.errors import (
    ConfigurationError,
    DocumentSetValidationError,
    EmbeddingError,
    RetrievalError,
    RetrievalTimeoutError,
)
from doc_rag_server.embeddings.embedder import OpenAIEmbedder
from doc_rag_server.embeddings.models import EmbeddingModel
from doc_rag_server.registry.models import DocumentSet
from doc_rag_server.retrieval.engine import RetrievalEngine
from doc_rag_server.retrieval.memory_backend import MemorySearchBackend
from doc_rag_server.retrieval.models import SearchMode
from doc_rag_server.retrieval.thresholds import ThresholdPolicy

DIMS = EmbeddingModel.LOCAL.dimensions


def document_set(*documents):
    return DocumentSet(
        documents=list(documents),
        owner=documents[0].owner,
        embedding_model=documents[0].embedding_model,
    )


def make_engine(backend, provider=None, **kwargs):
    provider = provider or FakeProvider(model=EmbeddingModel.LOCAL)
    kwargs.setdefault("default_k", 5)
    kwargs.setdefault("default_timeout", 5.0)
    return RetrievalEngine(
        {EmbeddingModel.LOCAL: provider, EmbeddingModel.OPENAI: FakeProvider()},
        backend,
        thresholds=ThresholdPolicy(),
        **kwargs,
    )


@pytest.fixture
def backend():
    return MemorySearchBackend()


class TestRetrieve:

    async def test_multi_document_gets_k_per_document(self, backend):
        a = make_document("a", model=EmbeddingModel.LOCAL)
        b = make_document("b", model=EmbeddingModel.LOCAL)
        for doc, step in ((a, 0.01), (b, 0.2)):
            backend.add_chunks(
                doc,
                [embedded(make_chunk(i), unit_vector(DIMS, tilt=i * step)) for i in range(10)],
            )

        result = await make_engine(backend).retrieve("query", document_set(a, b), k=5)

        assert len(result.chunks_for("a")) == 5
        assert len(result.chunks_for("b")) == 5
        assert result.limit_per_document == 5

    async def test_below_threshold_is_empty_not_error(self, backend):
        doc = make_document("a", model=EmbeddingModel.LOCAL)
        backend.add_chunks(doc, [embedded(make_chunk(i), unit_vector(DIMS, 1)) for i in range(3)])

        result = await make_engine(backend).retrieve("query", document_set(doc))

        assert result.is_empty
        assert result.threshold == 0.05

    async def test_matches_carry_document(self, backend):
        doc = make_document("a", model=EmbeddingModel.LOCAL, title="Handbook")
        backend.add_chunks(doc, [embedded(make_chunk(0, page=4), unit_vector(DIMS))])

        result = await make_engine(backend).retrieve("query", document_set(doc))

        assert result.chunks[0].document.title == "Handbook"
        assert result.chunks[0].page_number == 4

    async def test_query_embedded_with_set_model(self, backend):
        local = FakeProvider(model=EmbeddingModel.LOCAL)
        doc = make_document("a", model=EmbeddingModel.LOCAL)

        await make_engine(backend, provider=local).retrieve("what dose?", document_set(doc))

        assert local.calls == ["what dose?"]

    async def test_chunk_limit_override_sets_default_k(self, backend):
        doc = make_document("a", model=EmbeddingModel.LOCAL, chunk_limit_override=8)
        result = await make_engine(backend).retrieve("query", document_set(doc))
        assert result.limit_per_document == 8

    async def test_empty_query_rejected(self, backend):
        doc = make_document("a", model=EmbeddingModel.LOCAL)
        with pytest.raises(ConfigurationError):
            await make_engine(backend).retrieve("  ", document_set(doc))


class TestDispatch:

    @pytest.fixture
    def mock_backend(self):
        backend = AsyncMock()
        for name in ("vector_search", "vector_search_multi", "hybrid_search", "hybrid_search_multi"):
            getattr(backend, name).return_value = []
        return backend

    async def test_single_vector(self, mock_backend):
        doc = make_document("a", model=EmbeddingModel.LOCAL)
        await make_engine(mock_backend).retrieve("q", document_set(doc), k=3)

        mock_backend.vector_search.assert_awaited_once()
        args = mock_backend.vector_search.await_args.args
        assert args[0] is EmbeddingModel.LOCAL
        assert args[1] == doc.id
        assert args[3:] == (0.05, 3)

    async def test_multi_hybrid_passes_query_text(self, mock_backend):
        a = make_document("a")
        b = make_document("b")
        await make_engine(mock_backend).retrieve(
            "tacrolimus", document_set(a, b), mode=SearchMode.HYBRID
        )

        mock_backend.hybrid_search_multi.assert_awaited_once()
        args = mock_backend.hybrid_search_multi.await_args.args
        assert args[0] is EmbeddingModel.OPENAI
        assert args[1] == [a.id, b.id]
        assert args[3] == "tacrolimus"
        assert args[4] == 0.2
        mock_backend.vector_search_multi.assert_not_awaited()


class TestFailures:

    async def test_backend_failure_is_retrieval_error(self):
        backend = AsyncMock()
        backend.vector_search.side_effect = RuntimeError("connection reset")
        doc = make_document("a", model=EmbeddingModel.LOCAL)

        with pytest.raises(RetrievalError):
            await make_engine(backend).retrieve("q", document_set(doc))

    async def test_query_embedding_failure_is_retrieval_error(self, backend):
        provider = FakeProvider(model=EmbeddingModel.LOCAL, fail_every=1)
        doc = make_document("a", model=EmbeddingModel.LOCAL)

        with pytest.raises(RetrievalError) as excinfo:
            await make_engine(backend, provider=provider).retrieve("q", document_set(doc))
        assert isinstance(excinfo.value.__cause__, EmbeddingError)

    async def test_gateway_page_from_provider_is_retrieval_error(self, backend):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, text="<html>gateway</html>")
            )
        )
        embedder = OpenAIEmbedder(api_key="sk-test", base_url="https://embeddings.test", client=client)
        engine = RetrievalEngine(
            {EmbeddingModel.OPENAI: embedder}, backend, default_k=5, default_timeout=5.0
        )

        with pytest.raises(RetrievalError) as excinfo:
            await engine.retrieve("q", document_set(make_document("a")))
        assert isinstance(excinfo.value.__cause__, EmbeddingError)

    async def test_timeout_is_distinct(self):
        async def slow(*args, **kwargs):
            await asyncio.sleep(1)
            return []

        backend = AsyncMock()
        backend.vector_search.side_effect = slow
        doc = make_document("a", model=EmbeddingModel.LOCAL)

        with pytest.raises(RetrievalTimeoutError) as excinfo:
            await make_engine(backend).retrieve("q", document_set(doc), timeout=0.01)

        assert not isinstance(excinfo.value, RetrievalError)
        assert excinfo.value.timeout == 0.01

    async def test_mixed_owner_rejected_before_embedding_or_search(self, registry):
        provider = FakeProvider()
        backend = AsyncMock()
        engine = RetrievalEngine({EmbeddingModel.OPENAI: provider}, backend, default_k=5)

        with pytest.raises(DocumentSetValidationError):
            document_set_ = await registry.resolve_document_set(["smh", "uhn"])
            await engine.retrieve("q", document_set_)

        assert provider.calls == []
        backend.vector_search_multi.assert_not_awaited()
        backend.vector_search.assert_not_awaited()
