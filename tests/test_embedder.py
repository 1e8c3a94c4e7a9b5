import json

import httpx
import pytest

from doc_rag_server.config import Settings
from doc_rag_server.core.errors import EmbeddingError, RateLimitError
from doc_rag_server.embeddings.embedder import (
    LocalEmbedder,
    OpenAIEmbedder,
    _extract_embeddings,
    build_providers,
)
from doc_rag_server.embeddings.models import EmbeddingModel

URL = "https://embeddings.test/v1/embeddings"


def make_embedder(handler) -> OpenAIEmbedder:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenAIEmbedder(
        api_key="sk-test",
        model_name="text-embedding-3-small",
        base_url=URL,
        timeout=5,
        client=client,
    )


def ok_response(request: httpx.Request) -> httpx.Response:
    payload = json.loads(request.content)
    data = [{"embedding": [0.5] * 1536, "index": i} for i, _ in enumerate(payload["input"])]
    return httpx.Response(200, json={"data": data})


class TestOpenAIEmbedder:

    async def test_embed_returns_vector(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["authorization"]
            return ok_response(request)

        vector = await make_embedder(handler).embed("hello")

        assert len(vector) == 1536
        assert seen["auth"] == "Bearer sk-test"

    async def test_embed_many_one_vector_per_input(self):
        vectors = await make_embedder(ok_response).embed_many(["a", "b", "c"])
        assert len(vectors) == 3

    async def test_429_is_rate_limit_error(self):
        def handler(request):
            return httpx.Response(429, headers={"Retry-After": "2"}, json={"error": "slow"})

        with pytest.raises(RateLimitError) as excinfo:
            await make_embedder(handler).embed("hello")

        assert excinfo.value.retry_after == 2.0

    async def test_server_error_is_embedding_error_not_rate_limit(self):
        def handler(request):
            return httpx.Response(500, json={"error": "down"})

        with pytest.raises(EmbeddingError) as excinfo:
            await make_embedder(handler).embed("hello")

        assert not isinstance(excinfo.value, RateLimitError)

    async def test_transport_error_is_embedding_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(EmbeddingError):
            await make_embedder(handler).embed("hello")

    async def test_non_json_body_is_embedding_error(self):
        def handler(request):
            return httpx.Response(200, text="<html>gateway</html>")

        with pytest.raises(EmbeddingError, match="not valid JSON"):
            await make_embedder(handler).embed("hello")

    async def test_wrong_dimensions_rejected(self):
        def handler(request):
            return httpx.Response(200, json={"data": [{"embedding": [0.1] * 10}]})

        with pytest.raises(EmbeddingError, match="dimensions"):
            await make_embedder(handler).embed("hello")

    async def test_empty_text_rejected_without_request(self):
        def handler(request):
            raise AssertionError("no request expected")

        with pytest.raises(EmbeddingError):
            await make_embedder(handler).embed("   ")


class TestExtractEmbeddings:

    def test_missing_data_field(self):
        with pytest.raises(EmbeddingError):
            _extract_embeddings({"foo": []}, 3)

    def test_non_numeric_vector(self):
        with pytest.raises(EmbeddingError):
            _extract_embeddings({"data": [{"embedding": ["a", "b", "c"]}]}, 3)

    def test_valid_payload(self):
        assert _extract_embeddings({"data": [{"embedding": [1, 2, 3]}]}, 3) == [[1.0, 2.0, 3.0]]


class TestLocalEmbedder:

    async def test_model_errors_become_embedding_error(self):
        embedder = LocalEmbedder(model_name="missing-model")

        def broken(text):
            raise RuntimeError("model not available")

        embedder._encode = broken
        with pytest.raises(EmbeddingError):
            await embedder.embed("hello")

    async def test_dimension_mismatch_rejected(self):
        embedder = LocalEmbedder(model_name="stub")
        embedder._encode = lambda text: [0.1] * 10
        with pytest.raises(EmbeddingError, match="dimensions"):
            await embedder.embed("hello")


def test_build_providers_covers_every_model():
    providers = build_providers(Settings(openai_api_key="sk-test"))

    assert set(providers) == set(EmbeddingModel)
    assert providers[EmbeddingModel.OPENAI].model is EmbeddingModel.OPENAI
    assert providers[EmbeddingModel.LOCAL].model is EmbeddingModel.LOCAL
