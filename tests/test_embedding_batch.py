"""
Embedding Batch Pipeline Tests

Covers item-level failure isolation, batch pacing, ordering and retrying the
failed subset.
"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from conftest import FakeProvider, make_chunk
from doc_rag_server.core.errors import ConfigurationError, EmbeddingError
from doc_rag_server.embeddings.batch import EmbeddingBatchPipeline
from doc_rag_server.embeddings.embedder import OpenAIEmbedder
from doc_rag_server.embeddings.models import Embedded, Failed


@pytest.fixture
def no_sleep():
    with patch("doc_rag_server.embeddings.batch.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


class TestFailureIsolation:

    @pytest.mark.parametrize("n, k", [(10, 3), (25, 5), (7, 1), (120, 7)])
    async def test_every_kth_failure_is_recorded_not_raised(self, n, k, no_sleep):
        provider = FakeProvider(fail_every=k)
        pipeline = EmbeddingBatchPipeline(provider, batch_size=4, batch_delay_ms=100)

        report = await pipeline.run([make_chunk(i) for i in range(n)])

        assert report.total == n
        assert report.success_count == n - n // k
        assert report.failure_count == n // k
        assert len(report.embedded()) == n - n // k

    async def test_rate_limits_flagged_separately(self, no_sleep):
        provider = FakeProvider(rate_limit_every=2)
        pipeline = EmbeddingBatchPipeline(provider, batch_size=10)

        report = await pipeline.run([make_chunk(i) for i in range(6)])

        assert report.rate_limited_count == 3
        assert all(
            item.outcome.rate_limited
            for item in report.items
            if isinstance(item.outcome, Failed)
        )

    async def test_output_keeps_chunk_order(self, no_sleep):
        provider = FakeProvider(fail_every=2)
        pipeline = EmbeddingBatchPipeline(provider, batch_size=3)
        chunks = [make_chunk(i) for i in range(8)]

        report = await pipeline.run(chunks)

        assert [item.chunk.index for item in report.items] == list(range(8))

    async def test_empty_input(self, no_sleep):
        report = await EmbeddingBatchPipeline(FakeProvider()).run([])
        assert report.total == 0
        no_sleep.assert_not_awaited()


class TestPacing:

    async def test_sleeps_between_batches_only(self, no_sleep):
        pipeline = EmbeddingBatchPipeline(FakeProvider(), batch_size=50, batch_delay_ms=100)

        report = await pipeline.run([make_chunk(i) for i in range(120)])

        assert report.batches == 3
        assert no_sleep.await_count == 2
        no_sleep.assert_awaited_with(0.1)

    async def test_single_batch_never_sleeps(self, no_sleep):
        pipeline = EmbeddingBatchPipeline(FakeProvider(), batch_size=50)
        await pipeline.run([make_chunk(i) for i in range(50)])
        no_sleep.assert_not_awaited()

    async def test_progress_callback_per_batch(self, no_sleep):
        progress = AsyncMock()
        pipeline = EmbeddingBatchPipeline(FakeProvider(), batch_size=2)

        await pipeline.run([make_chunk(i) for i in range(5)], progress=progress)

        assert [call.args for call in progress.await_args_list] == [(1, 3), (2, 3), (3, 3)]

    @pytest.mark.parametrize("kwargs", [{"batch_size": 0}, {"batch_delay_ms": -1}])
    def test_invalid_settings_rejected(self, kwargs):
        with pytest.raises(ConfigurationError):
            EmbeddingBatchPipeline(FakeProvider(), **kwargs)


class TestRetryFailed:

    async def test_only_failed_chunks_are_retried(self, no_sleep):
        provider = FakeProvider(fail_every=3)
        pipeline = EmbeddingBatchPipeline(provider, batch_size=10)
        report = await pipeline.run([make_chunk(i) for i in range(6)])
        assert report.failure_count == 2

        provider.fail_every = 0
        provider.calls.clear()
        retried = await pipeline.retry_failed(report)

        assert len(provider.calls) == 2
        assert retried.failure_count == 0
        assert [item.chunk.index for item in retried.items] == list(range(6))

    async def test_nothing_to_retry_returns_same_report(self, no_sleep):
        pipeline = EmbeddingBatchPipeline(FakeProvider())
        report = await pipeline.run([make_chunk(0)])
        assert await pipeline.retry_failed(report) is report


class TestBatchRequests:

    async def test_batch_request_used_when_available(self, no_sleep):
        provider = FakeProvider()
        provider.embed_many = AsyncMock(return_value=[[0.1] * 1536, [0.2] * 1536])
        pipeline = EmbeddingBatchPipeline(provider, batch_size=2, use_batch_requests=True)

        report = await pipeline.run([make_chunk(0), make_chunk(1)])

        assert report.success_count == 2
        assert provider.calls == []
        assert isinstance(report.items[1].outcome, Embedded)

    async def test_falls_back_to_single_calls(self, no_sleep):
        provider = FakeProvider()
        provider.embed_many = AsyncMock(side_effect=EmbeddingError("batch too large"))
        pipeline = EmbeddingBatchPipeline(provider, batch_size=2, use_batch_requests=True)

        report = await pipeline.run([make_chunk(0), make_chunk(1)])

        assert report.success_count == 2
        assert len(provider.calls) == 2

    async def test_unexpected_batch_error_falls_back(self, no_sleep):
        provider = FakeProvider()
        provider.embed_many = AsyncMock(side_effect=RuntimeError("connection reset"))
        pipeline = EmbeddingBatchPipeline(provider, batch_size=2, use_batch_requests=True)

        report = await pipeline.run([make_chunk(0), make_chunk(1)])

        assert report.success_count == 2
        assert len(provider.calls) == 2

    async def test_short_batch_response_falls_back(self, no_sleep):
        provider = FakeProvider()
        provider.embed_many = AsyncMock(return_value=[[0.1] * 1536])
        pipeline = EmbeddingBatchPipeline(provider, batch_size=2, use_batch_requests=True)

        report = await pipeline.run([make_chunk(0), make_chunk(1)])

        assert report.success_count == 2
        assert len(provider.calls) == 2

    async def test_unreadable_provider_responses_become_failures(self, no_sleep):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, text="<html>gateway</html>")
            )
        )
        embedder = OpenAIEmbedder(api_key="sk-test", base_url="https://embeddings.test", client=client)
        pipeline = EmbeddingBatchPipeline(embedder, batch_size=2, use_batch_requests=True)

        report = await pipeline.run([make_chunk(0), make_chunk(1)])

        assert report.failure_count == 2
        assert all(isinstance(item.outcome, Failed) for item in report.items)
