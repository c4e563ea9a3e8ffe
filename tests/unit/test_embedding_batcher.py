"""Unit tests for EmbeddingBatcher -- batching, alignment and failure modes."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from presales_core.interfaces.embedding_provider import IEmbeddingProvider
from presales_core.models.document import Chunk
from presales_core.services.ingestion.embedding_batcher import EmbeddingBatcher
from presales_core.utils.errors import EmbeddingFailure, StageTimeout
from tests.conftest import TEST_DIMENSION, MockEmbeddingProvider


def _chunks(n: int, version_id: str = "ver-1") -> list[Chunk]:
    return [Chunk(version_id=version_id, ordinal=i, text=f"chunk text {i}") for i in range(n)]


def _mock_provider(**embed_kwargs) -> MagicMock:
    provider = MagicMock(spec=IEmbeddingProvider)
    provider.embed = AsyncMock(**embed_kwargs)
    provider.get_provider_name.return_value = "mock"
    return provider


class _SlowProvider(MockEmbeddingProvider):
    """Tracks how many embed calls are in flight at once."""

    def __init__(self, delay: float = 0.01) -> None:
        super().__init__()
        self._delay = delay
        self.in_flight = 0
        self.peak = 0

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(self._delay)
            return await super().embed(texts)
        finally:
            self.in_flight -= 1


class TestAlignment:
    @pytest.mark.asyncio
    async def test_one_vector_per_chunk_in_order(self, mock_embedder: MockEmbeddingProvider) -> None:
        batcher = EmbeddingBatcher(mock_embedder, dimension=TEST_DIMENSION, batch_size=2)
        chunks = _chunks(5)

        vectors = await batcher.embed_chunks(chunks)

        assert [v.chunk_ordinal for v in vectors] == [0, 1, 2, 3, 4]
        assert all(v.dimension == TEST_DIMENSION for v in vectors)
        expected = await mock_embedder.embed_single("chunk text 3")
        assert list(vectors[3].values) == expected

    @pytest.mark.asyncio
    async def test_chunks_are_sent_in_batches(self, mock_embedder: MockEmbeddingProvider) -> None:
        batcher = EmbeddingBatcher(mock_embedder, dimension=TEST_DIMENSION, batch_size=2)

        await batcher.embed_chunks(_chunks(5))

        assert sorted(len(call) for call in mock_embedder.calls) == [1, 2, 2]

    @pytest.mark.asyncio
    async def test_empty_input_makes_no_calls(self, mock_embedder: MockEmbeddingProvider) -> None:
        batcher = EmbeddingBatcher(mock_embedder, dimension=TEST_DIMENSION)

        assert await batcher.embed_chunks([]) == []
        assert mock_embedder.calls == []


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_in_flight_requests_are_bounded(self) -> None:
        provider = _SlowProvider()
        batcher = EmbeddingBatcher(
            provider, dimension=TEST_DIMENSION, batch_size=1, max_concurrency=2
        )

        vectors = await batcher.embed_chunks(_chunks(6))

        assert len(vectors) == 6
        assert provider.peak <= 2

    @pytest.mark.asyncio
    async def test_slow_batch_times_out(self) -> None:
        batcher = EmbeddingBatcher(
            _SlowProvider(delay=1.0), dimension=TEST_DIMENSION, timeout_seconds=0.05
        )

        with pytest.raises(StageTimeout) as exc_info:
            await batcher.embed_chunks(_chunks(1))
        assert exc_info.value.stage == "EMBEDDING"


class TestFailures:
    @pytest.mark.asyncio
    async def test_vector_count_mismatch_is_fatal(self) -> None:
        provider = _mock_provider(return_value=[[0.1] * TEST_DIMENSION])
        batcher = EmbeddingBatcher(provider, dimension=TEST_DIMENSION, batch_size=4)

        with pytest.raises(EmbeddingFailure, match="returned 1 vectors for 3 chunks"):
            await batcher.embed_chunks(_chunks(3))

    @pytest.mark.asyncio
    async def test_wrong_dimension_is_fatal(self) -> None:
        provider = _mock_provider(return_value=[[0.1] * 3])
        batcher = EmbeddingBatcher(provider, dimension=TEST_DIMENSION)

        with pytest.raises(EmbeddingFailure, match="expected 8"):
            await batcher.embed_chunks(_chunks(1))

    @pytest.mark.asyncio
    async def test_provider_exception_is_wrapped(self) -> None:
        provider = _mock_provider(side_effect=RuntimeError("connection reset"))
        batcher = EmbeddingBatcher(provider, dimension=TEST_DIMENSION)

        with pytest.raises(EmbeddingFailure) as exc_info:
            await batcher.embed_chunks(_chunks(1))
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert exc_info.value.provider_name == "mock"

    @pytest.mark.asyncio
    async def test_failed_batch_cancels_remaining_batches(self) -> None:
        class _FirstBatchFails(_SlowProvider):
            async def embed(self, texts: list[str]) -> list[list[float]]:
                if texts[0] == "chunk text 0":
                    raise RuntimeError("connection reset")
                return await super().embed(texts)

        provider = _FirstBatchFails(delay=1.0)
        batcher = EmbeddingBatcher(provider, dimension=TEST_DIMENSION, batch_size=1, max_concurrency=2)

        with pytest.raises(EmbeddingFailure):
            await batcher.embed_chunks(_chunks(4))

        assert provider.in_flight == 0
        assert provider.calls == []

    def test_invalid_batch_size(self, mock_embedder: MockEmbeddingProvider) -> None:
        with pytest.raises(ValueError):
            EmbeddingBatcher(mock_embedder, dimension=TEST_DIMENSION, batch_size=0)
