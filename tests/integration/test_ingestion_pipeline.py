"""Integration tests for the ingestion pipeline.

Real chunker, batcher, index manager, blob store and SQLite status store;
the embedding provider and the search index are in-memory fakes.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
import pytest_asyncio

from presales_core.models.document import DocumentFacets, IndexingRequest
from presales_core.models.pipeline import IngestionStage, IngestionState
from presales_core.models.search import build_index_schema
from presales_core.pipeline.orchestrator import IngestionPipeline
from presales_core.pipeline.progress_tracker import ALL_DOCUMENTS
from presales_core.providers.extraction import DocumentTextExtractor
from presales_core.providers.storage.local_blob_store import LocalBlobStore
from presales_core.providers.storage.sqlite_status_store import SQLiteDocumentStatusStore
from presales_core.services.ingestion.chunker import TextChunker
from presales_core.services.ingestion.embedding_batcher import EmbeddingBatcher
from presales_core.services.search.index_manager import SearchIndexManager
from presales_core.services.search.search_service import SearchService
from presales_core.utils.errors import EmbeddingFailure, PipelineStageError, StorageError
from tests.conftest import TEST_DIMENSION, InMemorySearchIndexProvider, MockEmbeddingProvider, make_version

CHUNKER = TextChunker(max_chars=200, overlap=20)


@pytest_asyncio.fixture
async def status_store(tmp_path: Path) -> SQLiteDocumentStatusStore:
    store = SQLiteDocumentStatusStore(tmp_path / "status.db")
    await store.initialize()
    return store


@pytest.fixture
def index_manager(memory_index: InMemorySearchIndexProvider) -> SearchIndexManager:
    return SearchIndexManager(memory_index, build_index_schema("test-index", TEST_DIMENSION))


def _pipeline(
    blob_store: LocalBlobStore,
    embedder: MockEmbeddingProvider,
    index_manager: SearchIndexManager,
    status_store: SQLiteDocumentStatusStore,
    dimension: int = TEST_DIMENSION,
) -> IngestionPipeline:
    return IngestionPipeline(
        blob_store=blob_store,
        text_extractor=DocumentTextExtractor(),
        chunker=CHUNKER,
        embedding_batcher=EmbeddingBatcher(embedder, dimension, batch_size=2, max_concurrency=2),
        index_manager=index_manager,
        status_store=status_store,
        timeout_seconds=5.0,
    )


@pytest.fixture
def pipeline(
    blob_store: LocalBlobStore,
    mock_embedder: MockEmbeddingProvider,
    index_manager: SearchIndexManager,
    status_store: SQLiteDocumentStatusStore,
) -> IngestionPipeline:
    return _pipeline(blob_store, mock_embedder, index_manager, status_store)


async def _upload(blob_store: LocalBlobStore, request: IndexingRequest, text: str) -> None:
    await blob_store.put(request.version.file_path, text.encode("utf-8"), request.version.content_type)


def _request(version_id: str, version_number: int, facets: DocumentFacets) -> IndexingRequest:
    return IndexingRequest(
        version=make_version(version_id=version_id, version_number=version_number),
        title="Acme Cloud Migration",
        facets=facets,
    )


class TestIndexVersion:
    @pytest.mark.asyncio
    async def test_version_is_indexed(
        self,
        pipeline: IngestionPipeline,
        blob_store: LocalBlobStore,
        memory_index: InMemorySearchIndexProvider,
        status_store: SQLiteDocumentStatusStore,
        indexing_request: IndexingRequest,
        sample_document_text: str,
    ) -> None:
        await _upload(blob_store, indexing_request, sample_document_text)
        expected = CHUNKER.chunk(sample_document_text, "ver-001")

        state = await pipeline.index_version(indexing_request)

        assert state.stage is IngestionStage.INDEXED
        assert state.chunk_count == state.record_count == len(expected) > 1
        assert state.progress_percent == 100.0
        assert sorted(memory_index.records) == sorted(f"ver-001_chunk_{c.ordinal}" for c in expected)
        record = memory_index.records["ver-001_chunk_0"]
        assert record.content == expected[0].text
        assert record.facets.customer_name == "Acme Bank"
        assert len(record.content_vector) == TEST_DIMENSION
        assert await status_store.is_indexed("doc-001")
        assert await status_store.get_last_completed_stage("ver-001") is IngestionStage.INDEXED
        assert pipeline.get_state("ver-001") == state

    @pytest.mark.asyncio
    async def test_reindex_with_fewer_chunks_leaves_no_orphans(
        self,
        pipeline: IngestionPipeline,
        blob_store: LocalBlobStore,
        memory_index: InMemorySearchIndexProvider,
        sample_facets: DocumentFacets,
        sample_document_text: str,
    ) -> None:
        first = _request("ver-001", 1, sample_facets)
        second = _request("ver-002", 2, sample_facets)
        short_text = sample_document_text.split("\n\n")[0]
        await _upload(blob_store, first, sample_document_text)
        await _upload(blob_store, second, short_text)

        await pipeline.index_version(first)
        before = len(memory_index.records)
        state = await pipeline.index_version(second)

        expected = CHUNKER.chunk(short_text, "ver-002")
        assert len(expected) < before
        assert sorted(memory_index.records) == sorted(f"ver-002_chunk_{c.ordinal}" for c in expected)
        assert state.deleted_record_count == before

    @pytest.mark.asyncio
    async def test_reindex_same_version_is_idempotent(
        self,
        pipeline: IngestionPipeline,
        blob_store: LocalBlobStore,
        memory_index: InMemorySearchIndexProvider,
        indexing_request: IndexingRequest,
        sample_document_text: str,
    ) -> None:
        await _upload(blob_store, indexing_request, sample_document_text)

        await pipeline.index_version(indexing_request)
        first = dict(memory_index.records)
        state = await pipeline.index_version(indexing_request)

        assert memory_index.records == first
        assert state.deleted_record_count == 0

    @pytest.mark.asyncio
    async def test_progress_is_published_per_stage(
        self,
        pipeline: IngestionPipeline,
        blob_store: LocalBlobStore,
        status_store: SQLiteDocumentStatusStore,
        indexing_request: IndexingRequest,
        sample_document_text: str,
    ) -> None:
        await _upload(blob_store, indexing_request, sample_document_text)
        stages: list[IngestionStage] = []

        def _listener(state: IngestionState, message: str) -> None:
            stages.append(state.stage)

        pipeline.progress_tracker.register_listener(ALL_DOCUMENTS, _listener)
        await pipeline.index_version(indexing_request)

        assert stages == [
            IngestionStage.PENDING,
            IngestionStage.EXTRACTING,
            IngestionStage.CHUNKING,
            IngestionStage.EMBEDDING,
            IngestionStage.INDEXING,
            IngestionStage.INDEXED,
        ]
        assert pipeline.progress_tracker.get_status("doc-001").stage is IngestionStage.INDEXED
        assert await status_store.get_last_completed_stage("ver-001") is IngestionStage.INDEXED
        assert pipeline.get_state("ver-001").last_completed_stage is IngestionStage.INDEXED


class TestFailures:
    @pytest.mark.asyncio
    async def test_missing_file_fails_extraction(
        self,
        pipeline: IngestionPipeline,
        status_store: SQLiteDocumentStatusStore,
        indexing_request: IndexingRequest,
    ) -> None:
        with pytest.raises(PipelineStageError) as exc_info:
            await pipeline.index_version(indexing_request)

        assert exc_info.value.stage == "EXTRACTING"
        assert isinstance(exc_info.value.cause, StorageError)
        state = pipeline.get_state("ver-001")
        assert state.stage is IngestionStage.FAILED
        assert state.errors[-1].stage == "EXTRACTING"
        assert await status_store.get_last_completed_stage("ver-001") is None

    @pytest.mark.asyncio
    async def test_empty_document_fails_chunking(
        self,
        pipeline: IngestionPipeline,
        blob_store: LocalBlobStore,
        status_store: SQLiteDocumentStatusStore,
        indexing_request: IndexingRequest,
    ) -> None:
        await _upload(blob_store, indexing_request, "   ")

        with pytest.raises(PipelineStageError) as exc_info:
            await pipeline.index_version(indexing_request)

        assert exc_info.value.stage == "CHUNKING"
        assert await status_store.get_last_completed_stage("ver-001") is IngestionStage.EXTRACTING

    @pytest.mark.asyncio
    async def test_embedding_failure_keeps_previous_records(
        self,
        pipeline: IngestionPipeline,
        blob_store: LocalBlobStore,
        mock_embedder: MockEmbeddingProvider,
        index_manager: SearchIndexManager,
        memory_index: InMemorySearchIndexProvider,
        status_store: SQLiteDocumentStatusStore,
        sample_facets: DocumentFacets,
        sample_document_text: str,
    ) -> None:
        first = _request("ver-001", 1, sample_facets)
        second = _request("ver-002", 2, sample_facets)
        await _upload(blob_store, first, sample_document_text)
        await _upload(blob_store, second, sample_document_text)
        await pipeline.index_version(first)
        committed = dict(memory_index.records)

        mismatched = _pipeline(blob_store, mock_embedder, index_manager, status_store, dimension=16)
        with pytest.raises(PipelineStageError) as exc_info:
            await mismatched.index_version(second)

        assert exc_info.value.stage == "EMBEDDING"
        assert isinstance(exc_info.value.cause, EmbeddingFailure)
        assert memory_index.records == committed
        assert await status_store.get_last_completed_stage("ver-002") is IngestionStage.CHUNKING
        assert await status_store.is_indexed("doc-001")


class TestPurge:
    @pytest.mark.asyncio
    async def test_purge_removes_document_from_search(
        self,
        pipeline: IngestionPipeline,
        blob_store: LocalBlobStore,
        mock_embedder: MockEmbeddingProvider,
        index_manager: SearchIndexManager,
        status_store: SQLiteDocumentStatusStore,
        indexing_request: IndexingRequest,
        sample_document_text: str,
    ) -> None:
        await _upload(blob_store, indexing_request, sample_document_text)
        await pipeline.index_version(indexing_request)
        search = SearchService(index_manager, mock_embedder)
        assert await search.search("Kubernetes", filter_expression="document_id eq 'doc-001'")

        state = await pipeline.purge_document("doc-001")

        assert state.stage is IngestionStage.PURGED
        assert state.deleted_record_count > 0
        assert await search.search("Kubernetes", filter_expression="document_id eq 'doc-001'") == []
        assert await index_manager.count_by_document("doc-001") == 0
        assert not await status_store.is_indexed("doc-001")
        assert pipeline.get_purge_state("doc-001") == state

    @pytest.mark.asyncio
    async def test_purging_unknown_document_succeeds(self, pipeline: IngestionPipeline) -> None:
        state = await pipeline.purge_document("doc-404")

        assert state.stage is IngestionStage.PURGED
        assert state.deleted_record_count == 0


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_runs_for_one_document_are_serialised(
        self,
        pipeline: IngestionPipeline,
        blob_store: LocalBlobStore,
        memory_index: InMemorySearchIndexProvider,
        sample_facets: DocumentFacets,
        sample_document_text: str,
    ) -> None:
        first = _request("ver-001", 1, sample_facets)
        second = _request("ver-002", 2, sample_facets)
        await _upload(blob_store, first, sample_document_text)
        await _upload(blob_store, second, sample_document_text.split("\n\n")[0])

        await asyncio.gather(pipeline.index_version(first), pipeline.index_version(second))

        assert {r.version_id for r in memory_index.records.values()} == {"ver-002"}

    @pytest.mark.asyncio
    async def test_different_documents_are_independent(
        self,
        pipeline: IngestionPipeline,
        blob_store: LocalBlobStore,
        index_manager: SearchIndexManager,
        sample_facets: DocumentFacets,
        sample_document_text: str,
    ) -> None:
        requests = [
            IndexingRequest(
                version=make_version(version_id=f"ver-{i}", document_id=f"doc-{i}"),
                title=f"Document {i}",
                facets=sample_facets,
            )
            for i in range(3)
        ]
        for request in requests:
            await _upload(blob_store, request, sample_document_text)

        states = await asyncio.gather(*(pipeline.index_version(r) for r in requests))

        assert all(s.stage is IngestionStage.INDEXED for s in states)
        for i in range(3):
            assert await index_manager.count_by_document(f"doc-{i}") == states[i].record_count
