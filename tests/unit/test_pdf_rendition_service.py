"""Unit tests for PdfRenditionService on the local blob store and SQLite."""

from __future__ import annotations

from pathlib import Path

import fitz
import pytest
import pytest_asyncio

from presales_core.models.rendition import PdfRenditionStatus
from presales_core.providers.storage.local_blob_store import LocalBlobStore
from presales_core.providers.storage.sqlite_rendition_store import SQLiteRenditionStore
from presales_core.services.rendition.pdf_converter import PdfConverter
from presales_core.services.rendition.pdf_rendition_service import (
    PdfRenditionService,
    rendition_path,
)
from presales_core.utils.errors import PipelineStageError, RenditionFailure, StorageError
from tests.conftest import PPTX_TYPE, make_pptx, make_version


class _CountingConverter(PdfConverter):
    def __init__(self) -> None:
        self.calls = 0

    def convert(self, data: bytes, content_type: str) -> bytes:
        self.calls += 1
        return super().convert(data, content_type)


@pytest_asyncio.fixture
async def rendition_store(tmp_path: Path) -> SQLiteRenditionStore:
    store = SQLiteRenditionStore(tmp_path / "renditions.db")
    await store.initialize()
    return store


@pytest.fixture
def converter() -> _CountingConverter:
    return _CountingConverter()


@pytest.fixture
def service(
    blob_store: LocalBlobStore, rendition_store: SQLiteRenditionStore, converter: _CountingConverter
) -> PdfRenditionService:
    return PdfRenditionService(blob_store, rendition_store, converter=converter, timeout_seconds=None)


class TestPdfRenditionService:
    @pytest.mark.asyncio
    async def test_pptx_rendition_is_stored(
        self, service: PdfRenditionService, blob_store: LocalBlobStore
    ) -> None:
        version = make_version(file_path="documents/doc-001/deck.pptx", content_type=PPTX_TYPE)
        await blob_store.put(version.file_path, make_pptx([["Cloud Migration"]]), PPTX_TYPE)

        rendition = await service.generate(version)

        assert rendition.status is PdfRenditionStatus.COMPLETED
        assert rendition.file_path == rendition_path(version.id)
        pdf = await blob_store.get(rendition.file_path)
        assert rendition.file_size == len(pdf)
        doc = fitz.open(stream=pdf, filetype="pdf")
        assert "Cloud Migration" in doc[0].get_text()
        doc.close()
        assert await blob_store.content_type(rendition.file_path) == "application/pdf"

    @pytest.mark.asyncio
    async def test_completed_rendition_is_reused(
        self,
        service: PdfRenditionService,
        blob_store: LocalBlobStore,
        converter: _CountingConverter,
    ) -> None:
        version = make_version()
        await blob_store.put(version.file_path, b"Project summary", "text/plain")

        first = await service.generate(version)
        second = await service.generate(version)

        assert converter.calls == 1
        assert second.file_path == first.file_path
        assert await service.get_pdf(version.id) == await blob_store.get(first.file_path)

    @pytest.mark.asyncio
    async def test_conversion_failure_is_recorded(
        self, service: PdfRenditionService, blob_store: LocalBlobStore
    ) -> None:
        version = make_version(file_path="documents/doc-001/broken.pdf", content_type="application/pdf")
        await blob_store.put(version.file_path, b"not a pdf", "application/pdf")

        with pytest.raises(PipelineStageError) as exc_info:
            await service.generate(version)

        assert exc_info.value.stage == "RENDERING"
        assert isinstance(exc_info.value.cause, RenditionFailure)
        stored = await service.get_rendition(version.id)
        assert stored is not None
        assert stored.status is PdfRenditionStatus.FAILED
        assert "Cannot open PDF" in (stored.error_message or "")
        assert await service.get_pdf(version.id) is None
        assert not await blob_store.exists(rendition_path(version.id))

    @pytest.mark.asyncio
    async def test_missing_source_blob_is_recorded(self, service: PdfRenditionService) -> None:
        version = make_version(file_path="documents/doc-001/missing.txt")

        with pytest.raises(PipelineStageError) as exc_info:
            await service.generate(version)

        assert isinstance(exc_info.value.cause, StorageError)
        stored = await service.get_rendition(version.id)
        assert stored is not None and stored.status is PdfRenditionStatus.FAILED

    @pytest.mark.asyncio
    async def test_failed_rendition_can_be_retried(
        self, service: PdfRenditionService, blob_store: LocalBlobStore
    ) -> None:
        version = make_version()
        with pytest.raises(PipelineStageError):
            await service.generate(version)

        await blob_store.put(version.file_path, b"Now it exists", "text/plain")
        rendition = await service.generate(version)

        assert rendition.is_complete
        assert rendition.error_message is None

    @pytest.mark.asyncio
    async def test_unknown_version_has_no_rendition(self, service: PdfRenditionService) -> None:
        assert await service.get_rendition("ver-x") is None
        assert await service.get_pdf("ver-x") is None
