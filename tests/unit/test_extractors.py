"""Unit tests for the text extraction adapters."""

from __future__ import annotations

import fitz
import pytest

from presales_core.providers.extraction import (
    DocumentTextExtractor,
    PdfTextExtractor,
    PlainTextExtractor,
    PptxTextExtractor,
)
from presales_core.providers.extraction.pptx_extractor import SLIDE_SEPARATOR
from presales_core.utils.errors import ExtractionFailure
from tests.conftest import PPTX_TYPE, make_pptx


def _make_pdf(pages: list[str]) -> bytes:
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        if text:
            page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


class TestPptxTextExtractor:
    @pytest.mark.asyncio
    async def test_slides_joined_with_separator(self) -> None:
        data = make_pptx([["Acme Bank", "Cloud migration"], [], ["Results"]])

        text = await PptxTextExtractor().extract(data, PPTX_TYPE)

        assert text == "Acme Bank\nCloud migration" + SLIDE_SEPARATOR + "Results"

    @pytest.mark.asyncio
    async def test_corrupt_file_raises(self) -> None:
        with pytest.raises(ExtractionFailure):
            await PptxTextExtractor().extract(b"not a zip archive", PPTX_TYPE)

    def test_supports_ignores_parameters(self) -> None:
        assert PptxTextExtractor().supports(PPTX_TYPE + "; charset=binary")
        assert not PptxTextExtractor().supports("application/pdf")


class TestPdfTextExtractor:
    @pytest.mark.asyncio
    async def test_text_pages_extracted(self) -> None:
        data = _make_pdf(["First page text", "", "Third page text"])

        text = await PdfTextExtractor().extract(data, "application/pdf")

        assert "First page text" in text
        assert "Third page text" in text
        assert text.index("First") < text.index("Third")

    @pytest.mark.asyncio
    async def test_pdf_without_text_is_empty(self) -> None:
        assert await PdfTextExtractor().extract(_make_pdf([""]), "application/pdf") == ""

    @pytest.mark.asyncio
    async def test_corrupt_pdf_raises(self) -> None:
        with pytest.raises(ExtractionFailure):
            await PdfTextExtractor().extract(b"definitely not a pdf", "application/pdf")


class TestPlainTextExtractor:
    @pytest.mark.asyncio
    async def test_undecodable_bytes_replaced(self) -> None:
        text = await PlainTextExtractor().extract("café".encode("utf-8") + b"\xff", "text/plain")

        assert text.startswith("café")
        assert text.endswith("�")

    def test_supports_text_family(self) -> None:
        assert PlainTextExtractor().supports("text/markdown")
        assert not PlainTextExtractor().supports("application/json")


class TestDocumentTextExtractor:
    @pytest.mark.asyncio
    async def test_routes_by_content_type(self) -> None:
        extractor = DocumentTextExtractor()

        assert await extractor.extract(b"hello", "text/plain; charset=utf-8") == "hello"
        assert "Slide" in await extractor.extract(make_pptx([["Slide"]]), PPTX_TYPE)

    @pytest.mark.asyncio
    async def test_unsupported_type_raises(self) -> None:
        extractor = DocumentTextExtractor()

        assert not extractor.supports("image/png")
        with pytest.raises(ExtractionFailure, match="Unsupported content type"):
            await extractor.extract(b"\x89PNG", "image/png")

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_wrapped(self) -> None:
        class _Broken(PlainTextExtractor):
            async def extract(self, data: bytes, content_type: str) -> str:
                raise RuntimeError("decoder crashed")

        with pytest.raises(ExtractionFailure, match="decoder crashed") as exc_info:
            await DocumentTextExtractor([_Broken()]).extract(b"x", "text/plain")
        assert exc_info.value.provider_name == "plain-text"
