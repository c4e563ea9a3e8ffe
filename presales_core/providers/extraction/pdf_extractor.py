"""PDF text extraction using PyMuPDF (fitz).

Reads the document from memory page by page; pages with no text layer are
skipped.  Scanned PDFs without an embedded OCR layer therefore yield an
empty string, which the ingestion pipeline reports as a chunking failure.
"""

from __future__ import annotations

import asyncio

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog

from presales_core.interfaces.text_extraction_provider import ITextExtractionProvider
from presales_core.utils.errors import ExtractionFailure

logger = structlog.get_logger(logger_name=__name__)

PDF_CONTENT_TYPE = "application/pdf"


class PdfTextExtractor(ITextExtractionProvider):
    """Extracts plain text from PDF bytes."""

    async def extract(self, data: bytes, content_type: str) -> str:
        return await asyncio.to_thread(self._extract_sync, data)

    def supports(self, content_type: str) -> bool:
        return content_type.split(";", 1)[0].strip().lower() == PDF_CONTENT_TYPE

    def get_provider_name(self) -> str:
        return "pymupdf"

    def _extract_sync(self, data: bytes) -> str:
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except Exception as exc:
            raise ExtractionFailure(
                message=f"Cannot open PDF: {exc}", provider_name=self.get_provider_name()
            ) from exc

        pages: list[str] = []
        try:
            for page in doc:
                text = page.get_text("text").strip()
                if text:
                    pages.append(text)
            page_count = len(doc)
        finally:
            doc.close()

        if not pages:
            logger.warning("pdf_no_text_extracted", pages=page_count)
        logger.debug("pdf_extracted", pages=page_count, text_pages=len(pages))
        return "\n\n".join(pages)
