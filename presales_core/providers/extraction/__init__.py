"""Text extraction adapters (PDF, PPTX, plain text)."""

from presales_core.providers.extraction.document_extractor import DocumentTextExtractor
from presales_core.providers.extraction.pdf_extractor import PdfTextExtractor
from presales_core.providers.extraction.plain_text_extractor import PlainTextExtractor
from presales_core.providers.extraction.pptx_extractor import PptxTextExtractor

__all__ = [
    "DocumentTextExtractor",
    "PdfTextExtractor",
    "PlainTextExtractor",
    "PptxTextExtractor",
]
