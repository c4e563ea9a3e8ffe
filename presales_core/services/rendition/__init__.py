"""Renditions: the case-study slide deck and per-version PDF renditions."""

from presales_core.services.rendition.pdf_converter import PdfConverter
from presales_core.services.rendition.pdf_rendition_service import PdfRenditionService
from presales_core.services.rendition.pptx_builder import RenditionBuilder

__all__ = ["PdfConverter", "PdfRenditionService", "RenditionBuilder"]
