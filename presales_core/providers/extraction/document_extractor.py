"""Content-type routing text extractor.

Tries each registered extractor in order and delegates to the first whose
:meth:`supports` accepts the content type.  An unsupported type is an
:class:`~presales_core.utils.errors.ExtractionFailure`, never an empty
string.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from presales_core.interfaces.text_extraction_provider import ITextExtractionProvider
from presales_core.providers.extraction.pdf_extractor import PdfTextExtractor
from presales_core.providers.extraction.plain_text_extractor import PlainTextExtractor
from presales_core.providers.extraction.pptx_extractor import PptxTextExtractor
from presales_core.utils.errors import ExtractionFailure, PresalesCoreError

logger = structlog.get_logger(logger_name=__name__)


class DocumentTextExtractor(ITextExtractionProvider):
    """Dispatches extraction to a format-specific extractor."""

    def __init__(self, extractors: Sequence[ITextExtractionProvider] | None = None) -> None:
        self._extractors: list[ITextExtractionProvider] = list(
            extractors
            if extractors is not None
            else (PdfTextExtractor(), PptxTextExtractor(), PlainTextExtractor())
        )

    async def extract(self, data: bytes, content_type: str) -> str:
        extractor = self._route(content_type)
        try:
            text = await extractor.extract(data, content_type)
        except PresalesCoreError:
            raise
        except Exception as exc:
            raise ExtractionFailure(
                message=f"Extraction of {content_type} failed: {exc}",
                provider_name=extractor.get_provider_name(),
            ) from exc
        logger.info(
            "text_extracted",
            content_type=content_type,
            extractor=extractor.get_provider_name(),
            input_bytes=len(data),
            chars=len(text),
        )
        return text

    def supports(self, content_type: str) -> bool:
        return any(e.supports(content_type) for e in self._extractors)

    def get_provider_name(self) -> str:
        return "document-extractor"

    def _route(self, content_type: str) -> ITextExtractionProvider:
        for extractor in self._extractors:
            if extractor.supports(content_type or ""):
                return extractor
        raise ExtractionFailure(
            message=f"Unsupported content type: {content_type!r}",
            provider_name=self.get_provider_name(),
        )
