"""PowerPoint (.pptx) text extraction using python-pptx.

Each slide contributes the text of its text frames (grouped shapes are
walked recursively) and of its table cells, in shape order.  Slides are
joined with a ``---`` separator line so the case-study extractor can still
see slide boundaries.
"""

from __future__ import annotations

import asyncio
import io
import zipfile

import structlog
from pptx import Presentation
from pptx.enum.shapes import MSO_SHAPE_TYPE
from pptx.exc import PackageNotFoundError

from presales_core.interfaces.text_extraction_provider import ITextExtractionProvider
from presales_core.utils.errors import ExtractionFailure

logger = structlog.get_logger(logger_name=__name__)

PPTX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.presentationml.presentation"
SLIDE_SEPARATOR = "\n---\n"


class PptxTextExtractor(ITextExtractionProvider):
    """Extracts plain text from PPTX bytes."""

    async def extract(self, data: bytes, content_type: str) -> str:
        return await asyncio.to_thread(self._extract_sync, data)

    def supports(self, content_type: str) -> bool:
        return content_type.split(";", 1)[0].strip().lower() == PPTX_CONTENT_TYPE

    def get_provider_name(self) -> str:
        return "python-pptx"

    def _extract_sync(self, data: bytes) -> str:
        try:
            prs = Presentation(io.BytesIO(data))
        except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as exc:
            raise ExtractionFailure(
                message=f"Cannot open presentation: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        slides: list[str] = []
        for slide in prs.slides:
            lines: list[str] = []
            for shape in slide.shapes:
                lines.extend(_shape_text(shape))
            text = "\n".join(line for line in lines if line.strip())
            if text:
                slides.append(text)

        logger.debug("pptx_extracted", slides=len(prs.slides), text_slides=len(slides))
        return SLIDE_SEPARATOR.join(slides)


def _shape_text(shape) -> list[str]:
    if shape.shape_type == MSO_SHAPE_TYPE.GROUP:
        lines: list[str] = []
        for child in shape.shapes:
            lines.extend(_shape_text(child))
        return lines
    if shape.has_text_frame:
        return [p.text for p in shape.text_frame.paragraphs]
    if getattr(shape, "has_table", False) and shape.has_table:
        rows = []
        for row in shape.table.rows:
            cells = [cell.text.strip() for cell in row.cells]
            rows.append(" | ".join(c for c in cells if c))
        return rows
    return []
