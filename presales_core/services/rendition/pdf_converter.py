"""Conversion of uploaded documents to PDF using PyMuPDF (fitz).

Supported inputs:

- **PDF** is checked to open and returned unchanged.
- **PPTX** becomes one page per slide at the deck's slide size.  Text
  frames and tables are laid out in their shape boxes (text shrinks until
  it fits), pictures are placed in theirs.  Layout fidelity stops there:
  fills, themes and charts are not drawn.
- **text/\\*** is wrapped onto A4 pages.

Anything else raises :class:`RenditionFailure`.
"""

from __future__ import annotations

import io
import textwrap
import zipfile

import fitz  # PyMuPDF
import structlog
from pptx import Presentation
from pptx.enum.shapes import MSO_SHAPE_TYPE
from pptx.exc import PackageNotFoundError
from pptx.util import Emu

from presales_core.utils.errors import RenditionFailure

logger = structlog.get_logger(logger_name=__name__)

PDF_CONTENT_TYPE = "application/pdf"
PPTX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.presentationml.presentation"

_FONT = "helv"
_DEFAULT_FONT_SIZE = 14.0
_MIN_FONT_SIZE = 5.0

# A4 portrait, in points
_PAGE_WIDTH = 595.0
_PAGE_HEIGHT = 842.0
_TEXT_MARGIN = 50.0
_TEXT_FONT_SIZE = 10.0
_TEXT_LINE_HEIGHT = 1.4
_TEXT_WRAP_COLUMNS = 95


def _base_type(content_type: str) -> str:
    return content_type.split(";", 1)[0].strip().lower()


class PdfConverter:
    """Turns document bytes into PDF bytes.  Synchronous; run it on a worker thread."""

    def supports(self, content_type: str) -> bool:
        base = _base_type(content_type)
        return base in (PDF_CONTENT_TYPE, PPTX_CONTENT_TYPE) or base.startswith("text/")

    def convert(self, data: bytes, content_type: str) -> bytes:
        base = _base_type(content_type)
        if base == PDF_CONTENT_TYPE:
            self._check_pdf(data)
            return data
        if not self.supports(base):
            raise RenditionFailure(
                message=f"Unsupported content type for PDF conversion: {content_type}",
                provider_name="pymupdf",
            )
        try:
            if base == PPTX_CONTENT_TYPE:
                return self._pptx_to_pdf(data)
            return self._text_to_pdf(data.decode("utf-8", errors="replace"))
        except RenditionFailure:
            raise
        except Exception as exc:
            raise RenditionFailure(
                message=f"PDF conversion failed: {exc}", provider_name="pymupdf"
            ) from exc

    # ------------------------------------------------------------------
    # PDF
    # ------------------------------------------------------------------

    @staticmethod
    def _check_pdf(data: bytes) -> None:
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except Exception as exc:
            raise RenditionFailure(
                message=f"Cannot open PDF: {exc}", provider_name="pymupdf"
            ) from exc
        doc.close()

    # ------------------------------------------------------------------
    # PPTX
    # ------------------------------------------------------------------

    def _pptx_to_pdf(self, data: bytes) -> bytes:
        try:
            prs = Presentation(io.BytesIO(data))
        except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as exc:
            raise RenditionFailure(
                message=f"Cannot open presentation: {exc}", provider_name="python-pptx"
            ) from exc

        width = Emu(prs.slide_width).pt
        height = Emu(prs.slide_height).pt
        doc = fitz.open()
        try:
            for slide in prs.slides:
                page = doc.new_page(width=width, height=height)
                for shape in _flatten(slide.shapes):
                    self._draw_shape(page, shape)
            if doc.page_count == 0:
                doc.new_page(width=width, height=height)
            pdf = doc.tobytes(garbage=3, deflate=True)
        finally:
            doc.close()
        logger.debug("pptx_converted_to_pdf", slides=len(prs.slides), size=len(pdf))
        return pdf

    def _draw_shape(self, page: fitz.Page, shape) -> None:
        rect = _shape_rect(shape, page.rect)
        if rect.is_empty:
            return
        if shape.shape_type == MSO_SHAPE_TYPE.PICTURE:
            try:
                page.insert_image(rect, stream=shape.image.blob, keep_proportion=True)
            except (RuntimeError, ValueError) as exc:
                logger.warning("pdf_picture_skipped", shape=shape.name, error=str(exc))
            return

        text = ""
        if shape.has_text_frame:
            text = "\n".join(p.text for p in shape.text_frame.paragraphs)
        elif getattr(shape, "has_table", False) and shape.has_table:
            text = "\n".join(
                " | ".join(cell.text.strip() for cell in row.cells) for row in shape.table.rows
            )
        if text.strip():
            _fit_text(page, rect, text, _font_size(shape))

    # ------------------------------------------------------------------
    # Plain text
    # ------------------------------------------------------------------

    @staticmethod
    def _text_to_pdf(text: str) -> bytes:
        lines: list[str] = []
        for raw in text.splitlines() or [""]:
            lines.extend(textwrap.wrap(raw, _TEXT_WRAP_COLUMNS) or [""])

        line_height = _TEXT_FONT_SIZE * _TEXT_LINE_HEIGHT
        per_page = max(1, int((_PAGE_HEIGHT - 2 * _TEXT_MARGIN) // line_height))
        doc = fitz.open()
        try:
            for start in range(0, len(lines), per_page):
                page = doc.new_page(width=_PAGE_WIDTH, height=_PAGE_HEIGHT)
                page.insert_text(
                    (_TEXT_MARGIN, _TEXT_MARGIN + _TEXT_FONT_SIZE),
                    "\n".join(lines[start : start + per_page]),
                    fontname=_FONT,
                    fontsize=_TEXT_FONT_SIZE,
                    lineheight=_TEXT_LINE_HEIGHT,
                )
            pdf = doc.tobytes(garbage=3, deflate=True)
        finally:
            doc.close()
        return pdf


def _flatten(shapes):
    for shape in shapes:
        if shape.shape_type == MSO_SHAPE_TYPE.GROUP:
            yield from _flatten(shape.shapes)
        else:
            yield shape


def _shape_rect(shape, page_rect: fitz.Rect) -> fitz.Rect:
    if None in (shape.left, shape.top, shape.width, shape.height):
        return fitz.Rect(page_rect)
    x0 = Emu(shape.left).pt
    y0 = Emu(shape.top).pt
    rect = fitz.Rect(x0, y0, x0 + Emu(shape.width).pt, y0 + Emu(shape.height).pt)
    return rect & page_rect


def _font_size(shape) -> float:
    if shape.has_text_frame:
        for paragraph in shape.text_frame.paragraphs:
            for run in paragraph.runs:
                if run.font.size is not None:
                    return run.font.size.pt
    return _DEFAULT_FONT_SIZE


def _fit_text(page: fitz.Page, rect: fitz.Rect, text: str, size: float) -> None:
    # insert_textbox writes nothing and returns < 0 when the text overflows.
    while size >= _MIN_FONT_SIZE:
        if page.insert_textbox(rect, text, fontname=_FONT, fontsize=size) >= 0:
            return
        size *= 0.85
    page.insert_textbox(
        fitz.Rect(rect.x0, rect.y0, rect.x1, page.rect.y1),
        text,
        fontname=_FONT,
        fontsize=_MIN_FONT_SIZE,
    )
