"""PDF renditions of uploaded document versions.

A rendition is generated once per version and stored in the blob store at
``renditions/<version-id>/document.pdf``.  Its status (PROCESSING,
COMPLETED or FAILED) lives in an :class:`IRenditionStore` so callers can
tell a missing rendition from a broken one.
"""

from __future__ import annotations

import asyncio

import structlog

from presales_core.interfaces.blob_store import IBlobStore
from presales_core.interfaces.rendition_store import IRenditionStore
from presales_core.models.document import DocumentVersion
from presales_core.models.rendition import PdfRendition, PdfRenditionStatus
from presales_core.services.rendition.pdf_converter import PDF_CONTENT_TYPE, PdfConverter
from presales_core.utils.concurrency import call_with_timeout
from presales_core.utils.errors import PipelineStageError, PresalesCoreError

logger = structlog.get_logger(logger_name=__name__)

_STAGE = "RENDERING"


def rendition_path(version_id: str) -> str:
    return f"renditions/{version_id}/document.pdf"


class PdfRenditionService:
    """Generates, stores and looks up per-version PDF renditions."""

    def __init__(
        self,
        blob_store: IBlobStore,
        rendition_store: IRenditionStore,
        converter: PdfConverter | None = None,
        timeout_seconds: float | None = 120.0,
    ) -> None:
        self._blobs = blob_store
        self._store = rendition_store
        self._converter = converter or PdfConverter()
        self._timeout = timeout_seconds

    async def generate(self, version: DocumentVersion) -> PdfRendition:
        """Produce the PDF rendition of *version*, reusing a completed one.

        Raises
        ------
        PipelineStageError
            With stage ``RENDERING`` when the download, the conversion or
            the upload fails.  The FAILED status is stored first.
        """
        log = logger.bind(version_id=version.id, document_id=version.document_id)

        existing = await self._store.get(version.id)
        if existing is not None and existing.is_complete:
            log.debug("pdf_rendition_reused", path=existing.file_path)
            return existing

        await self._store.save(
            PdfRendition(version_id=version.id, status=PdfRenditionStatus.PROCESSING)
        )
        try:
            data = await call_with_timeout(
                self._blobs.get(version.file_path), self._timeout, _STAGE, "blob download"
            )
            pdf = await call_with_timeout(
                asyncio.to_thread(self._converter.convert, data, version.content_type),
                self._timeout,
                _STAGE,
                "pdf conversion",
            )
            path = rendition_path(version.id)
            await call_with_timeout(
                self._blobs.put(path, pdf, PDF_CONTENT_TYPE),
                self._timeout,
                _STAGE,
                "rendition upload",
            )
        except PresalesCoreError as exc:
            log.error("pdf_rendition_failed", error=str(exc))
            await self._store.save(
                PdfRendition(
                    version_id=version.id,
                    status=PdfRenditionStatus.FAILED,
                    error_message=str(exc),
                )
            )
            raise PipelineStageError(stage=_STAGE, cause=exc) from exc

        rendition = await self._store.save(
            PdfRendition(
                version_id=version.id,
                status=PdfRenditionStatus.COMPLETED,
                file_path=path,
                file_size=len(pdf),
            )
        )
        log.info("pdf_rendition_generated", path=path, size=len(pdf))
        return rendition

    async def get_rendition(self, version_id: str) -> PdfRendition | None:
        return await self._store.get(version_id)

    async def get_pdf(self, version_id: str) -> bytes | None:
        """Bytes of the completed rendition, or ``None`` if there is none yet."""
        rendition = await self._store.get(version_id)
        if rendition is None or not rendition.is_complete or rendition.file_path is None:
            return None
        return await self._blobs.get(rendition.file_path)
