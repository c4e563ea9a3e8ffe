"""Document summary generation.

Produces a short business summary of a document version and stores it in
the blob store at ``summaries/<version-id>/summary.txt``.  Input text
beyond ``max_input_chars`` is cut off and the model is told so.
"""

from __future__ import annotations

import structlog

from presales_core.interfaces.blob_store import IBlobStore
from presales_core.interfaces.llm_provider import ILLMProvider
from presales_core.interfaces.text_extraction_provider import ITextExtractionProvider
from presales_core.models.document import DocumentVersion
from presales_core.utils.concurrency import call_with_timeout
from presales_core.utils.errors import (
    ExtractionFailure,
    LLMError,
    PipelineStageError,
    PresalesCoreError,
)

logger = structlog.get_logger(logger_name=__name__)

_SYSTEM_PROMPT = (
    "You are an AI assistant that creates concise, professional summaries of "
    "business documents. Focus on key points, technologies used, client industry, "
    "challenges, solutions, and outcomes."
)

_STAGE = "SUMMARIZING"


def summary_path(version_id: str) -> str:
    return f"summaries/{version_id}/summary.txt"


def truncate_for_summary(text: str, max_chars: int) -> str:
    """Cut *text* to *max_chars*, appending a note that tells the model so."""
    if len(text) <= max_chars:
        return text
    return (
        text[:max_chars]
        + "\n\n[Note: Document was truncated due to length. Summary is based on the first "
        + f"{max_chars} characters.]"
    )


class SummaryService:
    """Generates and stores per-version document summaries."""

    def __init__(
        self,
        blob_store: IBlobStore,
        text_extractor: ITextExtractionProvider,
        llm_provider: ILLMProvider,
        max_input_chars: int = 100_000,
        max_tokens: int = 1000,
        timeout_seconds: float | None = 60.0,
    ) -> None:
        self._blobs = blob_store
        self._extractor = text_extractor
        self._llm = llm_provider
        self._max_input_chars = max_input_chars
        self._max_tokens = max_tokens
        self._timeout = timeout_seconds

    async def generate_summary(self, version: DocumentVersion, title: str = "") -> str:
        """Summarise *version* and store the result.

        Returns
        -------
        str
            The blob path the summary was written to.

        Raises
        ------
        PipelineStageError
            When extraction yields no text, the model call fails or returns
            nothing, or the summary cannot be stored.
        """
        log = logger.bind(version_id=version.id, document_id=version.document_id)
        try:
            data = await call_with_timeout(
                self._blobs.get(version.file_path), self._timeout, _STAGE, "blob download"
            )
            text = await call_with_timeout(
                self._extractor.extract(data, version.content_type),
                self._timeout,
                _STAGE,
                "text extraction",
            )
            if not text or not text.strip():
                raise ExtractionFailure(
                    message="No text could be extracted from the document", stage=_STAGE
                )

            if len(text) > self._max_input_chars:
                log.warning(
                    "summary_input_truncated", chars=len(text), limit=self._max_input_chars
                )
            prompt_text = truncate_for_summary(text, self._max_input_chars)
            label = title or version.file_path.rsplit("/", 1)[-1]

            summary = await call_with_timeout(
                self._llm.complete(
                    system_prompt=_SYSTEM_PROMPT,
                    user_prompt=f"Summarize the following document titled '{label}':\n\n{prompt_text}",
                    temperature=0.3,
                    max_tokens=self._max_tokens,
                ),
                self._timeout,
                _STAGE,
                "summary generation",
            )
            if not summary or not summary.strip():
                raise LLMError(
                    message="Summary response was empty",
                    provider_name=self._llm.get_provider_name(),
                )

            path = summary_path(version.id)
            await call_with_timeout(
                self._blobs.put(path, summary.strip().encode("utf-8"), "text/plain"),
                self._timeout,
                _STAGE,
                "summary upload",
            )
        except PresalesCoreError as exc:
            log.error("summary_generation_failed", error=str(exc))
            raise PipelineStageError(stage=_STAGE, cause=exc) from exc

        log.info("summary_generated", path=path, summary_chars=len(summary.strip()))
        return path

    async def get_summary(self, version_id: str) -> str | None:
        path = summary_path(version_id)
        if not await self._blobs.exists(path):
            return None
        return (await self._blobs.get(path)).decode("utf-8")
