"""Case-study content pipeline.

``run`` takes a case-study version through::

    LOADING -> EXTRACTING -> VALIDATING -> [ENHANCING] -> [RENDERING]

- **LOADING** fetches the deck from the blob store and extracts its text.
- **EXTRACTING** asks the model for content keyed by the template's
  section keys.
- **VALIDATING** asks the model to score the content against the
  template rules; every result is stored as a new row.
- **ENHANCING** runs when requested, or (by default) when the score is
  below the acceptance threshold.
- **RENDERING** builds a deck from the enhanced content when there is
  some, else the extracted content, and uploads it to
  ``renditions/<version-id>/formatted.pptx``.

Any stage failure is raised as :class:`PipelineStageError` naming the
stage; no stage output is ever replaced by a default.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

import structlog

from presales_core.interfaces.blob_store import IBlobStore
from presales_core.interfaces.text_extraction_provider import ITextExtractionProvider
from presales_core.interfaces.validation_result_store import IValidationResultStore
from presales_core.models.case_study import (
    CaseStudyRunResult,
    ExtractedCaseStudyContent,
    ValidationResult,
)
from presales_core.models.document import DocumentVersion
from presales_core.models.pipeline import CaseStudyStage
from presales_core.models.rendition import RenditionResult
from presales_core.models.template import TemplateConfig
from presales_core.services.case_study.stages import (
    CaseStudyEnhancer,
    CaseStudyExtractor,
    CaseStudyValidator,
)
from presales_core.services.rendition.pptx_builder import RenditionBuilder
from presales_core.utils.audit import audited
from presales_core.utils.concurrency import call_with_timeout
from presales_core.utils.errors import (
    ExtractionFailure,
    PipelineStageError,
    TemplateRuleViolation,
)

logger = structlog.get_logger(logger_name=__name__)

PPTX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.presentationml.presentation"


def rendition_path(version_id: str) -> str:
    return f"renditions/{version_id}/formatted.pptx"


class CaseStudyPipeline:
    """Extracts, validates, enhances and renders case-study content."""

    def __init__(
        self,
        blob_store: IBlobStore,
        text_extractor: ITextExtractionProvider,
        extractor: CaseStudyExtractor,
        validator: CaseStudyValidator,
        enhancer: CaseStudyEnhancer,
        validation_store: IValidationResultStore,
        rendition_builder: RenditionBuilder,
        timeout_seconds: float | None = 60.0,
    ) -> None:
        self._blobs = blob_store
        self._text_extractor = text_extractor
        self._extractor = extractor
        self._validator = validator
        self._enhancer = enhancer
        self._store = validation_store
        self._builder = rendition_builder
        self._timeout = timeout_seconds

    # ------------------------------------------------------------------
    # Full run
    # ------------------------------------------------------------------

    @audited("CASE_STUDY_RUN", "DOCUMENT_VERSION", resource_arg="version", resource_attr="id")
    async def run(
        self,
        version: DocumentVersion,
        template: TemplateConfig,
        enhance: bool | None = None,
        render: bool = False,
        images: Mapping[str, bytes] | None = None,
    ) -> CaseStudyRunResult:
        """Run the pipeline for one case-study version.

        Parameters
        ----------
        version:
            The uploaded case-study deck.
        template:
            Template whose section keys and rules drive every stage.
        enhance:
            ``True`` always enhances, ``False`` never does, ``None``
            enhances only when validation scores below the threshold.
        render:
            Build and upload a formatted deck.
        images:
            Image bytes for the rendition, keyed by reference.

        Raises
        ------
        PipelineStageError
            Naming the failed :class:`CaseStudyStage`.
        """
        log = logger.bind(version_id=version.id, document_id=version.document_id)
        log.info("case_study_run_started", enhance=enhance, render=render)

        stage = CaseStudyStage.LOADING
        try:
            data = await call_with_timeout(
                self._blobs.get(version.file_path), self._timeout, stage.value, "blob download"
            )
            text = await call_with_timeout(
                self._text_extractor.extract(data, version.content_type),
                self._timeout,
                stage.value,
                "text extraction",
            )
            if not text.strip():
                raise ExtractionFailure(
                    message="No text could be extracted from the case study", stage=stage.value
                )

            stage = CaseStudyStage.EXTRACTING
            extracted = await self._extractor.extract(text, template.section_keys, template)

            stage = CaseStudyStage.VALIDATING
            validation = await self._validator.validate(extracted, template, version.id)
            validation = await self._store.save(validation)

            enhanced: ExtractedCaseStudyContent | None = None
            if enhance or (enhance is None and not validation.is_valid):
                stage = CaseStudyStage.ENHANCING
                enhanced = await self._enhancer.enhance(extracted)

            path: str | None = None
            if render:
                stage = CaseStudyStage.RENDERING
                rendition = await asyncio.to_thread(
                    self._builder.build, template, enhanced or extracted, images
                )
                path = rendition_path(version.id)
                await call_with_timeout(
                    self._blobs.put(path, rendition.content, rendition.content_type),
                    self._timeout,
                    stage.value,
                    "rendition upload",
                )
                if not rendition.is_complete:
                    log.warning("case_study_rendition_incomplete", missing=rendition.missing_sections)
        except Exception as exc:
            log.error(
                "case_study_stage_failed",
                stage=stage.value,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise PipelineStageError(stage=stage.value, cause=exc) from exc

        result = CaseStudyRunResult(
            version_id=version.id,
            extracted=extracted,
            validation=validation,
            enhanced=enhanced,
            rendition_path=path,
        )
        log.info(
            "case_study_run_complete",
            score=validation.score,
            enhanced=result.was_enhanced,
            rendition_path=path,
        )
        return result

    # ------------------------------------------------------------------
    # Validation history
    # ------------------------------------------------------------------

    async def latest_validation(self, version_id: str) -> ValidationResult | None:
        return await self._store.get_latest(version_id)

    async def validation_history(self, version_id: str) -> list[ValidationResult]:
        return await self._store.list_for_version(version_id)

    # ------------------------------------------------------------------
    # Wizard path
    # ------------------------------------------------------------------

    @audited("CASE_STUDY_COMPOSE", "TEMPLATE")
    async def compose(
        self,
        content: Mapping[str, Any],
        template: TemplateConfig,
        enhance: bool = False,
        images: Mapping[str, bytes] | None = None,
    ) -> RenditionResult:
        """Render user-supplied section content, optionally enhancing it first.

        Raises
        ------
        TemplateRuleViolation
            If *content* names sections the template does not have, or a
            required section has no content.
        PipelineStageError
            If enhancement or rendering fails for any other reason.
        """
        unknown = sorted(set(content) - set(template.section_keys))
        if unknown:
            raise TemplateRuleViolation(
                message=f"Content has sections the template does not define: {', '.join(unknown)}",
                stage=CaseStudyStage.VALIDATING.value,
            )
        sections = {key: _normalise(key, content.get(key)) for key in template.section_keys}
        prepared = ExtractedCaseStudyContent(sections=sections)

        if enhance:
            try:
                prepared = await self._enhancer.enhance(prepared)
            except Exception as exc:
                logger.error("case_study_compose_enhance_failed", error=str(exc))
                raise PipelineStageError(stage=CaseStudyStage.ENHANCING.value, cause=exc) from exc

        try:
            rendition = await asyncio.to_thread(
                self._builder.build, template, prepared, images, True
            )
        except TemplateRuleViolation:
            raise
        except Exception as exc:
            logger.error("case_study_compose_render_failed", error=str(exc))
            raise PipelineStageError(stage=CaseStudyStage.RENDERING.value, cause=exc) from exc

        logger.info(
            "case_study_composed",
            sections=len(sections),
            enhanced=enhance,
            issues=len(rendition.issues),
        )
        return rendition


def _normalise(key: str, value: Any) -> str | tuple[str, ...] | None:
    """Accept text, a list of scalar items, or nothing for one section."""
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        items: list[str] = []
        for item in value:
            if item is None:
                continue
            if isinstance(item, bool) or not isinstance(item, (str, int, float)):
                raise TemplateRuleViolation(
                    message=(
                        f"Section {key!r} items must be text or numbers, "
                        f"got {type(item).__name__}"
                    ),
                    stage=CaseStudyStage.VALIDATING.value,
                )
            items.append(str(item))
        return tuple(items)
    raise TemplateRuleViolation(
        message=f"Section {key!r} must be text or a list, got {type(value).__name__}",
        stage=CaseStudyStage.VALIDATING.value,
    )
