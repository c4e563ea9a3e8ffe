"""The three AI-backed case-study stages.

Each stage builds its request, sends it to the chat collaborator under a
timeout and parses the reply.  Failures propagate unchanged; the
:class:`~presales_core.pipeline.case_study_pipeline.CaseStudyPipeline`
tags them with the stage name.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from presales_core.interfaces.llm_provider import ILLMProvider
from presales_core.models.case_study import ExtractedCaseStudyContent, ValidationResult
from presales_core.models.template import TemplateConfig
from presales_core.services.case_study.prompts import (
    ChatRequest,
    build_enhancement_request,
    build_extraction_request,
    build_validation_request,
    parse_enhancement_response,
    parse_extraction_response,
    parse_validation_response,
)
from presales_core.utils.concurrency import call_with_timeout

logger = structlog.get_logger(logger_name=__name__)


class _LLMStage:
    stage_name = ""

    def __init__(self, llm_provider: ILLMProvider, timeout_seconds: float | None = 60.0) -> None:
        self._llm = llm_provider
        self._timeout = timeout_seconds

    async def _send(self, request: ChatRequest) -> str:
        return await call_with_timeout(
            self._llm.complete(
                system_prompt=request.system_prompt,
                user_prompt=request.user_prompt,
                temperature=request.temperature,
                max_tokens=request.max_tokens,
                json_response=True,
            ),
            self._timeout,
            stage=self.stage_name,
            operation=f"{self.stage_name.lower()} request",
        )


class CaseStudyExtractor(_LLMStage):
    """Raw slide text -> :class:`ExtractedCaseStudyContent`."""

    stage_name = "EXTRACTING"

    async def extract(
        self,
        text: str,
        section_keys: Sequence[str],
        template: TemplateConfig | None = None,
    ) -> ExtractedCaseStudyContent:
        request = build_extraction_request(text, section_keys, template)
        response = await self._send(request)
        content = parse_extraction_response(
            response, section_keys, provider_name=self._llm.get_provider_name()
        )
        logger.info(
            "case_study_extracted",
            sections=len(section_keys),
            missing=content.missing_keys(),
            prompt_version=request.prompt_version,
        )
        return content


class CaseStudyValidator(_LLMStage):
    """Scores extracted content against the template's rules."""

    stage_name = "VALIDATING"

    def __init__(
        self,
        llm_provider: ILLMProvider,
        acceptance_threshold: float = 0.7,
        timeout_seconds: float | None = 60.0,
    ) -> None:
        super().__init__(llm_provider, timeout_seconds)
        self._threshold = acceptance_threshold

    @property
    def acceptance_threshold(self) -> float:
        return self._threshold

    async def validate(
        self,
        content: ExtractedCaseStudyContent,
        template: TemplateConfig,
        document_version_id: str,
    ) -> ValidationResult:
        request = build_validation_request(content, template)
        response = await self._send(request)
        result = parse_validation_response(
            response,
            document_version_id=document_version_id,
            section_keys=template.section_keys,
            acceptance_threshold=self._threshold,
            provider_name=self._llm.get_provider_name(),
        )
        logger.info(
            "case_study_validated",
            version_id=document_version_id,
            score=result.score,
            issues=len(result.issues),
            errors=result.error_count,
            accepted=result.is_valid,
            prompt_version=request.prompt_version,
        )
        return result


class CaseStudyEnhancer(_LLMStage):
    """Rewrites content section by section, keeping the key set."""

    stage_name = "ENHANCING"

    async def enhance(self, content: ExtractedCaseStudyContent) -> ExtractedCaseStudyContent:
        request = build_enhancement_request(content)
        response = await self._send(request)
        enhanced = parse_enhancement_response(
            response, content, provider_name=self._llm.get_provider_name()
        )
        logger.info(
            "case_study_enhanced",
            sections=len(enhanced.sections),
            prompt_version=request.prompt_version,
        )
        return enhanced
