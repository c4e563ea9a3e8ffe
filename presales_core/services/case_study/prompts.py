"""Request builders and response parsers for the case-study AI stages.

Each stage is one system/user message pair sent to the chat collaborator.
The builders below assemble that pair into a :class:`ChatRequest`; the
parsers turn the raw reply into typed models and reject anything that
breaks the stage's contract:

- **extract** -- the reply's key set must be a subset of the requested
  keys; keys the model left out become ``None``.
- **validate** -- every issue must name a known section and the score
  must lie in ``[0.0, 1.0]``.
- **enhance** -- the reply's key set must equal the input key set.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict

from presales_core.models.case_study import (
    ExtractedCaseStudyContent,
    SectionValue,
    ValidationIssue,
    ValidationResult,
    ValidationSeverity,
)
from presales_core.models.template import TemplateConfig
from presales_core.utils.errors import ContentParseFailure, ValidationScoreOutOfRange
from presales_core.utils.json_response import parse_json_object

# Bump when any prompt or reply contract changes; stamped on every
# request and on stored validation results.
PROMPT_VERSION = "1"

EXTRACTION_SYSTEM_PROMPT = (
    "You are an expert at analyzing case study presentations and extracting structured content. "
    "Extract the content into sections and return valid JSON with the section keys provided. "
    "For bullet list sections, return an array of strings. For text sections, return a single string. "
    "If a section is not found in the text, use null for its value."
)

VALIDATION_SYSTEM_PROMPT = (
    "You are a document quality validator for business case study presentations. "
    "Analyze the extracted content against the template rules and return a JSON object with: "
    "'issues' (array of objects with 'section', 'severity' (ERROR/WARNING), 'message'), "
    "and 'overallScore' (0.0 to 1.0 where 1.0 is perfect)."
)

ENHANCEMENT_SYSTEM_PROMPT = (
    "You are a professional B2B copywriter specializing in technology case studies. "
    "Enhance the provided case study content to be more professional, concise, and impactful. "
    "Preserve all factual information. Return the enhanced content as a JSON object with the same section keys."
)

_EXTRACT = "EXTRACTING"
_VALIDATE = "VALIDATING"
_ENHANCE = "ENHANCING"


class ChatRequest(BaseModel):
    """A fully assembled chat-inference request."""

    model_config = ConfigDict(frozen=True)

    system_prompt: str
    user_prompt: str
    temperature: float = 0.2
    max_tokens: int = 4000
    prompt_version: str = PROMPT_VERSION


# ---------------------------------------------------------------------------
# Request builders
# ---------------------------------------------------------------------------

def build_extraction_request(
    text: str,
    section_keys: Sequence[str],
    template: TemplateConfig | None = None,
) -> ChatRequest:
    """Ask for *text* split into exactly *section_keys*.

    When *template* is given, each key is annotated with its section type
    so the model knows which sections are lists.
    """
    described: list[str] = []
    for key in section_keys:
        section = template.section(key) if template is not None else None
        described.append(f"{key} ({section.type.value})" if section else key)
    user_prompt = (
        "Extract structured content from this case study text into the following sections: "
        f"{json.dumps(list(section_keys))}\n"
        f"Section types: {', '.join(described)}\n\n"
        f"Text:\n{text}"
    )
    return ChatRequest(
        system_prompt=EXTRACTION_SYSTEM_PROMPT, user_prompt=user_prompt, temperature=0.1
    )


def template_rules_json(template: TemplateConfig) -> str:
    """Serialise the template's per-section rules for the validator prompt."""
    rules = [
        {
            "key": s.key,
            "label": s.label,
            "required": s.required,
            "type": s.type.value,
            "contentRules": s.content_rules.model_dump(by_alias=True, exclude_none=True),
        }
        for s in template.ordered_sections
    ]
    return json.dumps({"version": template.version, "sections": rules}, indent=2)


def build_validation_request(
    content: ExtractedCaseStudyContent, template: TemplateConfig
) -> ChatRequest:
    user_prompt = (
        "Validate this case study content against the template rules.\n\n"
        f"Content:\n{json.dumps(content.to_json_dict(), indent=2)}\n\n"
        f"Rules:\n{template_rules_json(template)}"
    )
    return ChatRequest(
        system_prompt=VALIDATION_SYSTEM_PROMPT, user_prompt=user_prompt, temperature=0.0
    )


def build_enhancement_request(content: ExtractedCaseStudyContent) -> ChatRequest:
    user_prompt = (
        "Enhance this case study content while preserving factual accuracy:\n"
        f"{json.dumps(content.to_json_dict(), indent=2)}"
    )
    return ChatRequest(
        system_prompt=ENHANCEMENT_SYSTEM_PROMPT, user_prompt=user_prompt, temperature=0.5
    )


# ---------------------------------------------------------------------------
# Response parsers
# ---------------------------------------------------------------------------

def parse_extraction_response(
    response: str,
    section_keys: Sequence[str],
    provider_name: str | None = None,
) -> ExtractedCaseStudyContent:
    """Parse the extractor's reply into content keyed by exactly *section_keys*.

    Raises
    ------
    ContentParseFailure
        If the reply is not a JSON object, contains keys outside
        *section_keys*, or holds a value that is neither a string, a list
        of strings nor null.
    """
    data = parse_json_object(response, stage=_EXTRACT, provider_name=provider_name)
    _reject_unknown_keys(data, section_keys, _EXTRACT, provider_name)
    sections = {
        key: _coerce_value(key, data.get(key), _EXTRACT, provider_name) for key in section_keys
    }
    return ExtractedCaseStudyContent(sections=sections)


def parse_validation_response(
    response: str,
    document_version_id: str,
    section_keys: Iterable[str],
    acceptance_threshold: float = 0.7,
    provider_name: str | None = None,
) -> ValidationResult:
    """Parse the validator's reply into a :class:`ValidationResult`.

    The score is taken as given; it is range-checked, never recomputed.

    Raises
    ------
    ValidationScoreOutOfRange
        If the score is outside ``[0.0, 1.0]``.
    ContentParseFailure
        If the reply is malformed, the score is missing or not a number,
        or an issue names an unknown section or severity.
    """
    data = parse_json_object(response, stage=_VALIDATE, provider_name=provider_name)
    known = set(section_keys)

    raw_score = next(
        (data[k] for k in ("overallScore", "overall_score", "score") if k in data), None
    )
    if isinstance(raw_score, bool) or not isinstance(raw_score, (int, float)):
        raise ContentParseFailure(
            message=f"Validation score missing or not a number: {raw_score!r}",
            provider_name=provider_name,
            stage=_VALIDATE,
        )
    score = float(raw_score)
    if not 0.0 <= score <= 1.0:
        raise ValidationScoreOutOfRange(
            message=f"Validation score {score} is outside [0.0, 1.0]",
            provider_name=provider_name,
            stage=_VALIDATE,
        )

    raw_issues = data.get("issues", [])
    if raw_issues is None:
        raw_issues = []
    if not isinstance(raw_issues, list):
        raise ContentParseFailure(
            message="'issues' must be an array", provider_name=provider_name, stage=_VALIDATE
        )

    issues: list[ValidationIssue] = []
    for raw in raw_issues:
        if not isinstance(raw, dict):
            raise ContentParseFailure(
                message=f"Issue is not an object: {raw!r}",
                provider_name=provider_name,
                stage=_VALIDATE,
            )
        section = str(raw.get("section", "")).strip()
        if section not in known:
            raise ContentParseFailure(
                message=f"Issue references unknown section {section!r}",
                provider_name=provider_name,
                stage=_VALIDATE,
            )
        severity_raw = str(raw.get("severity", "")).strip().lower()
        try:
            severity = ValidationSeverity(severity_raw)
        except ValueError as exc:
            raise ContentParseFailure(
                message=f"Unknown issue severity {raw.get('severity')!r}",
                provider_name=provider_name,
                stage=_VALIDATE,
            ) from exc
        issues.append(
            ValidationIssue(section=section, severity=severity, message=str(raw.get("message", "")))
        )

    return ValidationResult(
        document_version_id=document_version_id,
        issues=tuple(issues),
        score=score,
        acceptance_threshold=acceptance_threshold,
        prompt_version=PROMPT_VERSION,
    )


def parse_enhancement_response(
    response: str,
    original: ExtractedCaseStudyContent,
    provider_name: str | None = None,
) -> ExtractedCaseStudyContent:
    """Parse the enhancer's reply; its key set must equal *original*'s.

    Raises
    ------
    ContentParseFailure
        If sections were dropped or added, or a value has the wrong shape.
    """
    data = parse_json_object(response, stage=_ENHANCE, provider_name=provider_name)
    expected = original.keys
    actual = frozenset(data)
    if actual != expected:
        dropped = sorted(expected - actual)
        added = sorted(actual - expected)
        raise ContentParseFailure(
            message=f"Enhanced content changed the section set (dropped={dropped}, added={added})",
            provider_name=provider_name,
            stage=_ENHANCE,
        )
    sections = {
        key: _coerce_value(key, data[key], _ENHANCE, provider_name) for key in original.sections
    }
    return ExtractedCaseStudyContent(sections=sections)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _reject_unknown_keys(
    data: dict[str, Any],
    section_keys: Sequence[str],
    stage: str,
    provider_name: str | None,
) -> None:
    unknown = sorted(set(data) - set(section_keys))
    if unknown:
        raise ContentParseFailure(
            message=f"Response contains unrequested sections: {unknown}",
            provider_name=provider_name,
            stage=stage,
        )


def _coerce_value(
    key: str, value: Any, stage: str, provider_name: str | None
) -> SectionValue:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, list):
        items: list[str] = []
        for item in value:
            if item is None:
                continue
            if isinstance(item, (dict, list)):
                raise ContentParseFailure(
                    message=f"Section {key!r} holds a nested structure",
                    provider_name=provider_name,
                    stage=stage,
                )
            items.append(str(item))
        return tuple(items)
    raise ContentParseFailure(
        message=f"Section {key!r} has unsupported value type {type(value).__name__}",
        provider_name=provider_name,
        stage=stage,
    )
