"""Case-study content and validation models.

:class:`ExtractedCaseStudyContent` maps every requested section key to a
string, a list of strings, or ``None`` when the section was not found.
Keys are never dropped: the key set is exactly the requested one.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Union

from pydantic import BaseModel, ConfigDict, Field

SectionValue = Union[str, tuple[str, ...], None]


class ExtractedCaseStudyContent(BaseModel):
    """Structured case-study content keyed by template section key."""

    model_config = ConfigDict(frozen=True)

    sections: dict[str, SectionValue]

    @property
    def keys(self) -> frozenset[str]:
        return frozenset(self.sections)

    def get(self, key: str) -> SectionValue:
        return self.sections.get(key)

    def missing_keys(self) -> list[str]:
        """Keys whose value is absent (``None``, empty string or empty list)."""
        return [k for k, v in self.sections.items() if is_absent(v)]

    def to_json_dict(self) -> dict[str, str | list[str] | None]:
        return {k: list(v) if isinstance(v, tuple) else v for k, v in self.sections.items()}


def is_absent(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple)):
        return not any(str(v).strip() for v in value)
    return False


class ValidationSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class ValidationIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    section: str
    severity: ValidationSeverity
    message: str


class ValidationResult(BaseModel):
    """One validation run of a version's case-study content.

    Every run is stored as a new result; the latest per version is the one
    with the most recent ``created_at``.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    document_version_id: str
    issues: tuple[ValidationIssue, ...] = Field(default_factory=tuple)
    score: float = Field(ge=0.0, le=1.0)
    acceptance_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    prompt_version: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))

    @property
    def is_valid(self) -> bool:
        return self.score >= self.acceptance_threshold

    @property
    def error_count(self) -> int:
        return sum(1 for i in self.issues if i.severity is ValidationSeverity.ERROR)


class CaseStudyRunResult(BaseModel):
    """Outcome of one case-study pipeline run."""

    model_config = ConfigDict(frozen=True)

    version_id: str
    extracted: ExtractedCaseStudyContent
    validation: ValidationResult
    enhanced: ExtractedCaseStudyContent | None = None
    rendition_path: str | None = None

    @property
    def was_enhanced(self) -> bool:
        return self.enhanced is not None

    @property
    def final_content(self) -> ExtractedCaseStudyContent:
        return self.enhanced or self.extracted
