"""Rendition models: slide-deck builder output and PDF rendition status."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class RenditionIssueKind(str, Enum):
    MISSING_REQUIRED = "missing_required"
    TRUNCATED = "truncated"
    BELOW_MINIMUM = "below_minimum"
    IMAGE_UNAVAILABLE = "image_unavailable"


class RenditionIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    section: str
    kind: RenditionIssueKind
    message: str


class RenditionResult(BaseModel):
    """A rendered slide deck plus everything noteworthy about how it was built."""

    model_config = ConfigDict(frozen=True)

    content: bytes = Field(repr=False)
    content_type: str = (
        "application/vnd.openxmlformats-officedocument.presentationml.presentation"
    )
    issues: tuple[RenditionIssue, ...] = Field(default_factory=tuple)

    @property
    def missing_sections(self) -> list[str]:
        return [i.section for i in self.issues if i.kind is RenditionIssueKind.MISSING_REQUIRED]

    @property
    def is_complete(self) -> bool:
        return not self.missing_sections

    @property
    def truncated_sections(self) -> list[str]:
        return [i.section for i in self.issues if i.kind is RenditionIssueKind.TRUNCATED]


# ---------------------------------------------------------------------------
# PDF renditions of uploaded documents
# ---------------------------------------------------------------------------


class PdfRenditionStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class PdfRendition(BaseModel):
    """Status of the PDF rendition of one document version."""

    model_config = ConfigDict(frozen=True)

    version_id: str
    status: PdfRenditionStatus = PdfRenditionStatus.PENDING
    file_path: str | None = None
    file_size: int | None = None
    error_message: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))

    @property
    def is_complete(self) -> bool:
        return self.status is PdfRenditionStatus.COMPLETED
