"""Frozen pydantic v2 models shared across presales-core."""

from presales_core.models.case_study import (
    CaseStudyRunResult,
    ExtractedCaseStudyContent,
    ValidationIssue,
    ValidationResult,
    ValidationSeverity,
)
from presales_core.models.document import (
    Chunk,
    DocumentFacets,
    DocumentVersion,
    EmbeddingVector,
    ExtractedText,
    IndexingRequest,
)
from presales_core.models.pipeline import (
    CaseStudyStage,
    IngestionStage,
    IngestionState,
    StageErrorRecord,
)
from presales_core.models.rendition import (
    PdfRendition,
    PdfRenditionStatus,
    RenditionIssue,
    RenditionIssueKind,
    RenditionResult,
)
from presales_core.models.search import (
    IndexCandidate,
    IndexSchema,
    SearchHit,
    SearchRecord,
    build_index_schema,
)
from presales_core.models.template import (
    BrandingConfig,
    BrandingOverride,
    ContentRulesConfig,
    PositionConfig,
    SectionConfig,
    SectionType,
    TemplateConfig,
)

__all__ = [
    "BrandingConfig",
    "BrandingOverride",
    "CaseStudyRunResult",
    "CaseStudyStage",
    "Chunk",
    "ContentRulesConfig",
    "DocumentFacets",
    "DocumentVersion",
    "EmbeddingVector",
    "ExtractedCaseStudyContent",
    "ExtractedText",
    "IndexCandidate",
    "IndexSchema",
    "IndexingRequest",
    "IngestionStage",
    "IngestionState",
    "PdfRendition",
    "PdfRenditionStatus",
    "PositionConfig",
    "RenditionIssue",
    "RenditionIssueKind",
    "RenditionResult",
    "SearchHit",
    "SearchRecord",
    "SectionConfig",
    "SectionType",
    "StageErrorRecord",
    "TemplateConfig",
    "ValidationIssue",
    "ValidationResult",
    "ValidationSeverity",
    "build_index_schema",
]
