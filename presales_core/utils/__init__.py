"""Utility modules for presales-core.

- **errors** -- exception hierarchy rooted at PresalesCoreError; every
  pipeline stage raises its own subclass.
- **logging** -- structlog setup: console output in development, JSON in
  production.
- **concurrency** -- bounded gather, collaborator timeouts and per-document
  locks.
- **audit** -- ``audited`` decorator for pipeline entry points.
- **json_response** -- fence-tolerant JSON object parsing for model output.
"""

from presales_core.utils.audit import audit_actor, audited
from presales_core.utils.concurrency import KeyedLock, call_with_timeout, throttled_gather
from presales_core.utils.errors import (
    ChunkingFailure,
    ConfigurationError,
    ContentParseFailure,
    EmbeddingFailure,
    ExtractionFailure,
    IndexSchemaFailure,
    IndexWriteFailure,
    LLMError,
    PipelineStageError,
    PresalesCoreError,
    RenditionFailure,
    SearchQueryFailure,
    StageTimeout,
    StorageError,
    TemplateRuleViolation,
    ValidationScoreOutOfRange,
)
from presales_core.utils.json_response import parse_json_object
from presales_core.utils.logging import configure_logging, get_logger

__all__ = [
    "ChunkingFailure",
    "ConfigurationError",
    "ContentParseFailure",
    "EmbeddingFailure",
    "ExtractionFailure",
    "IndexSchemaFailure",
    "IndexWriteFailure",
    "KeyedLock",
    "LLMError",
    "PipelineStageError",
    "PresalesCoreError",
    "RenditionFailure",
    "SearchQueryFailure",
    "StageTimeout",
    "StorageError",
    "TemplateRuleViolation",
    "ValidationScoreOutOfRange",
    "audit_actor",
    "audited",
    "call_with_timeout",
    "configure_logging",
    "get_logger",
    "parse_json_object",
    "throttled_gather",
]
