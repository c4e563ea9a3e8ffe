"""Custom exception hierarchy for presales-core.

All application exceptions inherit from :class:`PresalesCoreError`, which
carries an optional ``provider_name`` (which external service failed, e.g.
"openai", "chromadb", "local-blob") and an optional ``stage`` (which
pipeline stage was running when the failure happened).

The hierarchy is organized by pipeline domain:

    PresalesCoreError  (base -- catch-all for any presales-core error)
    +-- ExtractionFailure          (blob bytes -> plain text)
    +-- ChunkingFailure            (text -> bounded chunks, e.g. empty text)
    +-- EmbeddingFailure           (count/dimension mismatch, inference error)
    +-- IndexSchemaFailure         (search index schema create/verify)
    +-- IndexWriteFailure          (upsert / delete against the index)
    +-- SearchQueryFailure         (hybrid query or malformed filter)
    +-- ContentParseFailure        (malformed / incomplete AI JSON)
    |   +-- ValidationScoreOutOfRange
    +-- TemplateRuleViolation      (required template section missing)
    +-- RenditionFailure           (slide deck could not be produced)
    +-- LLMError                   (chat inference call failed)
    +-- StorageError               (blob store / sqlite failure)
    +-- StageTimeout               (collaborator call exceeded its timeout)
    +-- ConfigurationError         (invalid settings or template config)
    +-- PipelineStageError         (a pipeline stage failed; wraps the cause)

Each stage fails fast: the pipelines never substitute default content for
a failed stage, they wrap the original exception in
:class:`PipelineStageError` and chain it with ``raise ... from exc``.
"""

from __future__ import annotations


class PresalesCoreError(Exception):
    """Base exception for all presales-core errors.

    ``__str__`` prefixes the provider name in brackets for structured log
    output, e.g. ``[openai] Embedding request failed``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
        stage: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        self._stage = stage
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    @property
    def stage(self) -> str | None:
        return self._stage

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Ingestion errors
# ---------------------------------------------------------------------------

class ExtractionFailure(PresalesCoreError):
    """Raised when text cannot be extracted (unsupported format, corrupt file)."""

    def __init__(
        self,
        message: str = "Text extraction failed",
        provider_name: str | None = None,
        stage: str | None = "EXTRACTING",
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


class ChunkingFailure(PresalesCoreError):
    """Raised when extracted text cannot be chunked (e.g. zero-length input)."""

    def __init__(
        self,
        message: str = "Text chunking failed",
        provider_name: str | None = None,
        stage: str | None = "CHUNKING",
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


class EmbeddingFailure(PresalesCoreError):
    """Raised on embedding inference errors or vector count/dimension mismatches."""

    def __init__(
        self,
        message: str = "Embedding generation failed",
        provider_name: str | None = None,
        stage: str | None = "EMBEDDING",
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


# ---------------------------------------------------------------------------
# Search index errors
# ---------------------------------------------------------------------------

class IndexSchemaFailure(PresalesCoreError):
    """Raised when the search index schema cannot be created or verified."""

    def __init__(
        self,
        message: str = "Search index schema operation failed",
        provider_name: str | None = None,
        stage: str | None = "INDEXING",
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


class IndexWriteFailure(PresalesCoreError):
    """Raised when an upsert or delete against the search index fails."""

    def __init__(
        self,
        message: str = "Search index write failed",
        provider_name: str | None = None,
        stage: str | None = "INDEXING",
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


class SearchQueryFailure(PresalesCoreError):
    """Raised when a hybrid query fails or a filter expression is malformed."""

    def __init__(
        self,
        message: str = "Search query failed",
        provider_name: str | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


# ---------------------------------------------------------------------------
# Case-study content errors
# ---------------------------------------------------------------------------

class ContentParseFailure(PresalesCoreError):
    """Raised when an AI response is not valid JSON or breaks its contract."""

    def __init__(
        self,
        message: str = "Could not parse AI response",
        provider_name: str | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


class ValidationScoreOutOfRange(ContentParseFailure):
    """Raised when a validation response reports a score outside [0.0, 1.0]."""

    def __init__(
        self,
        message: str = "Validation score is outside [0.0, 1.0]",
        provider_name: str | None = None,
        stage: str | None = "VALIDATING",
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


class TemplateRuleViolation(PresalesCoreError):
    """Raised when required template sections have no content."""

    def __init__(
        self,
        message: str = "Template rules violated",
        provider_name: str | None = None,
        stage: str | None = "RENDERING",
        missing_sections: list[str] | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)
        self._missing_sections = list(missing_sections or [])

    @property
    def missing_sections(self) -> list[str]:
        return list(self._missing_sections)


class RenditionFailure(PresalesCoreError):
    """Raised when the slide deck cannot be produced."""

    def __init__(
        self,
        message: str = "Rendition build failed",
        provider_name: str | None = None,
        stage: str | None = "RENDERING",
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


# ---------------------------------------------------------------------------
# Collaborator & infrastructure errors
# ---------------------------------------------------------------------------

class LLMError(PresalesCoreError):
    """Raised when a chat inference call fails or returns nothing."""

    def __init__(
        self,
        message: str = "LLM operation failed",
        provider_name: str | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


class StorageError(PresalesCoreError):
    """Raised when the blob store or a sqlite-backed store fails."""

    def __init__(
        self,
        message: str = "Storage operation failed",
        provider_name: str | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


class StageTimeout(PresalesCoreError):
    """Raised when a collaborator call exceeds its caller-supplied timeout."""

    def __init__(
        self,
        message: str = "Collaborator call timed out",
        provider_name: str | None = None,
        stage: str | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)
        self._timeout_seconds = timeout_seconds

    @property
    def timeout_seconds(self) -> float | None:
        return self._timeout_seconds


class ConfigurationError(PresalesCoreError):
    """Raised on invalid settings or an invalid template configuration."""

    def __init__(
        self,
        message: str = "Configuration error",
        provider_name: str | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


class PipelineStageError(PresalesCoreError):
    """Raised by the pipelines when a stage fails.

    Carries the stage name and the underlying exception so callers can
    report both without unwrapping ``__cause__`` themselves.
    """

    def __init__(
        self,
        stage: str,
        cause: BaseException,
        message: str | None = None,
    ) -> None:
        provider_name = getattr(cause, "provider_name", None)
        super().__init__(
            message=message or f"Stage {stage} failed: {type(cause).__name__}: {cause}",
            provider_name=provider_name,
            stage=stage,
        )
        self._cause = cause

    @property
    def cause(self) -> BaseException:
        return self._cause
