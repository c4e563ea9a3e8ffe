"""Pipeline state models.

The ingestion pipeline is a state machine over :class:`IngestionStage`::

    PENDING -> EXTRACTING -> CHUNKING -> EMBEDDING -> INDEXING -> INDEXED
                       \\________\\__________\\__________\\-> FAILED
    (any) -> PURGING -> PURGED

:class:`IngestionState` is frozen; the pipeline advances it by producing
new copies via ``model_copy(update={...})``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class IngestionStage(str, Enum):
    """Stages of the ingestion state machine, in order."""

    PENDING = "PENDING"
    EXTRACTING = "EXTRACTING"
    CHUNKING = "CHUNKING"
    EMBEDDING = "EMBEDDING"
    INDEXING = "INDEXING"
    INDEXED = "INDEXED"
    FAILED = "FAILED"
    PURGING = "PURGING"
    PURGED = "PURGED"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STAGES


_TERMINAL_STAGES = frozenset(
    {IngestionStage.INDEXED, IngestionStage.FAILED, IngestionStage.PURGED}
)

# Allowed forward transitions of an indexing run.
INDEXING_TRANSITIONS: dict[IngestionStage, IngestionStage] = {
    IngestionStage.PENDING: IngestionStage.EXTRACTING,
    IngestionStage.EXTRACTING: IngestionStage.CHUNKING,
    IngestionStage.CHUNKING: IngestionStage.EMBEDDING,
    IngestionStage.EMBEDDING: IngestionStage.INDEXING,
    IngestionStage.INDEXING: IngestionStage.INDEXED,
}


class StageErrorRecord(BaseModel):
    """A stage failure as recorded on the run state."""

    model_config = ConfigDict(frozen=True)

    stage: str
    message: str
    error_type: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))


class IngestionState(BaseModel):
    """Snapshot of one ingestion (or purge) run."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    version_id: str | None = None
    stage: IngestionStage = IngestionStage.PENDING
    last_completed_stage: IngestionStage | None = None
    chunk_count: int = 0
    record_count: int = 0
    deleted_record_count: int = 0
    progress_percent: float = 0.0
    errors: tuple[StageErrorRecord, ...] = Field(default_factory=tuple)
    started_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))
    completed_at: datetime | None = None

    @property
    def failed(self) -> bool:
        return self.stage is IngestionStage.FAILED

    def advance(self, stage: IngestionStage, **updates: Any) -> IngestionState:
        """Copy of this state moved one step along the indexing path.

        Raises ``ValueError`` for any move not in ``INDEXING_TRANSITIONS``.
        """
        if INDEXING_TRANSITIONS.get(self.stage) is not stage:
            raise ValueError(
                f"Illegal ingestion transition {self.stage.value} -> {stage.value}"
            )
        return self.model_copy(update={"stage": stage, **updates})


class CaseStudyStage(str, Enum):
    """Stages of the case-study content pipeline."""

    LOADING = "LOADING"
    EXTRACTING = "EXTRACTING"
    VALIDATING = "VALIDATING"
    ENHANCING = "ENHANCING"
    RENDERING = "RENDERING"
