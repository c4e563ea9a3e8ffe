"""Storage interface for the externally visible indexing status.

The document entities themselves are owned elsewhere; this store only
keeps what the ingestion pipeline reports back: the last stage each
version completed successfully and whether the document is indexed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from presales_core.models.pipeline import IngestionStage


# Concrete implementations: SQLiteDocumentStatusStore
# Located in: presales_core/providers/storage/
class IDocumentStatusStore(ABC):
    """Per-document / per-version indexing status."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create the backing tables if they do not exist."""

    @abstractmethod
    async def record_stage(
        self, document_id: str, version_id: str, stage: IngestionStage
    ) -> None:
        """Record *stage* as the last successfully completed stage of the version."""

    @abstractmethod
    async def get_last_completed_stage(self, version_id: str) -> IngestionStage | None:
        """Return the last successfully completed stage of the version."""

    @abstractmethod
    async def set_indexed(self, document_id: str, indexed: bool) -> None:
        """Set the document's indexed flag."""

    @abstractmethod
    async def is_indexed(self, document_id: str) -> bool:
        """Return the document's indexed flag (``False`` when unknown)."""
