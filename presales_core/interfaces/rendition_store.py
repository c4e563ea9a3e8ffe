"""Storage interface for PDF rendition status."""

from __future__ import annotations

from abc import ABC, abstractmethod

from presales_core.models.rendition import PdfRendition


# Concrete implementations: SQLiteRenditionStore
# Located in: presales_core/providers/storage/
class IRenditionStore(ABC):
    """One PDF rendition record per document version."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create the backing tables if they do not exist."""

    @abstractmethod
    async def save(self, rendition: PdfRendition) -> PdfRendition:
        """Insert or replace the record of ``rendition.version_id``."""

    @abstractmethod
    async def get(self, version_id: str) -> PdfRendition | None:
        """Return the version's rendition record, if any."""
