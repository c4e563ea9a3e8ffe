"""Storage interface for case-study validation results."""

from __future__ import annotations

from abc import ABC, abstractmethod

from presales_core.models.case_study import ValidationResult


# Concrete implementations: SQLiteValidationResultStore
# Located in: presales_core/providers/storage/
class IValidationResultStore(ABC):
    """Append-only store of validation results, keyed by document version."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create the backing tables if they do not exist."""

    @abstractmethod
    async def save(self, result: ValidationResult) -> ValidationResult:
        """Store *result* as a new row; earlier results are never overwritten."""

    @abstractmethod
    async def get_latest(self, document_version_id: str) -> ValidationResult | None:
        """Return the most recently created result for the version, if any."""

    @abstractmethod
    async def list_for_version(self, document_version_id: str) -> list[ValidationResult]:
        """Return every result for the version, newest first."""
