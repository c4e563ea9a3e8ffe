"""Abstract base class for blob storage.

Raw uploads, generated summaries and rendered decks all live in the blob
store, addressed by a slash-separated path such as
``renditions/<version-id>/formatted.pptx``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import timedelta


# Concrete implementations: LocalBlobStore (filesystem)
# Located in: presales_core/providers/storage/
class IBlobStore(ABC):
    """Contract for blob storage."""

    @abstractmethod
    async def get(self, path: str) -> bytes:
        """Return the bytes stored at *path*.

        Raises
        ------
        presales_core.utils.errors.StorageError
            If nothing is stored at *path* or it cannot be read.
        """

    @abstractmethod
    async def put(self, path: str, data: bytes, content_type: str) -> str:
        """Store *data* at *path* (replacing any existing blob) and return its URL."""

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Delete the blob at *path*.  Deleting a missing blob is a no-op."""

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """Return ``True`` if a blob is stored at *path*."""

    @abstractmethod
    async def signed_url(self, path: str, validity: timedelta) -> str:
        """Return a time-limited URL granting read access to *path*."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this store."""
