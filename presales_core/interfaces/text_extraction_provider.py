"""Abstract base class for document text extraction."""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   PdfTextExtractor, PptxTextExtractor, PlainTextExtractor and the
#   content-type routing DocumentTextExtractor
# Located in: presales_core/providers/extraction/
class ITextExtractionProvider(ABC):
    """Contract for turning an uploaded file into plain text."""

    @abstractmethod
    async def extract(self, data: bytes, content_type: str) -> str:
        """Extract plain text from *data*.

        Returns
        -------
        str
            The document text.  May be empty when the file has no text.

        Raises
        ------
        presales_core.utils.errors.ExtractionFailure
            If the format is unsupported or the file is corrupt.
        """

    @abstractmethod
    def supports(self, content_type: str) -> bool:
        """Return ``True`` if *content_type* can be extracted."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this extractor."""
