"""Abstract base class for text-embedding service providers.

Defines the contract for turning text into fixed-dimension vectors.
Vectors are stored on every search record and must all share the
dimension configured for the index.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   OpenAIEmbeddingProvider -- OpenAI / Azure OpenAI embeddings
# Located in: presales_core/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by the ingestion pipeline
    and by query-time search."""

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            The texts to embed, in order.

        Returns
        -------
        list[list[float]]
            One vector per input text, positionally aligned with *texts*.
            Callers treat a count or dimension mismatch as fatal.

        Raises
        ------
        presales_core.utils.errors.EmbeddingFailure
            If the embedding API call fails.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Embed a single text (e.g. a search query)."""

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the vectors this provider produces."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"openai-text-embedding-3-small"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured (credentials present)."""
