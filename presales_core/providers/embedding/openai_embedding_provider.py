"""OpenAI-compatible embedding provider adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingProvider`.
Requests for the ``text-embedding-3-*`` family pass ``dimensions`` so the
vectors always match the index's configured dimension.
"""

from __future__ import annotations

from typing import Any

import openai
import structlog

from presales_core.config.settings import Settings
from presales_core.interfaces.embedding_provider import IEmbeddingProvider
from presales_core.utils.errors import EmbeddingFailure

logger = structlog.get_logger(logger_name=__name__)

_OPENAI_BATCH_LIMIT = 2048

# Native dimensions of known embedding models.
_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}

# Models that accept a ``dimensions`` request parameter.
_SHORTENABLE_MODELS = frozenset({"text-embedding-3-small", "text-embedding-3-large"})


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an OpenAI-compatible embeddings API."""

    def __init__(self, settings: Settings, client: openai.AsyncOpenAI) -> None:
        self._settings = settings
        self._api_key = settings.openai_api_key
        self._client = client
        self._model = settings.openai_embedding_model or "text-embedding-3-small"
        self._dimension = settings.embedding_dimension
        native = _MODEL_DIMENSIONS.get(self._model)
        self._send_dimensions = self._model in _SHORTENABLE_MODELS and native != self._dimension
        self._provider_label = (
            "openai-compatible_embedding" if settings.openai_base_url else "openai_embedding"
        )

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts*, splitting into API-sized batches when needed."""
        if not texts:
            return []

        all_embeddings: list[list[float]] = []
        try:
            for start in range(0, len(texts), _OPENAI_BATCH_LIMIT):
                batch = texts[start : start + _OPENAI_BATCH_LIMIT]
                request: dict[str, Any] = {"input": batch, "model": self._model}
                if self._send_dimensions:
                    request["dimensions"] = self._dimension
                response = await self._client.embeddings.create(**request)
                # The API returns items with an explicit index; order by it.
                items = sorted(response.data, key=lambda item: item.index)
                all_embeddings.extend(item.embedding for item in items)
                logger.info(
                    "openai_embedding_batch",
                    model=self._model,
                    provider=self._provider_label,
                    batch_size=len(batch),
                    tokens=response.usage.total_tokens if response.usage else None,
                )
        except openai.APIError as exc:
            raise EmbeddingFailure(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        return all_embeddings

    async def embed_single(self, text: str) -> list[float]:
        result = await self.embed([text])
        if not result:
            raise EmbeddingFailure(
                message="Embedding API returned no vector",
                provider_name=self.get_provider_name(),
            )
        return result[0]

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        return bool(self._api_key)
