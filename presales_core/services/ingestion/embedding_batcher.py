"""Batched, bounded-concurrency embedding of chunks.

Chunks are cut into batches of ``batch_size`` texts, at most
``max_concurrency`` batches are in flight at once (the rest wait on a
semaphore), and every request runs under the collaborator timeout.  The
returned vectors line up with the input chunks: vector *i* belongs to
chunk *i*.

Any batch returning the wrong number of vectors, or a vector of the wrong
dimension, fails the whole call with :class:`EmbeddingFailure`; nothing
is dropped or padded.
"""

from __future__ import annotations

import asyncio

import structlog

from presales_core.interfaces.embedding_provider import IEmbeddingProvider
from presales_core.models.document import Chunk, EmbeddingVector
from presales_core.utils.concurrency import call_with_timeout, throttled_gather
from presales_core.utils.errors import EmbeddingFailure, PresalesCoreError

logger = structlog.get_logger(logger_name=__name__)

_STAGE = "EMBEDDING"


class EmbeddingBatcher:
    """Embeds chunk lists through an :class:`IEmbeddingProvider`.

    Parameters
    ----------
    embedding_provider:
        The embedding collaborator.
    dimension:
        Pipeline-wide vector dimension every vector must have.
    batch_size:
        Texts per embedding request.
    max_concurrency:
        Maximum embedding requests in flight at once.
    timeout_seconds:
        Per-request timeout; ``None`` disables it.
    """

    def __init__(
        self,
        embedding_provider: IEmbeddingProvider,
        dimension: int,
        batch_size: int = 16,
        max_concurrency: int = 4,
        timeout_seconds: float | None = 60.0,
    ) -> None:
        if batch_size <= 0 or max_concurrency <= 0:
            raise ValueError("batch_size and max_concurrency must be positive")
        self._provider = embedding_provider
        self._dimension = dimension
        self._batch_size = batch_size
        self._max_concurrency = max_concurrency
        self._timeout = timeout_seconds

    async def embed_chunks(self, chunks: list[Chunk]) -> list[EmbeddingVector]:
        """Return one :class:`EmbeddingVector` per chunk, in chunk order."""
        if not chunks:
            return []

        batches = [
            chunks[start : start + self._batch_size]
            for start in range(0, len(chunks), self._batch_size)
        ]
        # A fresh semaphore per call: the bound applies to this run's requests.
        semaphore = asyncio.Semaphore(self._max_concurrency)
        results = await throttled_gather(
            [self._embed_batch(index, batch) for index, batch in enumerate(batches)],
            semaphore=semaphore,
        )

        vectors: list[EmbeddingVector] = []
        for batch_vectors in results:
            vectors.extend(batch_vectors)  # type: ignore[arg-type]

        logger.info(
            "embedding_complete",
            provider=self._provider.get_provider_name(),
            chunks=len(chunks),
            batches=len(batches),
            dimension=self._dimension,
        )
        return vectors

    async def _embed_batch(self, batch_index: int, batch: list[Chunk]) -> list[EmbeddingVector]:
        provider_name = self._provider.get_provider_name()
        try:
            raw = await call_with_timeout(
                self._provider.embed([c.text for c in batch]),
                self._timeout,
                stage=_STAGE,
                operation=f"embedding batch {batch_index}",
            )
        except PresalesCoreError:
            raise
        except Exception as exc:
            raise EmbeddingFailure(
                message=f"Embedding batch {batch_index} failed: {exc}",
                provider_name=provider_name,
            ) from exc

        if len(raw) != len(batch):
            raise EmbeddingFailure(
                message=(
                    f"Embedding batch {batch_index} returned {len(raw)} vectors "
                    f"for {len(batch)} chunks"
                ),
                provider_name=provider_name,
            )

        vectors: list[EmbeddingVector] = []
        for chunk, values in zip(batch, raw):
            if len(values) != self._dimension:
                raise EmbeddingFailure(
                    message=(
                        f"Chunk {chunk.ordinal} embedded to {len(values)} dimensions, "
                        f"expected {self._dimension}"
                    ),
                    provider_name=provider_name,
                )
            vectors.append(
                EmbeddingVector(
                    version_id=chunk.version_id,
                    chunk_ordinal=chunk.ordinal,
                    values=tuple(float(v) for v in values),
                )
            )

        logger.debug(
            "embedding_batch_complete",
            batch_index=batch_index,
            batch_size=len(batch),
        )
        return vectors
