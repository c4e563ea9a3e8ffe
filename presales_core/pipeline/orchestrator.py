"""Ingestion orchestrator: the indexing state machine.

:class:`IngestionPipeline` drives one document version through::

    PENDING -> EXTRACTING -> CHUNKING -> EMBEDDING -> INDEXING -> INDEXED

and any stage failure to ``FAILED``.  A document deletion runs
``PURGING -> PURGED`` instead.

Guarantees:

- At most one index-mutating run (index or purge) per document at a time,
  via a per-document :class:`~presales_core.utils.concurrency.KeyedLock`.
  Different documents run concurrently.
- Records are upserted by deterministic id *before* orphans (earlier
  versions, surplus ordinals) are deleted, so a failed or cancelled run
  never leaves fewer committed chunks than before it started.
- Every collaborator call runs under the configured timeout.
- The status store only ever records successfully completed stages, so a
  failed run leaves the document at its last good stage.  A retry always
  starts from the beginning and is safe to do so.

Each :class:`IngestionState` is frozen; stages advance it with
``model_copy(update={...})`` and publish it to the progress tracker.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from presales_core.interfaces.blob_store import IBlobStore
from presales_core.interfaces.document_status_store import IDocumentStatusStore
from presales_core.interfaces.text_extraction_provider import ITextExtractionProvider
from presales_core.models.document import ExtractedText, IndexingRequest
from presales_core.models.pipeline import IngestionStage, IngestionState, StageErrorRecord
from presales_core.models.search import SearchRecord
from presales_core.pipeline.progress_tracker import IngestionProgressTracker
from presales_core.services.ingestion.chunker import TextChunker
from presales_core.services.ingestion.embedding_batcher import EmbeddingBatcher
from presales_core.services.search.index_manager import SearchIndexManager
from presales_core.utils.audit import audited
from presales_core.utils.concurrency import KeyedLock, call_with_timeout
from presales_core.utils.errors import EmbeddingFailure, PipelineStageError

logger = structlog.get_logger(logger_name=__name__)

_PROGRESS: dict[IngestionStage, float] = {
    IngestionStage.PENDING: 0.0,
    IngestionStage.EXTRACTING: 10.0,
    IngestionStage.CHUNKING: 30.0,
    IngestionStage.EMBEDDING: 45.0,
    IngestionStage.INDEXING: 80.0,
    IngestionStage.INDEXED: 100.0,
    IngestionStage.PURGING: 50.0,
    IngestionStage.PURGED: 100.0,
}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


class IngestionPipeline:
    """Indexes document versions and purges deleted documents."""

    def __init__(
        self,
        blob_store: IBlobStore,
        text_extractor: ITextExtractionProvider,
        chunker: TextChunker,
        embedding_batcher: EmbeddingBatcher,
        index_manager: SearchIndexManager,
        status_store: IDocumentStatusStore,
        progress_tracker: IngestionProgressTracker | None = None,
        locks: KeyedLock | None = None,
        timeout_seconds: float | None = 60.0,
    ) -> None:
        self._blobs = blob_store
        self._extractor = text_extractor
        self._chunker = chunker
        self._batcher = embedding_batcher
        self._index = index_manager
        self._status = status_store
        self._tracker = progress_tracker or IngestionProgressTracker()
        self._locks = locks or KeyedLock()
        self._timeout = timeout_seconds
        self._states: dict[str, IngestionState] = {}
        self._purge_states: dict[str, IngestionState] = {}

    @property
    def progress_tracker(self) -> IngestionProgressTracker:
        return self._tracker

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    @audited("INDEX", "DOCUMENT_VERSION", resource_arg="request", resource_attr="version.id")
    async def index_version(self, request: IndexingRequest) -> IngestionState:
        """Index one document version, replacing the document's previous records.

        Raises
        ------
        PipelineStageError
            Naming the failed stage, with the underlying error as ``cause``.
        """
        version = request.version
        log = logger.bind(document_id=version.document_id, version_id=version.id)

        async with self._locks.acquire(version.document_id):
            state = IngestionState(document_id=version.document_id, version_id=version.id)
            await self._publish(state, "Queued for indexing")
            log.info("ingestion_started", content_type=version.content_type)

            # --- Extraction ---
            state = await self._enter(state, IngestionStage.EXTRACTING)
            try:
                data = await call_with_timeout(
                    self._blobs.get(version.file_path),
                    self._timeout,
                    stage=IngestionStage.EXTRACTING.value,
                    operation="blob download",
                )
                text = await call_with_timeout(
                    self._extractor.extract(data, version.content_type),
                    self._timeout,
                    stage=IngestionStage.EXTRACTING.value,
                    operation="text extraction",
                )
                extracted = ExtractedText(version_id=version.id, text=text)
                state = await self._complete(state)
                log.info("ingestion_text_extracted", chars=len(extracted.text))
            except Exception as exc:
                await self._fail(state, exc)
                raise PipelineStageError(stage=state.stage.value, cause=exc) from exc

            # --- Chunking ---
            state = await self._enter(state, IngestionStage.CHUNKING)
            try:
                chunks = self._chunker.chunk(extracted.text, version.id)
                state = await self._complete(state, chunk_count=len(chunks))
                log.info("ingestion_chunked", chunks=len(chunks))
            except Exception as exc:
                await self._fail(state, exc)
                raise PipelineStageError(stage=state.stage.value, cause=exc) from exc

            # --- Embedding ---
            state = await self._enter(state, IngestionStage.EMBEDDING)
            try:
                vectors = await self._batcher.embed_chunks(chunks)
                if len(vectors) != len(chunks):
                    raise EmbeddingFailure(
                        message=f"{len(vectors)} vectors returned for {len(chunks)} chunks"
                    )
                state = await self._complete(state)
                log.info("ingestion_embedded", vectors=len(vectors))
            except Exception as exc:
                await self._fail(state, exc)
                raise PipelineStageError(stage=state.stage.value, cause=exc) from exc

            # --- Indexing ---
            state = await self._enter(state, IngestionStage.INDEXING)
            try:
                records = [
                    SearchRecord.from_chunk(request, chunk, vector)
                    for chunk, vector in zip(chunks, vectors)
                ]
                upserted, orphans = await call_with_timeout(
                    self._index.replace_document_records(version.document_id, records),
                    self._timeout,
                    stage=IngestionStage.INDEXING.value,
                    operation="index replace",
                )
                await self._status.set_indexed(version.document_id, True)
                state = await self._complete(
                    state, record_count=upserted, deleted_record_count=orphans
                )
                await self._status.record_stage(
                    version.document_id, version.id, IngestionStage.INDEXED
                )
            except Exception as exc:
                await self._fail(state, exc)
                raise PipelineStageError(stage=state.stage.value, cause=exc) from exc

            state = state.advance(
                IngestionStage.INDEXED,
                last_completed_stage=IngestionStage.INDEXED,
                progress_percent=_PROGRESS[IngestionStage.INDEXED],
                completed_at=_now(),
            )
            await self._publish(state, "Indexed")
            log.info(
                "ingestion_complete",
                chunks=state.chunk_count,
                records=state.record_count,
                orphans_deleted=state.deleted_record_count,
            )
            return state

    # ------------------------------------------------------------------
    # Purge
    # ------------------------------------------------------------------

    @audited("PURGE", "DOCUMENT", resource_arg="document_id")
    async def purge_document(self, document_id: str) -> IngestionState:
        """Delete every search record of *document_id*.

        Succeeds whether or not any records existed.
        """
        async with self._locks.acquire(document_id):
            state = IngestionState(
                document_id=document_id,
                stage=IngestionStage.PURGING,
                progress_percent=_PROGRESS[IngestionStage.PURGING],
            )
            self._purge_states[document_id] = state
            await self._tracker.update(state, "Purging search records")
            try:
                deleted = await call_with_timeout(
                    self._index.delete_by_document(document_id),
                    self._timeout,
                    stage=IngestionStage.PURGING.value,
                    operation="delete by document",
                )
                await self._status.set_indexed(document_id, False)
            except Exception as exc:
                failed = self._failed_state(state, exc)
                self._purge_states[document_id] = failed
                await self._tracker.update(failed, str(exc))
                logger.error("purge_failed", document_id=document_id, error=str(exc))
                raise PipelineStageError(stage=IngestionStage.PURGING.value, cause=exc) from exc

            state = state.model_copy(
                update={
                    "stage": IngestionStage.PURGED,
                    "last_completed_stage": IngestionStage.PURGING,
                    "deleted_record_count": deleted,
                    "progress_percent": _PROGRESS[IngestionStage.PURGED],
                    "completed_at": _now(),
                }
            )
            self._purge_states[document_id] = state
            await self._tracker.update(state, "Purged")
            logger.info("purge_complete", document_id=document_id, deleted=deleted)
            return state

    # ------------------------------------------------------------------
    # State queries
    # ------------------------------------------------------------------

    def get_state(self, version_id: str) -> IngestionState | None:
        """Latest run state of *version_id* in this process."""
        return self._states.get(version_id)

    def get_purge_state(self, document_id: str) -> IngestionState | None:
        return self._purge_states.get(document_id)

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    async def _enter(self, state: IngestionState, stage: IngestionStage) -> IngestionState:
        state = state.advance(stage, progress_percent=_PROGRESS[stage])
        await self._publish(state, f"{stage.value.title()}...")
        logger.info(
            "ingestion_stage_started",
            document_id=state.document_id,
            version_id=state.version_id,
            stage=stage.value,
        )
        return state

    async def _complete(self, state: IngestionState, **updates: int) -> IngestionState:
        await self._status.record_stage(state.document_id, state.version_id or "", state.stage)
        state = state.model_copy(update={"last_completed_stage": state.stage, **updates})
        self._states[state.version_id or ""] = state
        return state

    async def _fail(self, state: IngestionState, exc: Exception) -> None:
        failed = self._failed_state(state, exc)
        await self._publish(failed, str(exc))
        logger.error(
            "ingestion_stage_failed",
            document_id=state.document_id,
            version_id=state.version_id,
            stage=state.stage.value,
            last_completed_stage=(
                state.last_completed_stage.value if state.last_completed_stage else None
            ),
            error_type=type(exc).__name__,
            error=str(exc),
        )

    @staticmethod
    def _failed_state(state: IngestionState, exc: Exception) -> IngestionState:
        record = StageErrorRecord(
            stage=state.stage.value, message=str(exc), error_type=type(exc).__name__
        )
        return state.model_copy(
            update={
                "stage": IngestionStage.FAILED,
                "errors": state.errors + (record,),
                "completed_at": _now(),
            }
        )

    async def _publish(self, state: IngestionState, message: str) -> None:
        if state.version_id is not None:
            self._states[state.version_id] = state
        await self._tracker.update(state, message)
