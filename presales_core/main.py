"""Composition root for presales-core.

Builds every provider, service and pipeline from :class:`Settings` and
wires them together by explicit constructor injection.  The shared
``httpx.AsyncClient`` used by the OpenAI SDK is created here and closed
by :func:`close_components`; nothing else holds global client state.

Typical use from a worker process::

    components = build_components(load_config())
    await initialize_components(components)
    try:
        await components["ingestion_pipeline"].index_version(request)
    finally:
        await close_components(components)
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from presales_core.config.loader import load_config
from presales_core.config.settings import Settings
from presales_core.models.search import build_index_schema
from presales_core.pipeline.case_study_pipeline import CaseStudyPipeline
from presales_core.pipeline.orchestrator import IngestionPipeline
from presales_core.pipeline.progress_tracker import IngestionProgressTracker
from presales_core.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from presales_core.providers.extraction.document_extractor import DocumentTextExtractor
from presales_core.providers.llm.openai_provider import OpenAILLMProvider
from presales_core.providers.openai_client import build_openai_client
from presales_core.providers.search_index.chromadb_provider import ChromaDBSearchIndexProvider
from presales_core.providers.storage.local_blob_store import LocalBlobStore
from presales_core.providers.storage.sqlite_rendition_store import SQLiteRenditionStore
from presales_core.providers.storage.sqlite_status_store import SQLiteDocumentStatusStore
from presales_core.providers.storage.sqlite_validation_store import SQLiteValidationResultStore
from presales_core.services.case_study.stages import (
    CaseStudyEnhancer,
    CaseStudyExtractor,
    CaseStudyValidator,
)
from presales_core.services.ingestion.chunker import TextChunker
from presales_core.services.ingestion.embedding_batcher import EmbeddingBatcher
from presales_core.services.rendition.pdf_rendition_service import PdfRenditionService
from presales_core.services.rendition.pptx_builder import RenditionBuilder
from presales_core.services.search.index_manager import SearchIndexManager
from presales_core.services.search.search_service import SearchService
from presales_core.services.summary_service import SummaryService
from presales_core.utils.concurrency import KeyedLock
from presales_core.utils.logging import configure_logging

logger = structlog.get_logger(logger_name=__name__)


def build_components(app_settings: Settings | None = None) -> dict[str, Any]:
    """Construct and wire every component.

    Parameters
    ----------
    app_settings:
        Application settings.  Loaded with :func:`load_config` when omitted.

    Returns
    -------
    dict
        Components keyed by role name, plus ``settings`` and ``http_client``.
    """
    s = app_settings or load_config()
    configure_logging(s.log_level, json_output=s.app_env == "production")
    timeout = s.collaborator_timeout_seconds

    # -- Shared resources --
    http_client = httpx.AsyncClient(timeout=timeout)
    openai_client = build_openai_client(s, http_client=http_client)

    # -- Collaborators --
    llm = OpenAILLMProvider(settings=s, client=openai_client)
    embedder = OpenAIEmbeddingProvider(settings=s, client=openai_client)
    blob_store = LocalBlobStore(
        root_dir=s.blob_root_dir,
        signing_secret=s.blob_signing_secret,
        base_url=s.blob_signed_url_base,
    )
    text_extractor = DocumentTextExtractor()
    status_store = SQLiteDocumentStatusStore(db_path=s.sqlite_db_path)
    validation_store = SQLiteValidationResultStore(db_path=s.sqlite_db_path)
    rendition_store = SQLiteRenditionStore(db_path=s.sqlite_db_path)

    # -- Search --
    index_provider = ChromaDBSearchIndexProvider(persist_directory=s.chromadb_persist_dir)
    index_manager = SearchIndexManager(
        provider=index_provider,
        schema=build_index_schema(s.search_index_name, s.embedding_dimension),
        candidate_multiplier=s.hybrid_candidate_multiplier,
    )
    search_service = SearchService(
        index_manager=index_manager,
        embedding_provider=embedder,
        llm_provider=llm,
        timeout_seconds=timeout,
    )

    # -- Ingestion --
    progress_tracker = IngestionProgressTracker()
    ingestion_pipeline = IngestionPipeline(
        blob_store=blob_store,
        text_extractor=text_extractor,
        chunker=TextChunker(max_chars=s.chunk_max_chars, overlap=s.chunk_overlap_chars),
        embedding_batcher=EmbeddingBatcher(
            embedding_provider=embedder,
            dimension=s.embedding_dimension,
            batch_size=s.embedding_batch_size,
            max_concurrency=s.embedding_max_concurrency,
            timeout_seconds=timeout,
        ),
        index_manager=index_manager,
        status_store=status_store,
        progress_tracker=progress_tracker,
        locks=KeyedLock(),
        timeout_seconds=timeout,
    )

    # -- Summaries, renditions & case studies --
    summary_service = SummaryService(
        blob_store=blob_store,
        text_extractor=text_extractor,
        llm_provider=llm,
        max_input_chars=s.summary_max_input_chars,
        max_tokens=s.summary_max_tokens,
        timeout_seconds=timeout,
    )
    pdf_rendition_service = PdfRenditionService(
        blob_store=blob_store,
        rendition_store=rendition_store,
        timeout_seconds=timeout,
    )
    case_study_pipeline = CaseStudyPipeline(
        blob_store=blob_store,
        text_extractor=text_extractor,
        extractor=CaseStudyExtractor(llm, timeout_seconds=timeout),
        validator=CaseStudyValidator(
            llm,
            acceptance_threshold=s.case_study_acceptance_threshold,
            timeout_seconds=timeout,
        ),
        enhancer=CaseStudyEnhancer(llm, timeout_seconds=timeout),
        validation_store=validation_store,
        rendition_builder=RenditionBuilder(),
        timeout_seconds=timeout,
    )

    logger.info(
        "components_built",
        app_env=s.app_env,
        llm=llm.get_provider_name(),
        embedding_model=s.openai_embedding_model,
        index=s.search_index_name,
    )
    return {
        "settings": s,
        "http_client": http_client,
        "llm": llm,
        "embedder": embedder,
        "blob_store": blob_store,
        "status_store": status_store,
        "validation_store": validation_store,
        "rendition_store": rendition_store,
        "index_manager": index_manager,
        "search_service": search_service,
        "progress_tracker": progress_tracker,
        "ingestion_pipeline": ingestion_pipeline,
        "summary_service": summary_service,
        "pdf_rendition_service": pdf_rendition_service,
        "case_study_pipeline": case_study_pipeline,
    }


async def initialize_components(components: dict[str, Any]) -> None:
    """Create the SQLite tables and converge the search index schema."""
    await components["status_store"].initialize()
    await components["validation_store"].initialize()
    await components["rendition_store"].initialize()
    await components["index_manager"].ensure_schema()
    logger.info("components_initialized")


async def close_components(components: dict[str, Any]) -> None:
    """Release the shared HTTP client."""
    http_client: httpx.AsyncClient = components["http_client"]
    await http_client.aclose()
    logger.info("components_closed")
