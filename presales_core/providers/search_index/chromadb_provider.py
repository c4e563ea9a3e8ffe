"""ChromaDB search index provider adapter.

Wraps ``chromadb.PersistentClient`` to implement
:class:`ISearchIndexProvider`.  One collection holds every search record:
the record id is the Chroma id, the title line followed by the chunk text
is the Chroma document (so both are keyword-searchable), the vector is
stored pre-computed (cosine space), and identifiers plus facets live in
the metadata.  Collection calls run on a worker thread.

Chroma metadata cannot hold ``None`` or lists, so absent facets are left
out, ``technologies`` is stored ``|``-joined and ``created_date`` is
stored twice: as ISO text for display and as a POSIX timestamp
(``created_ts``) so range filters can be pushed down.
"""

from __future__ import annotations

import asyncio
import os
from datetime import datetime, timezone
from typing import Any

# Telemetry must be off before chromadb is imported: its bundled PostHog
# client breaks against newer posthog releases.
os.environ["ANONYMIZED_TELEMETRY"] = "False"

import posthog

posthog.disabled = True

import chromadb
import structlog

from presales_core.interfaces.search_index_provider import ISearchIndexProvider
from presales_core.models.document import DocumentFacets
from presales_core.models.search import IndexCandidate, IndexSchema, SearchRecord
from presales_core.services.search.filter_expression import (
    And,
    Comparison,
    FilterExpression,
    Or,
    record_values,
)
from presales_core.utils.errors import (
    IndexSchemaFailure,
    IndexWriteFailure,
    PresalesCoreError,
    SearchQueryFailure,
)

logger = structlog.get_logger(logger_name=__name__)

_TECH_SEPARATOR = "|"
_UPSERT_BATCH_SIZE = 500
_PAGE_SIZE = 5000

# Scalar metadata keys filters may be pushed down onto.
_STRING_KEYS = frozenset(
    {
        "document_id",
        "version_id",
        "domain",
        "industry",
        "business_unit",
        "sbu",
        "customer_name",
        "document_type",
    }
)
_NUMERIC_KEYS = {"chunk_ordinal": "chunk_ordinal", "created_date": "created_ts"}


class _NoopEmbeddingFunction(chromadb.EmbeddingFunction[list[str]]):
    """Keeps ChromaDB from loading its default ONNX model.

    Every vector is computed by our embedding provider and passed in
    explicitly, so this is never called.
    """

    def __call__(self, input: list[str]) -> list[list[float]]:
        raise NotImplementedError("presales-core stores pre-computed embeddings only")

    def name(self) -> str:
        return "noop_precomputed"


class ChromaDBSearchIndexProvider(ISearchIndexProvider):
    """Search index backed by a local persistent ChromaDB collection."""

    def __init__(
        self,
        persist_directory: str = "./data/chromadb",
        client: Any | None = None,
    ) -> None:
        self._persist_directory = persist_directory
        self._client = client or chromadb.PersistentClient(
            path=persist_directory,
            settings=chromadb.config.Settings(anonymized_telemetry=False),
        )
        self._collection: Any | None = None
        self._schema: IndexSchema | None = None

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    async def ensure_schema(self, schema: IndexSchema) -> None:
        """Open or create the collection and verify it matches *schema*.

        Chroma is schemaless for metadata, so only the distance metric and
        the vector dimension can conflict with an existing collection.
        """
        metadata = {
            "hnsw:space": schema.distance_metric,
            "vector_dimensions": schema.vector_dimensions,
            "vector_profile": schema.vector_profile,
            "schema_fingerprint": schema.fingerprint(),
        }
        try:
            collection, existed = await asyncio.to_thread(
                self._open_or_create, schema.name, metadata
            )
        except Exception as exc:
            raise IndexSchemaFailure(
                message=f"Cannot open index {schema.name!r}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        if existed:
            await asyncio.to_thread(self._verify_existing, collection, schema)

        self._collection = collection
        self._schema = schema
        logger.info(
            "search_index_schema_ready",
            index=schema.name,
            created=not existed,
            vector_dimensions=schema.vector_dimensions,
        )

    def _open_or_create(self, name: str, metadata: dict[str, Any]) -> tuple[Any, bool]:
        if name in self._collection_names():
            return self._open_collection(name), True
        return self._create_collection(name, metadata), False

    def _collection_names(self) -> set[str]:
        # list_collections() returns names on chromadb>=0.6, objects before
        return {
            c if isinstance(c, str) else c.name for c in self._client.list_collections()
        }

    def _open_collection(self, name: str) -> Any:
        try:
            return self._client.get_collection(
                name=name, embedding_function=_NoopEmbeddingFunction()
            )
        except ValueError:
            # Collection persisted with a different embedding function config.
            return self._client.get_collection(name=name)

    def _create_collection(self, name: str, metadata: dict[str, Any]) -> Any:
        return self._client.get_or_create_collection(
            name=name,
            metadata=metadata,
            embedding_function=_NoopEmbeddingFunction(),
        )

    def _verify_existing(self, collection: Any, schema: IndexSchema) -> None:
        stored = collection.metadata or {}
        stored_space = stored.get("hnsw:space", "l2")
        if stored_space != schema.distance_metric:
            raise IndexSchemaFailure(
                message=(
                    f"Index {schema.name!r} uses {stored_space} distance, "
                    f"expected {schema.distance_metric}"
                ),
                provider_name=self.get_provider_name(),
            )

        stored_dim = stored.get("vector_dimensions")
        if stored_dim is None and collection.count() > 0:
            sample = collection.peek(limit=1)
            embeddings = sample.get("embeddings") if sample else None
            if embeddings is not None and len(embeddings) > 0:
                stored_dim = len(embeddings[0])

        if stored_dim is not None and int(stored_dim) != schema.vector_dimensions:
            logger.error(
                "search_index_dimension_mismatch",
                index=schema.name,
                stored_dim=stored_dim,
                expected_dim=schema.vector_dimensions,
            )
            raise IndexSchemaFailure(
                message=(
                    f"Index {schema.name!r} holds {stored_dim}-dim vectors, "
                    f"schema requires {schema.vector_dimensions}"
                ),
                provider_name=self.get_provider_name(),
            )

    def _require_collection(self) -> Any:
        if self._collection is None:
            raise IndexSchemaFailure(
                message="Index schema not initialised; call ensure_schema() first",
                provider_name=self.get_provider_name(),
            )
        return self._collection

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert(self, records: list[SearchRecord]) -> int:
        """Upsert records by id.  Raises on the first failing batch."""
        if not records:
            return 0
        collection = self._require_collection()
        expected_dim = self._schema.vector_dimensions if self._schema else None
        for record in records:
            if expected_dim is not None and len(record.content_vector) != expected_dim:
                raise IndexWriteFailure(
                    message=(
                        f"Record {record.id} has a {len(record.content_vector)}-dim vector, "
                        f"index requires {expected_dim}"
                    ),
                    provider_name=self.get_provider_name(),
                )

        try:
            await asyncio.to_thread(self._upsert_sync, collection, records)
        except Exception as exc:
            raise IndexWriteFailure(
                message=f"ChromaDB upsert failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        logger.info(
            "chromadb_upsert",
            count=len(records),
            batches=(len(records) + _UPSERT_BATCH_SIZE - 1) // _UPSERT_BATCH_SIZE,
        )
        return len(records)

    def _upsert_sync(self, collection: Any, records: list[SearchRecord]) -> None:
        for start in range(0, len(records), _UPSERT_BATCH_SIZE):
            batch = records[start : start + _UPSERT_BATCH_SIZE]
            collection.upsert(
                ids=[r.id for r in batch],
                embeddings=[list(r.content_vector) for r in batch],
                documents=[document_text(r.title, r.content) for r in batch],
                metadatas=[self._record_to_metadata(r) for r in batch],
            )

    async def get_record_ids(self, document_id: str) -> list[str]:
        collection = self._require_collection()
        try:
            return await asyncio.to_thread(self._record_ids_sync, collection, document_id)
        except Exception as exc:
            raise IndexWriteFailure(
                message=f"ChromaDB id lookup failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    @staticmethod
    def _record_ids_sync(collection: Any, document_id: str) -> list[str]:
        ids: list[str] = []
        offset = 0
        while True:
            page = collection.get(
                where={"document_id": document_id},
                include=["metadatas"],
                limit=_PAGE_SIZE,
                offset=offset,
            )
            page_ids = page["ids"] or []
            ids.extend(page_ids)
            if len(page_ids) < _PAGE_SIZE:
                return ids
            offset += _PAGE_SIZE

    async def delete(self, record_ids: list[str]) -> int:
        if not record_ids:
            return 0
        collection = self._require_collection()
        try:
            await asyncio.to_thread(collection.delete, ids=list(record_ids))
        except Exception as exc:
            raise IndexWriteFailure(
                message=f"ChromaDB delete failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info("chromadb_delete", count=len(record_ids))
        return len(record_ids)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    #
    # When the filter cannot be pushed down in full, Chroma's limit would
    # cut the result before the remaining clauses are applied.  Reads then
    # check every candidate here and keep fetching until *limit* matching
    # records are found or the collection is exhausted.

    async def vector_candidates(
        self,
        query_vector: list[float],
        limit: int,
        filter_expression: FilterExpression | None = None,
    ) -> list[IndexCandidate]:
        if limit <= 0:
            return []
        collection = self._require_collection()
        try:
            return await asyncio.to_thread(
                self._vector_sync, collection, list(query_vector), limit, filter_expression
            )
        except PresalesCoreError:
            raise
        except Exception as exc:
            raise SearchQueryFailure(
                message=f"ChromaDB vector query failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    def _vector_sync(
        self,
        collection: Any,
        query_vector: list[float],
        limit: int,
        expr: FilterExpression | None,
    ) -> list[IndexCandidate]:
        total = collection.count()
        if total == 0:
            return []
        exact = pushdown_is_exact(expr)
        where = to_chroma_where(expr)
        n_results = min(limit, total)
        while True:
            kwargs: dict[str, Any] = {
                "query_embeddings": [query_vector],
                "n_results": n_results,
                "include": ["documents", "metadatas", "distances"],
            }
            if where:
                kwargs["where"] = where
            results = collection.query(**kwargs)

            ids = results["ids"][0] if results["ids"] else []
            documents = results["documents"][0] if results.get("documents") else [""] * len(ids)
            metadatas = results["metadatas"][0] if results.get("metadatas") else [{}] * len(ids)
            distances = results["distances"][0] if results.get("distances") else [1.0] * len(ids)
            candidates = [
                self._to_candidate(
                    record_id, doc, meta, similarity=max(0.0, min(1.0, 1.0 - float(distance)))
                )
                for record_id, doc, meta, distance in zip(ids, documents, metadatas, distances)
            ]
            if not exact:
                candidates = [c for c in candidates if candidate_matches(expr, c)]
            if exact or len(candidates) >= limit or len(ids) < n_results or n_results >= total:
                return candidates[:limit]
            n_results = min(total, n_results * 2)

    async def keyword_candidates(
        self,
        terms: list[str],
        limit: int,
        filter_expression: FilterExpression | None = None,
    ) -> list[IndexCandidate]:
        if not terms or limit <= 0:
            return []
        collection = self._require_collection()

        # $contains is case-sensitive; try the common casings of each term.
        variants: list[str] = []
        for term in terms:
            for variant in (term, term.lower(), term.capitalize(), term.upper()):
                if variant not in variants:
                    variants.append(variant)
        clauses = [{"$contains": v} for v in variants]
        where_document = clauses[0] if len(clauses) == 1 else {"$or": clauses}

        try:
            return await asyncio.to_thread(
                self._get_filtered, collection, filter_expression, limit, where_document
            )
        except Exception as exc:
            raise SearchQueryFailure(
                message=f"ChromaDB keyword query failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def scan(
        self,
        filter_expression: FilterExpression | None = None,
        limit: int | None = None,
    ) -> list[IndexCandidate]:
        collection = self._require_collection()
        try:
            return await asyncio.to_thread(
                self._get_filtered, collection, filter_expression, limit, None
            )
        except Exception as exc:
            raise SearchQueryFailure(
                message=f"ChromaDB scan failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    def _get_filtered(
        self,
        collection: Any,
        expr: FilterExpression | None,
        limit: int | None,
        where_document: dict[str, Any] | None,
    ) -> list[IndexCandidate]:
        """Page through ``collection.get`` until *limit* records pass *expr*."""
        exact = pushdown_is_exact(expr)
        where = to_chroma_where(expr)
        candidates: list[IndexCandidate] = []
        offset = 0
        while limit is None or len(candidates) < limit:
            if exact and limit is not None:
                page_size = min(_PAGE_SIZE, limit - len(candidates))
            else:
                page_size = _PAGE_SIZE
            kwargs: dict[str, Any] = {
                "include": ["documents", "metadatas"],
                "limit": page_size,
                "offset": offset,
            }
            if where:
                kwargs["where"] = where
            if where_document:
                kwargs["where_document"] = where_document
            page = collection.get(**kwargs)
            page_ids = page["ids"] or []
            for record_id, doc, meta in zip(
                page_ids, page["documents"] or [], page["metadatas"] or []
            ):
                candidate = self._to_candidate(record_id, doc, meta)
                if exact or candidate_matches(expr, candidate):
                    candidates.append(candidate)
            if len(page_ids) < page_size:
                break
            offset += page_size
        return candidates if limit is None else candidates[:limit]

    def get_provider_name(self) -> str:
        return "chromadb"

    # ------------------------------------------------------------------
    # Metadata mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _record_to_metadata(record: SearchRecord) -> dict[str, Any]:
        facets = record.facets
        meta: dict[str, Any] = {
            "document_id": record.document_id,
            "version_id": record.version_id,
            "chunk_ordinal": record.chunk_ordinal,
            "title": record.title,
        }
        for name in ("domain", "industry", "business_unit", "sbu", "customer_name", "document_type"):
            value = getattr(facets, name)
            if value is not None:
                meta[name] = value
        if facets.technologies:
            meta["technologies"] = _TECH_SEPARATOR.join(facets.technologies)
        if facets.created_date is not None:
            created = facets.created_date
            if created.tzinfo is None:
                created = created.replace(tzinfo=timezone.utc)
            meta["created_date"] = created.isoformat()
            meta["created_ts"] = created.timestamp()
        return meta

    @staticmethod
    def _to_candidate(
        record_id: str,
        document: str | None,
        meta: dict[str, Any] | None,
        similarity: float | None = None,
    ) -> IndexCandidate:
        meta = meta or {}
        technologies = meta.get("technologies") or ""
        created = meta.get("created_date")
        title = meta.get("title", "")
        facets = DocumentFacets(
            domain=meta.get("domain"),
            industry=meta.get("industry"),
            business_unit=meta.get("business_unit"),
            sbu=meta.get("sbu"),
            technologies=[t for t in technologies.split(_TECH_SEPARATOR) if t],
            customer_name=meta.get("customer_name"),
            document_type=meta.get("document_type"),
            created_date=datetime.fromisoformat(created) if created else None,
        )
        return IndexCandidate(
            id=record_id,
            document_id=meta.get("document_id", ""),
            version_id=meta.get("version_id", ""),
            chunk_ordinal=int(meta.get("chunk_ordinal", 0)),
            title=title,
            content=split_document_text(title, document or ""),
            facets=facets,
            vector_similarity=similarity,
        )


# ----------------------------------------------------------------------
# Filter push-down
# ----------------------------------------------------------------------

_NUMERIC_OPS = {"eq": "$eq", "gt": "$gt", "ge": "$gte", "lt": "$lt", "le": "$lte"}


def to_chroma_where(expr: FilterExpression | None) -> dict[str, Any] | None:
    """Translate the push-down-safe part of *expr* into a Chroma ``where``.

    A clause is only emitted when it can never exclude a record that the
    full expression would accept: untranslatable conjuncts of an ``and``
    are dropped (the result is looser), and an ``or`` with any
    untranslatable branch is dropped entirely.  ``not``, ``ne`` and
    collection ``any`` are never pushed down because Chroma's handling of
    missing metadata keys differs from the expression semantics.
    The search manager post-filters every candidate with the full tree.
    """
    if expr is None:
        return None
    if isinstance(expr, Comparison):
        return _comparison_where(expr)
    if isinstance(expr, And):
        parts = [p for p in (to_chroma_where(c) for c in expr.children) if p]
        if not parts:
            return None
        return parts[0] if len(parts) == 1 else {"$and": parts}
    if isinstance(expr, Or):
        parts = [to_chroma_where(c) for c in expr.children]
        if any(p is None for p in parts):
            return None
        return {"$or": parts}
    return None


def _comparison_where(expr: Comparison) -> dict[str, Any] | None:
    if expr.field in _STRING_KEYS and expr.op == "eq" and isinstance(expr.value, str):
        return {expr.field: {"$eq": expr.value}}
    if expr.field in _NUMERIC_KEYS and expr.op in _NUMERIC_OPS:
        value = expr.value
        if isinstance(value, datetime):
            value = value.timestamp()
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return {_NUMERIC_KEYS[expr.field]: {_NUMERIC_OPS[expr.op]: value}}
    return None


def pushdown_is_exact(expr: FilterExpression | None) -> bool:
    """True when :func:`to_chroma_where` expresses *expr* without loss."""
    if expr is None:
        return True
    if isinstance(expr, Comparison):
        return _comparison_where(expr) is not None
    if isinstance(expr, (And, Or)):
        return all(pushdown_is_exact(c) for c in expr.children)
    return False


def candidate_matches(expr: FilterExpression | None, candidate: IndexCandidate) -> bool:
    if expr is None:
        return True
    return expr.matches(
        record_values(
            candidate.facets,
            record_id=candidate.id,
            document_id=candidate.document_id,
            version_id=candidate.version_id,
            chunk_ordinal=candidate.chunk_ordinal,
        )
    )


# ----------------------------------------------------------------------
# Stored document text
# ----------------------------------------------------------------------


def document_text(title: str, content: str) -> str:
    """Chroma document for a record: the title line, then the chunk text.

    ``where_document`` only searches the document, so the title has to be
    part of it to be keyword-searchable.
    """
    return f"{title}\n{content}" if title else content


def split_document_text(title: str, document: str) -> str:
    """Recover the chunk text from a stored document."""
    prefix = f"{title}\n"
    if title and document.startswith(prefix):
        return document[len(prefix) :]
    return document
