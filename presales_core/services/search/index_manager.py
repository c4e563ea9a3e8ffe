"""Search index manager: schema ownership, document-level writes, hybrid query.

Sits between the pipelines and an :class:`ISearchIndexProvider` backend.

Writes
    ``replace_document_records`` is how a re-index lands: upsert the new
    records by deterministic id first, then delete every other record of
    the document (older versions, ordinals beyond the new chunk count).
    The index therefore never holds fewer chunks than the last committed
    run unless the new run itself committed.

Hybrid query
    Vector nearest neighbours and keyword matches are fetched as two
    candidate lists (``top_k * candidate_multiplier`` each), keyword
    candidates are scored with BM25, and the two rankings are fused with
    Reciprocal Rank Fusion::

        RRF(d) = sum over lists of 1 / (k + rank_in_list)

    Every candidate is re-checked against the full filter expression
    before the result is cut to ``top_k``.
"""

from __future__ import annotations

import re
import string
from collections import Counter

import structlog
from rank_bm25 import BM25Okapi

from presales_core.interfaces.search_index_provider import ISearchIndexProvider
from presales_core.models.search import (
    COLLECTION_FACETS,
    IndexCandidate,
    IndexSchema,
    SearchHit,
    SearchRecord,
)
from presales_core.services.search.filter_expression import (
    FilterExpression,
    parse_filter,
    record_values,
)
from presales_core.utils.errors import IndexWriteFailure, SearchQueryFailure

logger = structlog.get_logger(logger_name=__name__)

RRF_K = 60

_STOPWORDS = frozenset({
    "a", "an", "the", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "is", "it", "as", "be", "was", "are",
    "that", "this", "which", "have", "has", "had", "not", "no", "can",
    "will", "would", "could", "should", "may", "do", "does", "did",
    "its", "their", "our", "your", "what", "how", "who",
})

_PUNCT_TABLE = str.maketrans("", "", string.punctuation.replace("-", ""))


def tokenize(text: str) -> list[str]:
    """Lowercase, strip punctuation (hyphens kept) and drop stopwords."""
    return [
        t for t in text.lower().translate(_PUNCT_TABLE).split() if t and t not in _STOPWORDS
    ]


def _rrf(rank: int) -> float:
    return 1.0 / (RRF_K + rank)


class SearchIndexManager:
    """Owns the index schema and every read/write against the index."""

    def __init__(
        self,
        provider: ISearchIndexProvider,
        schema: IndexSchema,
        candidate_multiplier: int = 3,
    ) -> None:
        self._provider = provider
        self._schema = schema
        self._candidate_multiplier = max(1, candidate_multiplier)
        self._schema_ready = False

    @property
    def schema(self) -> IndexSchema:
        return self._schema

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    async def ensure_schema(self) -> None:
        """Create or verify the index.  Safe to call any number of times."""
        await self._provider.ensure_schema(self._schema)
        self._schema_ready = True

    async def _ready(self) -> None:
        if not self._schema_ready:
            await self.ensure_schema()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert(self, records: list[SearchRecord]) -> int:
        """Insert or replace *records* by id; all or nothing from the caller's view."""
        await self._ready()
        ids = [r.id for r in records]
        if len(set(ids)) != len(ids):
            raise IndexWriteFailure(message="Duplicate record ids in one upsert call")
        count = await self._provider.upsert(records)
        logger.info("search_index_upsert", count=count)
        return count

    async def delete_by_document(self, document_id: str) -> int:
        """Delete every record of *document_id*; zero matches is a successful no-op."""
        await self._ready()
        ids = await self._provider.get_record_ids(document_id)
        if not ids:
            logger.info("search_index_delete_noop", document_id=document_id)
            return 0
        deleted = await self._provider.delete(ids)
        logger.info("search_index_delete_by_document", document_id=document_id, deleted=deleted)
        return deleted

    async def replace_document_records(
        self, document_id: str, records: list[SearchRecord]
    ) -> tuple[int, int]:
        """Make *records* the complete record set of *document_id*.

        Returns
        -------
        tuple[int, int]
            ``(upserted, orphans_deleted)``.
        """
        foreign = [r.id for r in records if r.document_id != document_id]
        if foreign:
            raise IndexWriteFailure(
                message=f"Records {foreign[:3]} do not belong to document {document_id}"
            )
        upserted = await self.upsert(records)
        keep = {r.id for r in records}
        existing = await self._provider.get_record_ids(document_id)
        orphans = sorted(set(existing) - keep)
        deleted = await self._provider.delete(orphans) if orphans else 0
        logger.info(
            "search_index_document_replaced",
            document_id=document_id,
            upserted=upserted,
            orphans_deleted=deleted,
        )
        return upserted, deleted

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def count_by_document(self, document_id: str) -> int:
        await self._ready()
        return len(await self._provider.get_record_ids(document_id))

    async def hybrid_search(
        self,
        query_text: str,
        query_vector: list[float],
        top_k: int,
        filter_expression: str | FilterExpression | None = None,
    ) -> list[SearchHit]:
        """Rank records by fused keyword and vector relevance.

        Parameters
        ----------
        query_text:
            Free-text query for the keyword signal.
        query_vector:
            Query embedding for the vector signal; must have the index
            dimension.
        top_k:
            Maximum number of results.
        filter_expression:
            Optional facet filter, as text or an already-parsed tree.

        Returns
        -------
        list[SearchHit]
            At most *top_k* hits, best first.  Every hit satisfies the filter.
        """
        if top_k <= 0:
            return []
        if len(query_vector) != self._schema.vector_dimensions:
            raise SearchQueryFailure(
                message=(
                    f"Query vector has {len(query_vector)} dimensions, "
                    f"index requires {self._schema.vector_dimensions}"
                )
            )
        await self._ready()

        expr = (
            parse_filter(filter_expression)
            if isinstance(filter_expression, str) or filter_expression is None
            else filter_expression
        )
        fetch_k = top_k * self._candidate_multiplier

        dense = await self._provider.vector_candidates(query_vector, fetch_k, expr)
        terms = tokenize(query_text)
        keyword_pool = (
            await self._provider.keyword_candidates(terms, fetch_k, expr) if terms else []
        )

        if expr is not None:
            dense = [c for c in dense if self._matches(expr, c)]
            keyword_pool = [c for c in keyword_pool if self._matches(expr, c)]

        keyword_ranked = self._bm25_rank(terms, keyword_pool)
        hits = self._fuse(dense, keyword_ranked)[:top_k]

        logger.info(
            "hybrid_search",
            query_length=len(query_text),
            filtered=expr is not None,
            dense=len(dense),
            keyword=len(keyword_ranked),
            returned=len(hits),
        )
        return hits

    async def facet_counts(
        self,
        field: str,
        filter_expression: str | FilterExpression | None = None,
    ) -> dict[str, int]:
        """Count records per value of a facet field, optionally filtered."""
        if field not in self._schema.facet_fields:
            raise SearchQueryFailure(message=f"{field!r} is not a facet field")
        await self._ready()
        expr = (
            parse_filter(filter_expression)
            if isinstance(filter_expression, str) or filter_expression is None
            else filter_expression
        )
        counts: Counter[str] = Counter()
        for candidate in await self._provider.scan(expr):
            if expr is not None and not self._matches(expr, candidate):
                continue
            value = getattr(candidate.facets, field)
            if value is None:
                continue
            if field in COLLECTION_FACETS:
                counts.update(set(value))
            else:
                counts[value.isoformat() if hasattr(value, "isoformat") else str(value)] += 1
        return dict(counts.most_common())

    # ------------------------------------------------------------------
    # Ranking helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _matches(expr: FilterExpression, candidate: IndexCandidate) -> bool:
        return expr.matches(
            record_values(
                candidate.facets,
                record_id=candidate.id,
                document_id=candidate.document_id,
                version_id=candidate.version_id,
                chunk_ordinal=candidate.chunk_ordinal,
            )
        )

    @staticmethod
    def _bm25_rank(
        terms: list[str], candidates: list[IndexCandidate]
    ) -> list[tuple[IndexCandidate, float]]:
        """Score keyword candidates with BM25 over title + content; best first."""
        if not terms or not candidates:
            return []
        corpus = [tokenize(f"{c.title} {c.content}") or ["<empty>"] for c in candidates]
        scores = BM25Okapi(corpus).get_scores(terms)
        ranked = [
            (candidate, float(score))
            for candidate, score in zip(candidates, scores)
            if _contains_any(terms, candidate)
        ]
        # Stable tie-break on id keeps the output deterministic.
        ranked.sort(key=lambda pair: (-pair[1], pair[0].id))
        return ranked

    @staticmethod
    def _fuse(
        dense: list[IndexCandidate],
        keyword: list[tuple[IndexCandidate, float]],
    ) -> list[SearchHit]:
        scores: dict[str, float] = {}
        by_id: dict[str, IndexCandidate] = {}
        similarity: dict[str, float | None] = {}
        keyword_scores: dict[str, float] = {}

        for rank, candidate in enumerate(dense, start=1):
            scores[candidate.id] = scores.get(candidate.id, 0.0) + _rrf(rank)
            by_id[candidate.id] = candidate
            similarity[candidate.id] = candidate.vector_similarity

        for rank, (candidate, bm25) in enumerate(keyword, start=1):
            scores[candidate.id] = scores.get(candidate.id, 0.0) + _rrf(rank)
            by_id.setdefault(candidate.id, candidate)
            keyword_scores[candidate.id] = bm25

        ordered = sorted(scores, key=lambda rid: (-scores[rid], rid))
        return [
            SearchHit(
                id=rid,
                document_id=by_id[rid].document_id,
                version_id=by_id[rid].version_id,
                chunk_ordinal=by_id[rid].chunk_ordinal,
                title=by_id[rid].title,
                content=by_id[rid].content,
                score=scores[rid],
                keyword_score=keyword_scores.get(rid),
                vector_similarity=similarity.get(rid),
                facets=by_id[rid].facets,
            )
            for rid in ordered
        ]


def _contains_any(terms: list[str], candidate: IndexCandidate) -> bool:
    haystack = set(tokenize(f"{candidate.title} {candidate.content}"))
    return any(t in haystack for t in terms) or any(
        re.search(re.escape(t), candidate.content, re.IGNORECASE) for t in terms
    )
