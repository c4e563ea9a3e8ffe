"""Unit tests for ChromaDBSearchIndexProvider against a real on-disk ChromaDB.

Each test gets its own ``tmp_path`` persist directory.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest
import pytest_asyncio

from presales_core.models.document import DocumentFacets
from presales_core.models.search import SearchRecord, build_index_schema
from presales_core.providers.search_index.chromadb_provider import (
    ChromaDBSearchIndexProvider,
    pushdown_is_exact,
    to_chroma_where,
)
from presales_core.services.search.filter_expression import parse_filter
from presales_core.utils.errors import IndexSchemaFailure, IndexWriteFailure

DIM = 8


def _vec(slot: int) -> tuple[float, ...]:
    return tuple(1.0 if i == slot % DIM else 0.05 for i in range(DIM))


def _record(
    document_id: str,
    version_id: str,
    ordinal: int,
    content: str,
    slot: int,
    **facets,
) -> SearchRecord:
    return SearchRecord(
        id=SearchRecord.make_id(version_id, ordinal),
        document_id=document_id,
        version_id=version_id,
        chunk_ordinal=ordinal,
        title=f"{document_id} title",
        content=content,
        content_vector=_vec(slot),
        facets=DocumentFacets(**facets),
    )


def _sample_records() -> list[SearchRecord]:
    banking = {
        "industry": "Banking",
        "domain": "Cloud",
        "technologies": ["Kubernetes", "Terraform"],
        "created_date": datetime(2024, 3, 1, tzinfo=timezone.utc),
    }
    return [
        _record("doc-1", "ver-1", 0, "Payment platform moved to Kubernetes", 0, **banking),
        _record("doc-1", "ver-1", 1, "Terraform modules for every environment", 1, **banking),
        _record("doc-1", "ver-1", 2, "Costs fell by thirty percent", 2, **banking),
        _record(
            "doc-2",
            "ver-9",
            0,
            "Retail analytics on a data lake",
            3,
            industry="Retail",
            domain="Data",
            created_date=datetime(2022, 5, 1, tzinfo=timezone.utc),
        ),
    ]


@pytest_asyncio.fixture
async def provider(tmp_path: Path) -> ChromaDBSearchIndexProvider:
    prov = ChromaDBSearchIndexProvider(persist_directory=str(tmp_path / "chroma"))
    await prov.ensure_schema(build_index_schema("test-index", DIM))
    return prov


class TestSchema:
    @pytest.mark.asyncio
    async def test_ensure_schema_is_idempotent(self, provider: ChromaDBSearchIndexProvider) -> None:
        await provider.ensure_schema(build_index_schema("test-index", DIM))
        await provider.upsert(_sample_records()[:1])

        assert await provider.get_record_ids("doc-1") == ["ver-1_chunk_0"]

    @pytest.mark.asyncio
    async def test_dimension_mismatch_is_rejected(self, tmp_path: Path) -> None:
        path = str(tmp_path / "chroma")
        first = ChromaDBSearchIndexProvider(persist_directory=path)
        await first.ensure_schema(build_index_schema("test-index", DIM))

        second = ChromaDBSearchIndexProvider(persist_directory=path)
        with pytest.raises(IndexSchemaFailure, match="8-dim"):
            await second.ensure_schema(build_index_schema("test-index", 16))

    @pytest.mark.asyncio
    async def test_writes_require_schema(self, tmp_path: Path) -> None:
        prov = ChromaDBSearchIndexProvider(persist_directory=str(tmp_path / "chroma"))

        with pytest.raises(IndexSchemaFailure):
            await prov.upsert(_sample_records()[:1])


class TestWrites:
    @pytest.mark.asyncio
    async def test_upsert_replaces_by_id(self, provider: ChromaDBSearchIndexProvider) -> None:
        records = _sample_records()
        await provider.upsert(records)
        replacement = records[0].model_copy(update={"content": "Rewritten chunk"})

        await provider.upsert([replacement])

        scanned = {c.id: c for c in await provider.scan()}
        assert len(scanned) == 4
        assert scanned["ver-1_chunk_0"].content == "Rewritten chunk"

    @pytest.mark.asyncio
    async def test_wrong_vector_dimension_is_rejected(self, provider: ChromaDBSearchIndexProvider) -> None:
        bad = _sample_records()[0].model_copy(update={"content_vector": (0.1, 0.2)})

        with pytest.raises(IndexWriteFailure):
            await provider.upsert([bad])

    @pytest.mark.asyncio
    async def test_delete_by_ids(self, provider: ChromaDBSearchIndexProvider) -> None:
        await provider.upsert(_sample_records())

        deleted = await provider.delete(["ver-1_chunk_1", "ver-1_chunk_2"])

        assert deleted == 2
        assert await provider.get_record_ids("doc-1") == ["ver-1_chunk_0"]
        assert await provider.get_record_ids("doc-2") == ["ver-9_chunk_0"]


class TestReads:
    @pytest.mark.asyncio
    async def test_facets_round_trip(self, provider: ChromaDBSearchIndexProvider) -> None:
        await provider.upsert(_sample_records())

        candidate = next(c for c in await provider.scan() if c.id == "ver-1_chunk_0")

        assert candidate.facets.technologies == ("Kubernetes", "Terraform")
        assert candidate.facets.created_date == datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert candidate.facets.business_unit is None
        assert candidate.chunk_ordinal == 0

    @pytest.mark.asyncio
    async def test_vector_candidates_rank_nearest_first(self, provider: ChromaDBSearchIndexProvider) -> None:
        await provider.upsert(_sample_records())

        candidates = await provider.vector_candidates(list(_vec(1)), limit=2)

        assert candidates[0].id == "ver-1_chunk_1"
        assert candidates[0].vector_similarity == pytest.approx(1.0, abs=1e-3)

    @pytest.mark.asyncio
    async def test_vector_candidates_push_down_filter(self, provider: ChromaDBSearchIndexProvider) -> None:
        await provider.upsert(_sample_records())

        candidates = await provider.vector_candidates(
            list(_vec(0)), limit=10, filter_expression=parse_filter("industry eq 'Retail'")
        )

        assert [c.id for c in candidates] == ["ver-9_chunk_0"]

    @pytest.mark.asyncio
    async def test_keyword_candidates_ignore_case(self, provider: ChromaDBSearchIndexProvider) -> None:
        await provider.upsert(_sample_records())

        candidates = await provider.keyword_candidates(["terraform"], limit=10)

        assert [c.id for c in candidates] == ["ver-1_chunk_1"]

    @pytest.mark.asyncio
    async def test_scan_with_date_filter(self, provider: ChromaDBSearchIndexProvider) -> None:
        await provider.upsert(_sample_records())

        candidates = await provider.scan(parse_filter("created_date lt '2023-01-01T00:00:00Z'"))

        assert [c.id for c in candidates] == ["ver-9_chunk_0"]

    @pytest.mark.asyncio
    async def test_keyword_candidates_match_title(self, provider: ChromaDBSearchIndexProvider) -> None:
        record = _record("doc-3", "ver-3", 0, "Costs fell by thirty percent", 4).model_copy(
            update={"title": "Kubernetes Migration"}
        )
        await provider.upsert([record])

        candidates = await provider.keyword_candidates(["kubernetes"], limit=10)

        assert [c.id for c in candidates] == ["ver-3_chunk_0"]
        assert candidates[0].title == "Kubernetes Migration"
        assert candidates[0].content == "Costs fell by thirty percent"

    @pytest.mark.asyncio
    async def test_keyword_candidates_keep_filtered_match_beyond_limit(
        self, provider: ChromaDBSearchIndexProvider
    ) -> None:
        noise = [
            _record("doc-n", "ver-n", i, f"Kubernetes rollout wave {i}", i, technologies=["Helm"])
            for i in range(5)
        ]
        match = _record("doc-k", "ver-k", 0, "Kubernetes with Kafka streams", 5, technologies=["Kafka"])
        await provider.upsert(noise)
        await provider.upsert([match])

        candidates = await provider.keyword_candidates(
            ["kubernetes"], limit=2, filter_expression=parse_filter("technologies/any(t: t eq 'Kafka')")
        )

        assert [c.id for c in candidates] == ["ver-k_chunk_0"]

    @pytest.mark.asyncio
    async def test_vector_candidates_keep_filtered_match_beyond_limit(
        self, provider: ChromaDBSearchIndexProvider
    ) -> None:
        noise = [
            _record("doc-n", "ver-n", i, f"Rollout wave {i}", 0, technologies=["Helm"]) for i in range(5)
        ]
        match = _record("doc-k", "ver-k", 0, "Event streaming", 3, technologies=["Kafka"])
        await provider.upsert(noise + [match])

        candidates = await provider.vector_candidates(
            list(_vec(0)), limit=2, filter_expression=parse_filter("technologies/any(t: t eq 'Kafka')")
        )

        assert [c.id for c in candidates] == ["ver-k_chunk_0"]

    @pytest.mark.asyncio
    async def test_scan_limit_counts_only_matching_records(
        self, provider: ChromaDBSearchIndexProvider
    ) -> None:
        await provider.upsert(_sample_records())

        candidates = await provider.scan(parse_filter("domain ne 'Cloud'"), limit=1)

        assert [c.id for c in candidates] == ["ver-9_chunk_0"]

class TestWherePushDown:
    """Only clauses that can never exclude a matching record are pushed down."""

    def test_string_equality(self) -> None:
        assert to_chroma_where(parse_filter("industry eq 'Banking'")) == {
            "industry": {"$eq": "Banking"}
        }

    def test_datetime_range_uses_timestamp(self) -> None:
        where = to_chroma_where(parse_filter("created_date ge '2024-01-01T00:00:00Z'"))

        assert where == {
            "created_ts": {"$gte": datetime(2024, 1, 1, tzinfo=timezone.utc).timestamp()}
        }

    def test_untranslatable_conjunct_is_dropped(self) -> None:
        where = to_chroma_where(
            parse_filter("industry eq 'Banking' and technologies/any(t: t eq 'Kafka')")
        )

        assert where == {"industry": {"$eq": "Banking"}}

    def test_disjunction_with_untranslatable_branch_is_dropped(self) -> None:
        assert to_chroma_where(parse_filter("industry eq 'Banking' or domain ne 'Cloud'")) is None

    def test_negation_is_never_pushed_down(self) -> None:
        assert to_chroma_where(parse_filter("not (industry eq 'Banking')")) is None

    def test_exact_pushdown_detection(self) -> None:
        assert pushdown_is_exact(None)
        assert pushdown_is_exact(parse_filter("industry eq 'Banking' and chunk_ordinal ge 1"))
        assert not pushdown_is_exact(parse_filter("industry eq 'Banking' and domain ne 'Cloud'"))
        assert not pushdown_is_exact(parse_filter("technologies/any(t: t eq 'Kafka')"))
