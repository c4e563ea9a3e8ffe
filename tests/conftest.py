"""Shared pytest fixtures for the presales-core test suite."""

from __future__ import annotations

import hashlib
import io
import math
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from pptx import Presentation
from pptx.util import Inches

from presales_core.interfaces.embedding_provider import IEmbeddingProvider
from presales_core.interfaces.llm_provider import ILLMProvider
from presales_core.interfaces.search_index_provider import ISearchIndexProvider
from presales_core.models.document import DocumentFacets, DocumentVersion, IndexingRequest
from presales_core.models.search import IndexCandidate, IndexSchema, SearchRecord
from presales_core.models.template import TemplateConfig
from presales_core.providers.storage.local_blob_store import LocalBlobStore
from presales_core.services.search.filter_expression import record_values

PPTX_TYPE = "application/vnd.openxmlformats-officedocument.presentationml.presentation"

TEST_DIMENSION = 8


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class MockEmbeddingProvider(IEmbeddingProvider):
    """Deterministic hash-based embeddings; identical text gives identical vectors."""

    def __init__(self, dimension: int = TEST_DIMENSION) -> None:
        self._dimension = dimension
        self.calls: list[list[str]] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self._vector(t) for t in texts]

    async def embed_single(self, text: str) -> list[float]:
        return self._vector(text)

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return "mock-embedding"

    def is_available(self) -> bool:
        return True

    def _vector(self, text: str) -> list[float]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        raw = [digest[i % len(digest)] / 255.0 + 0.01 for i in range(self._dimension)]
        norm = math.sqrt(sum(v * v for v in raw))
        return [v / norm for v in raw]


class InMemorySearchIndexProvider(ISearchIndexProvider):
    """Dictionary-backed search index that evaluates filters in full."""

    def __init__(self) -> None:
        self.records: dict[str, SearchRecord] = {}
        self.schema: IndexSchema | None = None
        self.upsert_calls = 0
        self.delete_calls: list[list[str]] = []

    async def ensure_schema(self, schema: IndexSchema) -> None:
        self.schema = schema

    async def upsert(self, records: list[SearchRecord]) -> int:
        self.upsert_calls += 1
        for record in records:
            self.records[record.id] = record
        return len(records)

    async def get_record_ids(self, document_id: str) -> list[str]:
        return sorted(r.id for r in self.records.values() if r.document_id == document_id)

    async def delete(self, record_ids: list[str]) -> int:
        self.delete_calls.append(list(record_ids))
        for record_id in record_ids:
            self.records.pop(record_id, None)
        return len(record_ids)

    async def vector_candidates(self, query_vector, limit, filter_expression=None):
        scored = []
        for record in self._filtered(filter_expression):
            similarity = sum(a * b for a, b in zip(query_vector, record.content_vector))
            scored.append((similarity, record))
        scored.sort(key=lambda pair: (-pair[0], pair[1].id))
        return [self._candidate(r, similarity=s) for s, r in scored[:limit]]

    async def keyword_candidates(self, terms, limit, filter_expression=None):
        # Same matching as the ChromaDB adapter: case-sensitive substring
        # search over "title\ncontent" for a few casings of each term.
        variants = {v for t in terms for v in (t, t.lower(), t.capitalize(), t.upper())}
        matched = [
            r
            for r in self._filtered(filter_expression)
            if any(v in f"{r.title}\n{r.content}" for v in variants)
        ]
        return [self._candidate(r) for r in matched[:limit]]

    async def scan(self, filter_expression=None, limit=None):
        found = [self._candidate(r) for r in self._filtered(filter_expression)]
        return found if limit is None else found[:limit]

    def get_provider_name(self) -> str:
        return "in-memory"

    def _filtered(self, expr) -> list[SearchRecord]:
        records = sorted(self.records.values(), key=lambda r: r.id)
        if expr is None:
            return records
        return [
            r
            for r in records
            if expr.matches(
                record_values(
                    r.facets,
                    record_id=r.id,
                    document_id=r.document_id,
                    version_id=r.version_id,
                    chunk_ordinal=r.chunk_ordinal,
                )
            )
        ]

    @staticmethod
    def _candidate(record: SearchRecord, similarity: float | None = None) -> IndexCandidate:
        return IndexCandidate(
            id=record.id,
            document_id=record.document_id,
            version_id=record.version_id,
            chunk_ordinal=record.chunk_ordinal,
            title=record.title,
            content=record.content,
            facets=record.facets,
            vector_similarity=similarity,
        )


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_pptx(slides: list[list[str]]) -> bytes:
    """Build a PPTX whose slides each hold one textbox per given line."""
    prs = Presentation()
    for lines in slides:
        slide = prs.slides.add_slide(prs.slide_layouts[6])
        for i, line in enumerate(lines):
            box = slide.shapes.add_textbox(Inches(0.5), Inches(0.5 + i * 0.6), Inches(8), Inches(0.5))
            box.text_frame.text = line
    buffer = io.BytesIO()
    prs.save(buffer)
    return buffer.getvalue()


def make_version(
    version_id: str = "ver-001",
    document_id: str = "doc-001",
    version_number: int = 1,
    file_path: str | None = None,
    content_type: str = "text/plain",
) -> DocumentVersion:
    return DocumentVersion(
        id=version_id,
        document_id=document_id,
        version_number=version_number,
        file_path=file_path or f"documents/{document_id}/{version_id}.txt",
        content_type=content_type,
    )


def template_mapping() -> dict[str, Any]:
    """A compact four-section template in the camelCase file format."""
    return {
        "version": "2.0",
        "footerText": "Internal use only",
        "branding": {"primaryColor": "#112233", "accentColor": "#2E75B6"},
        "sections": [
            {
                "key": "title",
                "label": "Title",
                "required": True,
                "order": 1,
                "type": "text",
                "position": {"x": 0.5, "y": 0.3, "width": 10.0, "height": 0.9},
                "contentRules": {"maxCharacters": 40},
            },
            {
                "key": "challenges",
                "label": "Challenges",
                "required": True,
                "order": 2,
                "type": "bullet-list",
                "position": {"x": 0.5, "y": 1.4, "width": 6.0, "height": 3.0},
                "contentRules": {"minBullets": 2, "maxBullets": 3, "maxBulletChars": 30},
            },
            {
                "key": "technologies",
                "label": "Technologies",
                "order": 3,
                "type": "tag-list",
                "position": {"x": 7.0, "y": 1.4, "width": 5.5, "height": 1.5},
                "contentRules": {"maxItems": 3},
            },
            {
                "key": "results",
                "label": "Results",
                "order": 4,
                "type": "text",
                "position": {"x": 0.5, "y": 4.8, "width": 12.0, "height": 1.8},
            },
        ],
    }


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def mock_embedder() -> MockEmbeddingProvider:
    return MockEmbeddingProvider()


@pytest.fixture
def memory_index() -> InMemorySearchIndexProvider:
    return InMemorySearchIndexProvider()


@pytest.fixture
def mock_llm() -> MagicMock:
    """A chat provider whose ``complete`` is an AsyncMock to be programmed per test."""
    llm = MagicMock(spec=ILLMProvider)
    llm.complete = AsyncMock()
    llm.get_provider_name.return_value = "mock-llm"
    llm.is_available.return_value = True
    return llm


@pytest.fixture
def blob_store(tmp_path: Path) -> LocalBlobStore:
    return LocalBlobStore(root_dir=tmp_path / "blobs", signing_secret="test-secret")


@pytest.fixture
def sample_template() -> TemplateConfig:
    return TemplateConfig.from_mapping(template_mapping())


@pytest.fixture
def sample_facets() -> DocumentFacets:
    return DocumentFacets(
        domain="Cloud",
        industry="Banking",
        business_unit="Digital",
        sbu="EMEA",
        technologies=["Kubernetes", "Terraform"],
        customer_name="Acme Bank",
        document_type="Case Study",
    )


@pytest.fixture
def sample_version() -> DocumentVersion:
    return make_version()


@pytest.fixture
def indexing_request(sample_version: DocumentVersion, sample_facets: DocumentFacets) -> IndexingRequest:
    return IndexingRequest(version=sample_version, title="Acme Cloud Migration", facets=sample_facets)


@pytest.fixture
def sample_document_text() -> str:
    """Multi-paragraph text long enough to produce several 200-char chunks."""
    paragraphs = [
        "Acme Bank moved its core payment platform to a managed Kubernetes service. "
        "The migration was completed in four months without customer-facing downtime.",
        "The legacy estate ran on ageing virtual machines. Release cycles took six weeks "
        "and every deployment required a weekend maintenance window.",
        "Infrastructure was rebuilt with Terraform modules. Each environment is now "
        "created from code, reviewed in pull requests and promoted automatically.",
        "Observability was added from day one. Dashboards track latency, error rates "
        "and saturation for every payment service.",
        "Results: deployment frequency rose from monthly to daily, and infrastructure "
        "cost fell by thirty percent in the first year.",
    ]
    return "\n\n".join(paragraphs)
