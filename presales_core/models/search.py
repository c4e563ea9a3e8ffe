"""Search-index data models.

:class:`SearchRecord` is the unit stored in the index.  Its id is a pure
function of version id and chunk ordinal, so re-indexing a version
overwrites its own records and nothing else.  :class:`IndexSchema`
describes the index declaratively; providers converge on it.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from presales_core.models.document import Chunk, DocumentFacets, EmbeddingVector, IndexingRequest

# Facet names as exposed to filter expressions and facet counts.
FACET_FIELDS: tuple[str, ...] = (
    "domain",
    "industry",
    "business_unit",
    "sbu",
    "technologies",
    "customer_name",
    "document_type",
    "created_date",
)

# Facets holding several values per record.
COLLECTION_FACETS: frozenset[str] = frozenset({"technologies"})


class SearchRecord(BaseModel):
    """One indexed chunk: identifiers, text, vector and facet values."""

    model_config = ConfigDict(frozen=True)

    id: str
    document_id: str
    version_id: str
    chunk_ordinal: int = Field(ge=0)
    title: str
    content: str
    content_vector: tuple[float, ...]
    facets: DocumentFacets = Field(default_factory=DocumentFacets)

    @staticmethod
    def make_id(version_id: str, chunk_ordinal: int) -> str:
        """Deterministic record id for a version's chunk."""
        return f"{version_id}_chunk_{chunk_ordinal}"

    @classmethod
    def from_chunk(
        cls,
        request: IndexingRequest,
        chunk: Chunk,
        vector: EmbeddingVector,
    ) -> "SearchRecord":
        if vector.chunk_ordinal != chunk.ordinal:
            raise ValueError(
                f"Vector for ordinal {vector.chunk_ordinal} paired with chunk {chunk.ordinal}"
            )
        return cls(
            id=cls.make_id(request.version.id, chunk.ordinal),
            document_id=request.version.document_id,
            version_id=request.version.id,
            chunk_ordinal=chunk.ordinal,
            title=request.title,
            content=chunk.text,
            content_vector=vector.values,
            facets=request.facets,
        )


class SearchHit(BaseModel):
    """A ranked hybrid-search result."""

    model_config = ConfigDict(frozen=True)

    id: str
    document_id: str
    version_id: str
    chunk_ordinal: int
    title: str
    content: str
    score: float = Field(description="Fused rank score; higher is better.")
    keyword_score: float | None = Field(
        default=None, description="BM25 score when the keyword signal matched."
    )
    vector_similarity: float | None = Field(
        default=None, description="Cosine similarity when the vector signal matched."
    )
    facets: DocumentFacets = Field(default_factory=DocumentFacets)


# ---------------------------------------------------------------------------
# Declarative index schema
# ---------------------------------------------------------------------------
class FieldType(str, Enum):
    STRING = "string"
    STRING_COLLECTION = "string_collection"
    INT = "int"
    DATETIME = "datetime"
    VECTOR = "vector"


class IndexField(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: FieldType
    key: bool = False
    searchable: bool = False
    filterable: bool = False
    facetable: bool = False
    sortable: bool = False
    vector_dimensions: int | None = None
    vector_profile: str | None = None


class IndexSchema(BaseModel):
    """Field layout of the search index."""

    model_config = ConfigDict(frozen=True)

    name: str
    fields: tuple[IndexField, ...]
    distance_metric: str = "cosine"
    vector_profile: str = "default-vector-profile"

    @property
    def key_field(self) -> IndexField:
        return next(f for f in self.fields if f.key)

    @property
    def vector_field(self) -> IndexField:
        return next(f for f in self.fields if f.type is FieldType.VECTOR)

    @property
    def vector_dimensions(self) -> int:
        return int(self.vector_field.vector_dimensions or 0)

    @property
    def facet_fields(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields if f.facetable)

    def fingerprint(self) -> str:
        """Stable text summary of the schema, stored alongside the index."""
        parts = [
            f"{f.name}:{f.type.value}:{int(f.key)}{int(f.searchable)}{int(f.filterable)}"
            f"{int(f.facetable)}:{f.vector_dimensions or ''}"
            for f in self.fields
        ]
        return "|".join(parts)


def build_index_schema(name: str, vector_dimensions: int) -> IndexSchema:
    """The presales document index: key, ids, searchable text, facets, vector."""
    profile = "default-vector-profile"
    fields = (
        IndexField(name="id", type=FieldType.STRING, key=True, filterable=True),
        IndexField(name="document_id", type=FieldType.STRING, filterable=True),
        IndexField(name="version_id", type=FieldType.STRING, filterable=True),
        IndexField(name="chunk_ordinal", type=FieldType.INT, filterable=True, sortable=True),
        IndexField(name="title", type=FieldType.STRING, searchable=True),
        IndexField(name="content", type=FieldType.STRING, searchable=True),
        IndexField(name="domain", type=FieldType.STRING, filterable=True, facetable=True),
        IndexField(name="industry", type=FieldType.STRING, filterable=True, facetable=True),
        IndexField(name="business_unit", type=FieldType.STRING, filterable=True, facetable=True),
        IndexField(name="sbu", type=FieldType.STRING, filterable=True, facetable=True),
        IndexField(
            name="technologies",
            type=FieldType.STRING_COLLECTION,
            searchable=True,
            filterable=True,
            facetable=True,
        ),
        IndexField(name="customer_name", type=FieldType.STRING, filterable=True, facetable=True),
        IndexField(name="document_type", type=FieldType.STRING, filterable=True, facetable=True),
        IndexField(
            name="created_date",
            type=FieldType.DATETIME,
            filterable=True,
            facetable=True,
            sortable=True,
        ),
        IndexField(
            name="content_vector",
            type=FieldType.VECTOR,
            vector_dimensions=vector_dimensions,
            vector_profile=profile,
        ),
    )
    return IndexSchema(name=name, fields=fields, vector_profile=profile)


class IndexCandidate(BaseModel):
    """A stored record as returned by a backend candidate query (no vector)."""

    model_config = ConfigDict(frozen=True)

    id: str
    document_id: str
    version_id: str
    chunk_ordinal: int
    title: str
    content: str
    facets: DocumentFacets = Field(default_factory=DocumentFacets)
    vector_similarity: float | None = None
