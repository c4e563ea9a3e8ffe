"""Document-side data models for the ingestion pipeline.

A :class:`DocumentVersion` is what the caller hands to the ingestion
pipeline.  The pipeline derives :class:`ExtractedText`, a contiguous run of
:class:`Chunk` objects and one :class:`EmbeddingVector` per chunk from it.
None of these are persisted by presales-core itself; only the
:class:`~presales_core.models.search.SearchRecord` built from them is.

All models are frozen.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


# ---------------------------------------------------------------------------
# DocumentVersion -- immutable reference to one uploaded file revision.
# ---------------------------------------------------------------------------
class DocumentVersion(BaseModel):
    """One immutable revision of an uploaded document.

    Versions are created on upload and superseded (never deleted or edited)
    by later versions of the same document.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Unique identifier of this version.")
    document_id: str = Field(description="Identifier of the owning document.")
    version_number: int = Field(ge=1, description="Monotonic version number per document.")
    file_path: str = Field(description="Blob store path of the raw file.")
    content_type: str = Field(description="MIME type of the raw file.")
    file_size: int = Field(default=0, ge=0, description="Size of the raw file in bytes.")


# ---------------------------------------------------------------------------
# DocumentFacets -- filterable/facetable fields copied onto every record.
# ---------------------------------------------------------------------------
class DocumentFacets(BaseModel):
    """Classification metadata of a document, used as search facets."""

    model_config = ConfigDict(frozen=True)

    domain: str | None = None
    industry: str | None = None
    business_unit: str | None = None
    sbu: str | None = None
    technologies: tuple[str, ...] = Field(default_factory=tuple)
    customer_name: str | None = None
    document_type: str | None = None
    created_date: datetime | None = None

    @field_validator("technologies", mode="before")
    @classmethod
    def _normalise_technologies(cls, value: object) -> object:
        # Accept a comma-separated string as well as any iterable of names.
        if value is None:
            return ()
        if isinstance(value, str):
            return tuple(t.strip() for t in value.split(",") if t.strip())
        return tuple(str(t).strip() for t in value if str(t).strip())


class IndexingRequest(BaseModel):
    """Everything the ingestion pipeline needs to index one version."""

    model_config = ConfigDict(frozen=True)

    version: DocumentVersion
    title: str = Field(description="Document title, stored on every search record.")
    facets: DocumentFacets = Field(default_factory=DocumentFacets)


# ---------------------------------------------------------------------------
# Derived artifacts
# ---------------------------------------------------------------------------
class ExtractedText(BaseModel):
    """Plain text extracted from one version.  Transient, never persisted."""

    model_config = ConfigDict(frozen=True)

    version_id: str
    text: str
    extracted_at: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc)
    )


class Chunk(BaseModel):
    """A bounded, contiguous span of extracted text.

    Ordinals start at 0 and are contiguous for a version; identical text
    and chunker settings always yield identical chunks.
    """

    model_config = ConfigDict(frozen=True)

    version_id: str
    ordinal: int = Field(ge=0)
    text: str

    @computed_field  # type: ignore[prop-decorator]
    @property
    def char_length(self) -> int:
        return len(self.text)


class EmbeddingVector(BaseModel):
    """The embedding of one chunk."""

    model_config = ConfigDict(frozen=True)

    version_id: str
    chunk_ordinal: int = Field(ge=0)
    values: tuple[float, ...]

    @property
    def dimension(self) -> int:
        return len(self.values)
