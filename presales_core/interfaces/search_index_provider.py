"""Abstract base class for search index backends.

A backend stores :class:`~presales_core.models.search.SearchRecord` objects
and answers the two candidate queries hybrid search is built from: vector
nearest neighbours and keyword matches.  Ranking fusion, filter parsing
and the document-level operations live in
:class:`~presales_core.services.search.index_manager.SearchIndexManager`.

Filters arrive as parsed :class:`FilterExpression` trees; a backend pushes
down whatever part it can express natively.  The manager re-checks every
candidate against the full expression, so a backend may over-return but
must never drop a matching record in favour of a non-matching one within
the requested limit.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from presales_core.models.search import IndexCandidate, IndexSchema, SearchRecord

if TYPE_CHECKING:
    from presales_core.services.search.filter_expression import FilterExpression


# Concrete implementations: ChromaDBSearchIndexProvider
# Located in: presales_core/providers/search_index/
class ISearchIndexProvider(ABC):
    """Contract for the search index storage backend."""

    @abstractmethod
    async def ensure_schema(self, schema: IndexSchema) -> None:
        """Create the index for *schema*, or verify an existing one matches it.

        Must be idempotent.

        Raises
        ------
        presales_core.utils.errors.IndexSchemaFailure
            If the index exists with an incompatible layout (e.g. a
            different vector dimension) or cannot be created.
        """

    @abstractmethod
    async def upsert(self, records: list[SearchRecord]) -> int:
        """Insert or replace *records* by id in a single call.

        Returns
        -------
        int
            Number of records written.

        Raises
        ------
        presales_core.utils.errors.IndexWriteFailure
            If any record could not be written.
        """

    @abstractmethod
    async def get_record_ids(self, document_id: str) -> list[str]:
        """Return the ids of all records belonging to *document_id*."""

    @abstractmethod
    async def delete(self, record_ids: list[str]) -> int:
        """Delete records by id and return how many were requested.

        Raises
        ------
        presales_core.utils.errors.IndexWriteFailure
            If the delete fails.
        """

    @abstractmethod
    async def vector_candidates(
        self,
        query_vector: list[float],
        limit: int,
        filter_expression: FilterExpression | None = None,
    ) -> list[IndexCandidate]:
        """Return up to *limit* nearest records, most similar first."""

    @abstractmethod
    async def keyword_candidates(
        self,
        terms: list[str],
        limit: int,
        filter_expression: FilterExpression | None = None,
    ) -> list[IndexCandidate]:
        """Return up to *limit* records whose text contains any of *terms*.

        Order is unspecified; the manager scores them.
        """

    @abstractmethod
    async def scan(
        self,
        filter_expression: FilterExpression | None = None,
        limit: int | None = None,
    ) -> list[IndexCandidate]:
        """Return stored records (without vectors), optionally filtered."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this backend."""
