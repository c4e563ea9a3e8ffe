"""Query-side search service.

Embeds the user's query, runs the hybrid search and shapes results for
display.  :meth:`SearchService.answer` can additionally ask the chat
collaborator for an answer grounded in the top hits, citing them as
``[1]``, ``[2]``, ...
"""

from __future__ import annotations

import structlog
from pydantic import BaseModel, ConfigDict, Field

from presales_core.interfaces.embedding_provider import IEmbeddingProvider
from presales_core.interfaces.llm_provider import ILLMProvider
from presales_core.models.document import DocumentFacets
from presales_core.models.search import SearchHit
from presales_core.services.search.index_manager import SearchIndexManager
from presales_core.utils.concurrency import call_with_timeout
from presales_core.utils.errors import SearchQueryFailure

logger = structlog.get_logger(logger_name=__name__)

SNIPPET_LENGTH = 200

_ANSWER_SYSTEM_PROMPT = (
    "You are a helpful assistant for a pre-sales team. "
    "Answer the user's question based ONLY on the provided document excerpts. "
    "Cite sources using [1], [2], etc. If the documents don't contain relevant "
    "information, say so."
)


class SearchResultItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    document_id: str
    version_id: str
    chunk_ordinal: int
    title: str
    snippet: str
    score: float
    facets: DocumentFacets = Field(default_factory=DocumentFacets)


class SearchAnswer(BaseModel):
    model_config = ConfigDict(frozen=True)

    answer: str
    citations: tuple[SearchResultItem, ...] = Field(default_factory=tuple)


def truncate_snippet(content: str | None, max_length: int = SNIPPET_LENGTH) -> str:
    if not content:
        return ""
    if len(content) <= max_length:
        return content
    return content[:max_length] + "..."


class SearchService:
    """Free-text search over the document index."""

    def __init__(
        self,
        index_manager: SearchIndexManager,
        embedding_provider: IEmbeddingProvider,
        llm_provider: ILLMProvider | None = None,
        timeout_seconds: float | None = 60.0,
    ) -> None:
        self._index = index_manager
        self._embedder = embedding_provider
        self._llm = llm_provider
        self._timeout = timeout_seconds

    async def search(
        self,
        query: str,
        top_k: int = 10,
        filter_expression: str | None = None,
    ) -> list[SearchResultItem]:
        if not query or not query.strip():
            raise SearchQueryFailure(message="Query text is empty")
        vector = await call_with_timeout(
            self._embedder.embed_single(query),
            self._timeout,
            stage="SEARCH",
            operation="query embedding",
        )
        hits = await self._index.hybrid_search(query, vector, top_k, filter_expression)
        return [self._to_item(hit) for hit in hits]

    async def answer(
        self,
        query: str,
        top_k: int = 5,
        filter_expression: str | None = None,
    ) -> SearchAnswer:
        """Answer *query* from the top hits, citing them by position."""
        if self._llm is None:
            raise SearchQueryFailure(message="No chat provider configured for answers")
        items = await self.search(query, top_k, filter_expression)
        if not items:
            return SearchAnswer(answer="No matching documents were found.")

        context = "".join(
            f"[{i}] Title: {item.title}, Customer: {item.facets.customer_name or 'n/a'}\n"
            f"{item.snippet}\n\n"
            for i, item in enumerate(items, start=1)
        )
        text = await call_with_timeout(
            self._llm.complete(
                system_prompt=_ANSWER_SYSTEM_PROMPT,
                user_prompt=f"Documents:\n{context}\nQuestion: {query}",
                temperature=0.3,
                max_tokens=500,
            ),
            self._timeout,
            stage="SEARCH",
            operation="answer generation",
        )
        logger.info("search_answer_generated", query_length=len(query), citations=len(items))
        return SearchAnswer(answer=text.strip(), citations=tuple(items))

    @staticmethod
    def _to_item(hit: SearchHit) -> SearchResultItem:
        return SearchResultItem(
            document_id=hit.document_id,
            version_id=hit.version_id,
            chunk_ordinal=hit.chunk_ordinal,
            title=hit.title,
            snippet=truncate_snippet(hit.content),
            score=hit.score,
            facets=hit.facets,
        )
