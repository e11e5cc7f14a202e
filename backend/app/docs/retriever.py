"""Scope-aware retrieval of document passages for a query.

Page scope searches one page with a strict threshold and falls back to the
whole page text. Book scope searches every chunk of the document with a
looser threshold and falls back to keyword matching.
"""

import logging
import re
from collections.abc import Awaitable, Callable
from uuid import UUID

from backend.app.config import Settings
from backend.app.db.repositories import ReadingStore, ScopeFilter
from backend.app.llm.embeddings import Embedder
from backend.app.models.docs import ChunkMatch, PageRecord, RetrievalResult, RetrievalScope
from backend.app.utils.metrics import retrieval_fallbacks_total, retrieval_results_total
from backend.app.utils.retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset(
    {
        "about", "above", "after", "again", "all", "also", "and", "any", "are", "because",
        "been", "before", "being", "between", "both", "but", "can", "could", "did", "does",
        "doing", "down", "during", "each", "few", "for", "from", "further", "had", "has",
        "have", "having", "her", "here", "hers", "him", "his", "how", "into", "its",
        "itself", "just", "more", "most", "not", "now", "off", "once", "only", "other",
        "our", "ours", "out", "over", "own", "same", "she", "should", "some", "such",
        "than", "that", "the", "their", "theirs", "them", "then", "there", "these", "they",
        "this", "those", "through", "too", "under", "until", "very", "was", "were", "what",
        "when", "where", "which", "while", "who", "whom", "why", "will", "with", "would",
        "you", "your", "yours",
    }
)

_WORD = re.compile(r"\w+")


def keyword_tokens(query: str, min_length: int = 3) -> list[str]:
    """Lowercase word tokens worth matching, in first-seen order."""
    tokens: list[str] = []
    for token in _WORD.findall(query.lower()):
        if len(token) < min_length or token in STOP_WORDS or token in tokens:
            continue
        tokens.append(token)
    return tokens


class RetrievalService:
    """Finds the passages of a document most relevant to a query."""

    def __init__(
        self,
        store: ReadingStore,
        embedder: Embedder,
        settings: Settings,
        *,
        sleep_fn: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._settings = settings
        self._sleep_fn = sleep_fn
        self._embed_policy = RetryPolicy.from_settings(settings, settings.embedding_timeout_s)

    async def retrieve(
        self,
        query: str,
        document_id: UUID,
        page_number: int | None = None,
        scope: RetrievalScope = RetrievalScope.book,
    ) -> list[RetrievalResult]:
        """Retrieve passages for a query.

        Args:
            query: Natural-language query
            document_id: Document to search
            page_number: Page the reader is on (required for page scope)
            scope: page or book

        Returns:
            Results ordered by page number then chunk index; empty when the
            query is blank, the page is missing or nothing is indexed
        """
        if not query or not query.strip():
            return []

        if scope == RetrievalScope.page and page_number is None:
            logger.info("Page scope requested without a page number, searching whole book")
            scope = RetrievalScope.book

        if scope == RetrievalScope.page:
            assert page_number is not None
            results = await self._retrieve_page(query, document_id, page_number)
        else:
            results = await self._retrieve_book(query, document_id, page_number)

        for result in results:
            retrieval_results_total.labels(scope=scope.value, source=result.source).inc()

        return sorted(results, key=lambda r: (r.page_number, r.chunk_index))

    async def _retrieve_page(
        self, query: str, document_id: UUID, page_number: int
    ) -> list[RetrievalResult]:
        page = await self._store.get_page(document_id, page_number)
        if page is None:
            return []

        vector = await self._embed_query(query, RetrievalScope.page)
        matches: list[ChunkMatch] = []
        if vector is not None:
            matches = await self._store.query_similar(
                vector,
                self._settings.page_similarity_threshold,
                self._settings.page_max_results,
                ScopeFilter(document_id=document_id, page_id=page.page_id),
            )

        if matches:
            return [
                RetrievalResult(
                    chunk_id=m.chunk_id,
                    content=m.content,
                    page_number=page.page_number,
                    similarity=m.similarity,
                    chunk_index=m.chunk_index,
                    source="vector",
                )
                for m in matches
            ]

        return self._whole_page(page)

    def _whole_page(self, page: PageRecord) -> list[RetrievalResult]:
        if not page.content.strip():
            return []

        retrieval_fallbacks_total.labels(scope="page", reason="whole_page").inc()
        return [
            RetrievalResult(
                chunk_id=None,
                content=page.content,
                page_number=page.page_number,
                similarity=1.0,
                source="page",
            )
        ]

    async def _retrieve_book(
        self, query: str, document_id: UUID, page_number: int | None
    ) -> list[RetrievalResult]:
        if await self._store.count_chunks(document_id) == 0:
            return []

        cap = self._settings.book_max_results
        # Over-fetch so current-page chunks can win ties before truncation
        fetch = cap * 2 if page_number is not None else cap
        scope_filter = ScopeFilter(document_id=document_id)

        vector = await self._embed_query(query, RetrievalScope.book)
        matches: list[ChunkMatch] = []
        if vector is not None:
            matches = await self._store.query_similar(
                vector, self._settings.book_similarity_threshold, fetch, scope_filter
            )

        source = "vector"
        if not matches:
            tokens = keyword_tokens(query, self._settings.min_keyword_length)
            matches = await self._store.search_keywords(scope_filter, tokens, fetch)
            source = "keyword"
            retrieval_fallbacks_total.labels(scope="book", reason="keyword").inc()

        if not matches:
            return []

        page_numbers = await self._store.get_page_numbers([m.page_id for m in matches])
        ranked = [(m, page_numbers[m.page_id]) for m in matches if m.page_id in page_numbers]
        if page_number is not None:
            # Stable sort keeps store order within equal keys
            ranked.sort(key=lambda item: (-item[0].similarity, item[1] != page_number))

        keyword_score = self._settings.keyword_match_score
        return [
            RetrievalResult(
                chunk_id=m.chunk_id,
                content=m.content,
                page_number=number,
                similarity=m.similarity if source == "vector" else keyword_score,
                chunk_index=m.chunk_index,
                source=source,
            )
            for m, number in ranked[:cap]
        ]

    async def _embed_query(self, query: str, scope: RetrievalScope) -> list[float] | None:
        """Embed the query; None when the embedder keeps failing."""
        try:
            return await retry_async(
                lambda: self._embedder.embed(query),
                self._embed_policy,
                operation="embed_query",
                sleep_fn=self._sleep_fn,
            )
        except Exception as e:
            logger.warning(
                f"Query embedding failed, using {scope.value} fallback: {e}",
                extra={"structured": {"scope": scope.value, "error_reason": type(e).__name__}},
            )
            retrieval_fallbacks_total.labels(scope=scope.value, reason="embedding_failed").inc()
            return None
