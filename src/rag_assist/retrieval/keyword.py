"""Full-text retrieval with client-side lexical scoring."""

from __future__ import annotations

import asyncio

from rag_assist.config import RetrievalConfig, TimeoutConfig
from rag_assist.obs.logging import get_logger
from rag_assist.retrieval.store import FragmentStore, fragment_from_hit
from rag_assist.types import Fragment, RetrievalOutcome, SearchScope

logger = get_logger(__name__)


def keyword_similarity(query: str, text: str) -> float:
    """Share of (lower-cased, whitespace-split) query words present in `text`."""
    query_words = query.lower().split()
    if not query_words:
        return 0.0
    text_words = set(text.lower().split())
    matches = sum(1 for word in query_words if word in text_words)
    return matches / len(query_words)


class KeywordRetriever:
    """Runs the store's full-text search and scores hits by word overlap."""

    def __init__(
        self,
        store: FragmentStore,
        config: RetrievalConfig | None = None,
        timeouts: TimeoutConfig | None = None,
    ) -> None:
        self.store = store
        self.config = config or RetrievalConfig()
        self.timeouts = timeouts or TimeoutConfig()

    async def retrieve(
        self,
        query: str,
        scope: SearchScope,
        *,
        limit: int | None = None,
    ) -> RetrievalOutcome:
        limit = limit or self.config.limit
        try:
            hits = await asyncio.wait_for(
                self.store.full_text_search(query, scope, limit),
                timeout=self.timeouts.retrieval_seconds,
            )
        except Exception as exc:
            logger.warning(
                "keyword_search_failed",
                error=str(exc) or type(exc).__name__,
                knowledge_base_id=scope.knowledge_base_id,
                project_id=scope.project_id,
            )
            return RetrievalOutcome(fragments=[], degraded=True)

        fragments = [
            fragment_from_hit(hit, keyword_similarity(query, hit.fragment.text))
            for hit in hits
        ]
        fragments.sort(key=lambda item: item.similarity_score, reverse=True)
        return RetrievalOutcome(fragments=fragments[:limit])

    async def search(
        self,
        query: str,
        scope: SearchScope,
        *,
        limit: int | None = None,
    ) -> list[Fragment]:
        outcome = await self.retrieve(query, scope, limit=limit)
        return outcome.fragments
