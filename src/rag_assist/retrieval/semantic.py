"""Nearest-neighbor retrieval over the fragment store."""

from __future__ import annotations

import asyncio

from rag_assist.config import RetrievalConfig, TimeoutConfig
from rag_assist.errors import RetrievalError
from rag_assist.obs.logging import get_logger
from rag_assist.retrieval.embedder import Embedder
from rag_assist.retrieval.store import FragmentStore, fragment_from_hit
from rag_assist.types import Fragment, RetrievalOutcome, SearchScope

logger = get_logger(__name__)


class SemanticRetriever:
    """Embeds the query and runs a scoped vector search.

    Backend failures (embedding, search, or an expired deadline) are logged
    and reported as an empty, degraded outcome instead of being raised, so a
    retrieval hiccup never prevents the pipeline from answering generically.
    """

    def __init__(
        self,
        store: FragmentStore,
        embedder: Embedder,
        config: RetrievalConfig | None = None,
        timeouts: TimeoutConfig | None = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.config = config or RetrievalConfig()
        self.timeouts = timeouts or TimeoutConfig()

    async def retrieve(
        self,
        query: str,
        scope: SearchScope,
        *,
        limit: int | None = None,
        threshold: float | None = None,
    ) -> RetrievalOutcome:
        limit = limit or self.config.limit
        threshold = self.config.threshold if threshold is None else threshold

        try:
            hits = await self._search(query, scope, limit, threshold)
        except RetrievalError as exc:
            logger.warning(
                "semantic_search_failed",
                error=str(exc),
                cause=type(exc.__cause__).__name__ if exc.__cause__ else None,
                knowledge_base_id=scope.knowledge_base_id,
                project_id=scope.project_id,
            )
            return RetrievalOutcome(fragments=[], degraded=True)

        fragments = [
            fragment_from_hit(hit, float(hit.similarity))
            for hit in hits
            if hit.similarity is not None and hit.similarity >= threshold
        ]
        fragments.sort(key=lambda item: item.similarity_score, reverse=True)
        return RetrievalOutcome(fragments=fragments[:limit])

    async def search(
        self,
        query: str,
        scope: SearchScope,
        *,
        limit: int | None = None,
        threshold: float | None = None,
    ) -> list[Fragment]:
        outcome = await self.retrieve(query, scope, limit=limit, threshold=threshold)
        return outcome.fragments

    async def similar_to(
        self,
        fragment_id: str,
        scope: SearchScope | None = None,
        *,
        limit: int | None = None,
        threshold: float | None = None,
    ) -> RetrievalOutcome:
        """Neighbors of a stored fragment, excluding the fragment itself."""
        scope = scope or SearchScope()
        limit = limit or self.config.limit
        threshold = self.config.threshold if threshold is None else threshold

        try:
            embedding = await asyncio.wait_for(
                self.store.fragment_embedding(fragment_id),
                timeout=self.timeouts.retrieval_seconds,
            )
            if embedding is None:
                return RetrievalOutcome(fragments=[])
            hits = await asyncio.wait_for(
                self.store.nearest_neighbors(embedding, threshold, limit + 1, scope),
                timeout=self.timeouts.retrieval_seconds,
            )
        except Exception as exc:
            logger.warning(
                "semantic_search_failed",
                error=str(exc) or type(exc).__name__,
                fragment_id=fragment_id,
            )
            return RetrievalOutcome(fragments=[], degraded=True)

        fragments = [
            fragment_from_hit(hit, float(hit.similarity))
            for hit in hits
            if hit.fragment.id != fragment_id
            and hit.similarity is not None
            and hit.similarity >= threshold
        ]
        return RetrievalOutcome(fragments=fragments[:limit])

    async def _search(self, query: str, scope: SearchScope, limit: int, threshold: float):
        try:
            embedding = await asyncio.wait_for(
                self.embedder.embed(query), timeout=self.timeouts.embedding_seconds
            )
        except asyncio.TimeoutError as exc:
            raise RetrievalError("query embedding timed out") from exc
        except Exception as exc:
            raise RetrievalError("query embedding failed") from exc

        try:
            return await asyncio.wait_for(
                self.store.nearest_neighbors(embedding, threshold, limit, scope),
                timeout=self.timeouts.retrieval_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise RetrievalError("vector search timed out") from exc
        except Exception as exc:
            raise RetrievalError("vector search failed") from exc
