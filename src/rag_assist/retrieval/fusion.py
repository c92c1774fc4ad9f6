"""Hybrid ranking: weighted merge of semantic and keyword results plus boosts."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from rag_assist.config import RankingPolicy, RetrievalConfig
from rag_assist.retrieval.keyword import KeywordRetriever
from rag_assist.retrieval.semantic import SemanticRetriever
from rag_assist.types import Fragment, RetrievalOutcome, SearchScope


class Reranker(ABC):
    """Reranker interface used after score fusion."""

    @abstractmethod
    def rerank(self, query: str, candidates: list[Fragment]) -> list[Fragment]:
        """Return candidates in the final ranking order."""


class BoostReranker(Reranker):
    """Multiplicative boosts for exact phrase hits, short fragments and
    fragments whose metadata carries a high confidence value."""

    def __init__(self, policy: RankingPolicy | None = None) -> None:
        self.policy = policy or RankingPolicy()

    def boost(self, query: str, fragment: Fragment) -> float:
        policy = self.policy
        factor = 1.0
        if query and query.lower() in fragment.text.lower():
            factor *= policy.exact_match_boost
        if len(fragment.text) < policy.short_text_chars:
            factor *= policy.short_text_boost
        confidence = fragment.metadata.get(policy.metadata_confidence_key)
        if (
            isinstance(confidence, (int, float))
            and not isinstance(confidence, bool)
            and confidence > policy.metadata_confidence_threshold
        ):
            factor *= policy.metadata_confidence_boost
        return factor

    def rerank(self, query: str, candidates: list[Fragment]) -> list[Fragment]:
        rescored = [
            item.with_rank_score(item.score * self.boost(query, item)) for item in candidates
        ]
        return sorted(rescored, key=lambda x: x.score, reverse=True)


def merge_results(
    semantic: list[Fragment],
    keyword: list[Fragment],
    *,
    vector_weight: float,
    keyword_weight: float,
) -> list[Fragment]:
    """Merge two result lists by fragment id.

    A fragment found by both routes scores `semantic*vw + keyword*kw`; one
    found by a single route keeps that route's weighted score (no
    renormalization). `similarity_score` stays the semantic similarity when
    there is one, else the keyword score.
    """

    merged: dict[str, Fragment] = {}
    for item in semantic:
        merged[item.id] = item.with_rank_score(item.similarity_score * vector_weight)

    for item in keyword:
        weighted = item.similarity_score * keyword_weight
        current = merged.get(item.id)
        if current is None:
            merged[item.id] = item.with_rank_score(weighted)
        else:
            merged[item.id] = current.with_rank_score(current.score + weighted)

    return sorted(merged.values(), key=lambda x: x.score, reverse=True)


class HybridRanker:
    """Runs both retrievers concurrently and fuses their results."""

    def __init__(
        self,
        semantic: SemanticRetriever,
        keyword: KeywordRetriever,
        *,
        policy: RankingPolicy | None = None,
        config: RetrievalConfig | None = None,
        reranker: Reranker | None = None,
    ) -> None:
        self.semantic = semantic
        self.keyword = keyword
        self.policy = policy or RankingPolicy()
        self.config = config or RetrievalConfig()
        self.reranker = reranker or BoostReranker(self.policy)

    async def hybrid_search(
        self,
        query: str,
        scope: SearchScope,
        *,
        limit: int | None = None,
        threshold: float | None = None,
        vector_weight: float | None = None,
        keyword_weight: float | None = None,
    ) -> list[Fragment]:
        outcome = await self.retrieve(
            query,
            scope,
            limit=limit,
            threshold=threshold,
            vector_weight=vector_weight,
            keyword_weight=keyword_weight,
        )
        return outcome.fragments

    async def global_search(self, query: str, *, limit: int | None = None) -> list[Fragment]:
        """Hybrid search with no knowledge-base, project or document filter."""
        return await self.hybrid_search(query, SearchScope(), limit=limit)

    async def retrieve(
        self,
        query: str,
        scope: SearchScope,
        *,
        limit: int | None = None,
        threshold: float | None = None,
        vector_weight: float | None = None,
        keyword_weight: float | None = None,
    ) -> RetrievalOutcome:
        """Hybrid search returning the fused fragments and a degraded flag.

        Both routes over-fetch `overfetch_factor * limit` candidates and are
        awaited together; this join is the only synchronization point.
        """

        limit = limit or self.config.limit
        candidate_k = limit * self.config.overfetch_factor
        semantic_outcome, keyword_outcome = await asyncio.gather(
            self.semantic.retrieve(query, scope, limit=candidate_k, threshold=threshold),
            self.keyword.retrieve(query, scope, limit=candidate_k),
        )

        merged = merge_results(
            semantic_outcome.fragments,
            keyword_outcome.fragments,
            vector_weight=self.policy.vector_weight if vector_weight is None else vector_weight,
            keyword_weight=self.policy.keyword_weight
            if keyword_weight is None
            else keyword_weight,
        )
        reranked = self.reranker.rerank(query, merged)
        return RetrievalOutcome(
            fragments=reranked[:limit],
            degraded=semantic_outcome.degraded or keyword_outcome.degraded,
        )
