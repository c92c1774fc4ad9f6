import asyncio

import pytest

from conftest import StubStore, stored
from rag_assist.config import TimeoutConfig
from rag_assist.retrieval.embedder import HashingEmbedder
from rag_assist.retrieval.keyword import KeywordRetriever, keyword_similarity
from rag_assist.retrieval.semantic import SemanticRetriever
from rag_assist.retrieval.store import InMemoryFragmentStore, StoredHit, search_terms
from rag_assist.types import SearchScope

KB = SearchScope(knowledge_base_id="kb-1")


def test_keyword_similarity_is_share_of_query_words() -> None:
    assert keyword_similarity("refund policy terms", "Our refund policy is simple") == pytest.approx(
        2 / 3
    )
    assert keyword_similarity("", "anything") == 0.0
    assert keyword_similarity("REFUND", "refund window") == 1.0


@pytest.mark.asyncio
async def test_semantic_excludes_scores_below_threshold() -> None:
    store = StubStore(
        vector_hits=[
            StoredHit(stored("a", "alpha"), similarity=0.95),
            StoredHit(stored("b", "beta"), similarity=0.61),
            StoredHit(stored("c", "gamma"), similarity=0.59),
        ]
    )
    retriever = SemanticRetriever(store, HashingEmbedder())

    for threshold in (0.0, 0.6, 0.7, 0.96):
        results = await retriever.search("query", KB, limit=10, threshold=threshold)
        assert all(item.similarity_score >= threshold for item in results)

    results = await retriever.search("query", KB, limit=10, threshold=0.6)
    assert [item.id for item in results] == ["a", "b"]


@pytest.mark.asyncio
async def test_semantic_failure_degrades_to_empty() -> None:
    retriever = SemanticRetriever(StubStore(fail_vector=True), HashingEmbedder())

    outcome = await retriever.retrieve("query", KB)

    assert outcome.fragments == []
    assert outcome.degraded is True


@pytest.mark.asyncio
async def test_keyword_failure_degrades_to_empty() -> None:
    retriever = KeywordRetriever(StubStore(fail_text=True))

    outcome = await retriever.retrieve("query", KB)

    assert outcome.fragments == []
    assert outcome.degraded is True


@pytest.mark.asyncio
async def test_keyword_scores_and_orders_full_text_hits() -> None:
    store = StubStore(
        text_hits=[
            StoredHit(stored("weak", "refund requests are reviewed")),
            StoredHit(stored("strong", "the refund policy covers returns")),
        ]
    )
    results = await KeywordRetriever(store).search("refund policy", KB)

    assert [item.id for item in results] == ["strong", "weak"]
    assert results[0].similarity_score == 1.0
    assert results[1].similarity_score == 0.5


@pytest.mark.asyncio
async def test_in_memory_store_respects_scope() -> None:
    embedder = HashingEmbedder()
    store = InMemoryFragmentStore()
    fragments = [
        stored("kb-a", "refund policy for members", scope_id="kb-1"),
        stored("kb-b", "refund policy for members", scope_id="kb-2"),
        stored("p-a", "refund policy draft", project_id="p-1", document_id="doc-1"),
        stored("p-b", "refund policy final", project_id="p-1", document_id="doc-2"),
    ]
    store.upsert(fragments, [embedder.embed_sync(item.text) for item in fragments])

    kb_hits = await store.full_text_search("refund", SearchScope(knowledge_base_id="kb-1"), 10)
    doc_hits = await store.full_text_search(
        "refund", SearchScope(project_id="p-1", document_ids=("doc-2",)), 10
    )

    assert [hit.fragment.id for hit in kb_hits] == ["kb-a"]
    assert [hit.fragment.id for hit in doc_hits] == ["p-b"]


def test_scope_rejects_knowledge_base_with_project_filter() -> None:
    with pytest.raises(ValueError):
        SearchScope(knowledge_base_id="kb-1", project_id="p-1")

FAST_DEADLINES = TimeoutConfig(embedding_seconds=0.05, retrieval_seconds=0.05)


class SlowEmbedder(HashingEmbedder):
    async def embed(self, text: str) -> list[float]:
        await asyncio.sleep(1)
        return self.embed_sync(text)


@pytest.mark.asyncio
async def test_slow_embedding_degrades_semantic_route() -> None:
    store = StubStore(vector_hits=[StoredHit(stored("a", "alpha"), similarity=0.9)])
    retriever = SemanticRetriever(store, SlowEmbedder(), timeouts=FAST_DEADLINES)

    outcome = await retriever.retrieve("query", KB)

    assert outcome.fragments == []
    assert outcome.degraded is True
    assert store.vector_requests == []


@pytest.mark.asyncio
async def test_slow_vector_search_degrades_semantic_route() -> None:
    store = StubStore(
        vector_hits=[StoredHit(stored("a", "alpha"), similarity=0.9)], delay_vector=1
    )
    retriever = SemanticRetriever(store, HashingEmbedder(), timeouts=FAST_DEADLINES)

    outcome = await retriever.retrieve("query", KB)

    assert outcome.fragments == []
    assert outcome.degraded is True


@pytest.mark.asyncio
async def test_slow_full_text_search_degrades_keyword_route() -> None:
    store = StubStore(text_hits=[StoredHit(stored("a", "refund policy"))], delay_text=1)
    retriever = KeywordRetriever(store, timeouts=FAST_DEADLINES)

    outcome = await retriever.retrieve("refund policy", KB)

    assert outcome.fragments == []
    assert outcome.degraded is True


def test_search_terms_drop_stopwords() -> None:
    assert search_terms("What is the refund policy?") == {"refund", "policy"}
    assert search_terms("What is it?") == set()


@pytest.mark.asyncio
async def test_full_text_search_requires_every_meaningful_term() -> None:
    embedder = HashingEmbedder()
    store = InMemoryFragmentStore()
    fragments = [
        stored("hours", "The office opens at nine", scope_id="kb-1"),
        stored("refunds", "Our refund window is thirty days", scope_id="kb-1"),
        stored("policy", "The refund policy covers damaged goods", scope_id="kb-1"),
    ]
    store.upsert(fragments, [embedder.embed_sync(item.text) for item in fragments])

    hits = await store.full_text_search("What is the refund policy?", KB, 10)
    stopword_only = await store.full_text_search("What is the", KB, 10)

    assert [hit.fragment.id for hit in hits] == ["policy"]
    assert stopword_only == []


@pytest.mark.asyncio
async def test_similar_to_excludes_the_fragment_itself() -> None:
    embedder = HashingEmbedder()
    store = InMemoryFragmentStore()
    fragments = [
        stored("seed", "refund policy for damaged goods", scope_id="kb-1"),
        stored("twin", "refund policy for damaged goods", scope_id="kb-1"),
        stored("other", "office opening hours", scope_id="kb-1"),
    ]
    store.upsert(fragments, [embedder.embed_sync(item.text) for item in fragments])
    retriever = SemanticRetriever(store, embedder)

    outcome = await retriever.similar_to("seed", KB, limit=5, threshold=0.9)

    assert [item.id for item in outcome.fragments] == ["twin"]
    assert outcome.fragments[0].similarity_score == pytest.approx(1.0)
    assert outcome.degraded is False


@pytest.mark.asyncio
async def test_similar_to_unknown_fragment_is_empty() -> None:
    retriever = SemanticRetriever(InMemoryFragmentStore(), HashingEmbedder())

    outcome = await retriever.similar_to("missing")

    assert outcome.fragments == []
    assert outcome.degraded is False


@pytest.mark.asyncio
async def test_similar_to_store_failure_degrades() -> None:
    retriever = SemanticRetriever(StubStore(fail_vector=True), HashingEmbedder())

    outcome = await retriever.similar_to("seed")

    assert outcome.fragments == []
    assert outcome.degraded is True
