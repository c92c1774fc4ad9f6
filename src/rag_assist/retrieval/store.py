"""Fragment store contract and an in-memory implementation."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from math import sqrt
from typing import Any, Protocol

from rag_assist.types import Fragment, SearchScope

_WORD_PATTERN = re.compile(r"\w+", flags=re.UNICODE)

# Subset of the English stopword list used by full-text engines.
STOPWORDS = frozenset(
    """
    a about above after again all am an and any are as at be because been before
    being below between both but by can could did do does doing down during each
    few for from further had has have having he her here hers him his how i if in
    into is it its itself just me more most my no nor not of off on once only or
    other our ours out over own same she should so some such than that the their
    theirs them then there these they this those through to too under until up
    very was we were what when where which while who whom why will with would
    you your yours
    """.split()
)


@dataclass(slots=True)
class StoredFragment:
    """A fragment as indexed by the (external) ingestion pipeline."""

    id: str
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)
    document_id: str | None = None
    scope_id: str | None = None
    project_id: str | None = None


@dataclass(slots=True)
class StoredHit:
    """One row returned by a store search; `similarity` is None for full-text."""

    fragment: StoredFragment
    similarity: float | None = None


class FragmentStore(Protocol):
    """Search RPCs the retrievers consume."""

    async def nearest_neighbors(
        self,
        embedding: list[float],
        threshold: float,
        count: int,
        scope: SearchScope,
    ) -> list[StoredHit]:
        """Vector search, most similar first, similarity >= threshold."""

    async def full_text_search(
        self,
        query_text: str,
        scope: SearchScope,
        limit: int,
    ) -> list[StoredHit]:
        """Unscored full-text search."""

    async def fragment_embedding(self, fragment_id: str) -> list[float] | None:
        """Stored embedding of one fragment, or None when unknown."""


@dataclass(slots=True)
class _StoredVector:
    fragment: StoredFragment
    embedding: list[float]


class InMemoryFragmentStore:
    """Deterministic fragment store used for tests and local prototyping."""

    def __init__(self) -> None:
        self._store: dict[str, _StoredVector] = {}

    def upsert(self, fragments: list[StoredFragment], embeddings: list[list[float]]) -> None:
        if len(fragments) != len(embeddings):
            raise ValueError("fragments and embeddings must have the same length")
        for fragment, embedding in zip(fragments, embeddings, strict=True):
            self._store[fragment.id] = _StoredVector(fragment=fragment, embedding=embedding)

    def __len__(self) -> int:
        return len(self._store)

    async def nearest_neighbors(
        self,
        embedding: list[float],
        threshold: float,
        count: int,
        scope: SearchScope,
    ) -> list[StoredHit]:
        scored = [
            StoredHit(
                fragment=record.fragment,
                similarity=_cosine_similarity(embedding, record.embedding),
            )
            for record in self._in_scope(scope)
        ]
        ranked = sorted(
            (hit for hit in scored if hit.similarity >= threshold),
            key=lambda hit: hit.similarity,
            reverse=True,
        )
        return ranked[:count]

    async def full_text_search(
        self,
        query_text: str,
        scope: SearchScope,
        limit: int,
    ) -> list[StoredHit]:
        """Websearch-style match: every non-stopword query term must occur."""
        terms = search_terms(query_text)
        if not terms:
            return []
        hits = [
            StoredHit(fragment=record.fragment)
            for record in self._in_scope(scope)
            if terms <= set(_words(record.fragment.text))
        ]
        return hits[:limit]

    async def fragment_embedding(self, fragment_id: str) -> list[float] | None:
        record = self._store.get(fragment_id)
        return None if record is None else list(record.embedding)

    def _in_scope(self, scope: SearchScope) -> list[_StoredVector]:
        return [
            record
            for record in self._store.values()
            if scope.matches(
                scope_id=record.fragment.scope_id,
                document_id=record.fragment.document_id,
                project_id=record.fragment.project_id,
            )
        ]


def _words(text: str) -> list[str]:
    return [word.lower() for word in _WORD_PATTERN.findall(text)]


def search_terms(query_text: str) -> set[str]:
    return {word for word in _words(query_text) if word not in STOPWORDS}


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)


def fragment_from_hit(hit: StoredHit, score: float) -> Fragment:
    record = hit.fragment
    name = record.metadata.get("document_file_name") or record.metadata.get("document_name")
    return Fragment(
        id=record.id,
        text=record.text,
        metadata=dict(record.metadata),
        similarity_score=score,
        source_document_id=record.document_id,
        source_document_name=str(name) if name else None,
        scope_id=record.scope_id,
    )
