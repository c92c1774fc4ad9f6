"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class ProviderId(str, Enum):
    """Interchangeable language-model providers."""

    GEMINI = "gemini"
    CHATGPT = "chatgpt"
    CLAUDE = "claude"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(slots=True)
class ChatMessage:
    """One turn of a conversation."""

    role: Role
    content: str
    timestamp: str | None = None

    def __post_init__(self) -> None:
        self.role = Role(self.role)


@dataclass(slots=True, frozen=True)
class ToolRef:
    """Descriptor of a machine-invocable tool offered to a provider."""

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class Fragment:
    """A retrieved text fragment.

    `similarity_score` is the producing retriever's own score in [0, 1].
    `rank_score` is set by hybrid ranking (weighted and boosted) and is the
    value results are ordered by once present.
    """

    id: str
    text: str
    metadata: dict[str, Any]
    similarity_score: float
    source_document_id: str | None = None
    source_document_name: str | None = None
    scope_id: str | None = None
    rank_score: float | None = None

    @property
    def score(self) -> float:
        return self.similarity_score if self.rank_score is None else self.rank_score

    def with_rank_score(self, rank_score: float) -> "Fragment":
        return replace(self, rank_score=rank_score)


@dataclass(slots=True, frozen=True)
class SearchScope:
    """Retrieval filter: a knowledge base, or a project and/or document set."""

    knowledge_base_id: str | None = None
    project_id: str | None = None
    document_ids: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.knowledge_base_id and (self.project_id or self.document_ids):
            raise ValueError(
                "knowledge_base_id cannot be combined with project_id/document_ids"
            )
        object.__setattr__(self, "document_ids", tuple(self.document_ids))

    @property
    def is_knowledge_base(self) -> bool:
        return self.knowledge_base_id is not None

    def matches(
        self,
        *,
        scope_id: str | None,
        document_id: str | None,
        project_id: str | None = None,
    ) -> bool:
        if self.knowledge_base_id is not None:
            return scope_id == self.knowledge_base_id
        if self.project_id is not None and project_id != self.project_id:
            return False
        if self.document_ids and document_id not in self.document_ids:
            return False
        return True


@dataclass(slots=True)
class RetrievalOutcome:
    """Fragments from one retrieval plus whether a backend failed."""

    fragments: list[Fragment]
    degraded: bool = False


@dataclass(slots=True)
class ContextWindow:
    text: str
    sources: list[Fragment]
    estimated_token_count: int


@dataclass(slots=True)
class QueryExpansion:
    original_query: str
    expanded_queries: list[str]
    keywords: list[str]
    intent: str


@dataclass(slots=True, frozen=True)
class GenerationParams:
    """Resolved per-call generation parameters."""

    max_tokens: int
    temperature: float
    top_p: float = 1.0
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class Usage:
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    cost: float


@dataclass(slots=True)
class ChatResponse:
    content: str
    provider: ProviderId
    usage: Usage | None = None
    finish_reason: str = "stop"


@dataclass(slots=True)
class StreamChunk:
    """Incremental streaming output; exactly one terminal chunk has done=True."""

    chunk: str
    done: bool
    provider: ProviderId
    usage: Usage | None = None


@dataclass(slots=True, frozen=True)
class UsageTags:
    project_id: str | None = None
    conversation_id: str | None = None
    workflow_type: str | None = None
    workflow_stage: str | None = None


@dataclass(slots=True)
class RAGResponse:
    answer: str
    sources: list[Fragment]
    context_used: str
    confidence: float
    provider: ProviderId
    tokens_used: int | None = None
    degraded: bool = False

