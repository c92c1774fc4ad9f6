"""Validated request models for chat and RAG entry points."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from rag_assist.types import ChatMessage, ProviderId, SearchScope, ToolRef, UsageTags

Priority = Literal["low", "medium", "high"]


class SelectionCriteria(BaseModel):
    """Qualitative hints used when no provider is requested explicitly.

    `task_complexity` and `speed_priority` are accepted for compatibility with
    existing callers and are ignored by `ModelSelectionPolicy`.
    """

    model_config = ConfigDict(frozen=True)

    requires_tool_use: bool = False
    needs_creativity: bool = False
    cost_priority: Priority | None = None
    task_complexity: Literal["simple", "medium", "complex"] | None = None
    speed_priority: Priority | None = None


class ChatRequest(BaseModel):
    """Direct multi-provider chat request."""

    messages: list[ChatMessage] = Field(min_length=1)
    explicit_provider: ProviderId | None = None
    criteria: SelectionCriteria | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)
    streaming: bool = False
    tools: list[ToolRef] = Field(default_factory=list)
    tool_names: list[str] = Field(default_factory=list)
    usage_tags: UsageTags | None = None


class RAGQuery(BaseModel):
    """One retrieval-augmented question over a knowledge base or project scope."""

    query: str = Field(min_length=1)
    context: str = ""
    knowledge_base_id: str | None = None
    project_id: str | None = None
    document_ids: list[str] = Field(default_factory=list)
    max_context_tokens: int = Field(default=4000, ge=1)
    max_sources: int = Field(default=5, ge=1)
    threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1000, ge=1)
    provider: ProviderId | None = None
    criteria: SelectionCriteria | None = None
    usage_tags: UsageTags | None = None

    @model_validator(mode="after")
    def _check_scope(self) -> "RAGQuery":
        if self.knowledge_base_id and (self.project_id or self.document_ids):
            raise ValueError(
                "knowledge_base_id is exclusive with project_id/document_ids"
            )
        return self

    def scope(self) -> SearchScope:
        return SearchScope(
            knowledge_base_id=self.knowledge_base_id,
            project_id=self.project_id,
            document_ids=tuple(self.document_ids),
        )
