"""Language-model query expansion with a deterministic heuristic fallback."""

from __future__ import annotations

import asyncio

from pydantic import BaseModel, Field, ValidationError

from rag_assist.agent.chat import AIChat
from rag_assist.config import TimeoutConfig
from rag_assist.errors import ExpansionParseError
from rag_assist.obs.logging import get_logger
from rag_assist.schemas import ChatRequest, SelectionCriteria
from rag_assist.types import ChatMessage, QueryExpansion, Role, UsageTags

logger = get_logger(__name__)

DEFAULT_INTENT = "general_inquiry"

EXPANSION_SYSTEM_PROMPT = """You expand search queries for a document retrieval system.
Return only a JSON object with exactly these keys:
  "expanded_queries": 2-3 alternative phrasings of the query,
  "keywords": the most important search terms,
  "intent": a short snake_case label for what the user wants.
Do not add any text before or after the JSON."""


class ExpansionPayload(BaseModel):
    """Schema the expansion reply must satisfy."""

    expanded_queries: list[str] = Field(min_length=1)
    keywords: list[str]
    intent: str = Field(min_length=1)


def heuristic_expansion(query: str) -> QueryExpansion:
    return QueryExpansion(
        original_query=query,
        expanded_queries=[query],
        keywords=[word for word in query.split() if len(word) > 2],
        intent=DEFAULT_INTENT,
    )


def strip_code_fence(text: str) -> str:
    content = text.strip()
    if content.startswith("```"):
        content = content.split("```")[1]
        if content.startswith("json"):
            content = content[4:]
    return content.strip()


def parse_expansion(query: str, reply: str) -> QueryExpansion:
    try:
        payload = ExpansionPayload.model_validate_json(strip_code_fence(reply))
    except ValidationError as exc:
        raise ExpansionParseError(str(exc)) from exc
    return QueryExpansion(
        original_query=query,
        expanded_queries=payload.expanded_queries,
        keywords=payload.keywords,
        intent=payload.intent,
    )


class QueryExpander:
    """Asks a cheap, low-temperature model for alternative phrasings.

    Never raises: provider, configuration, timeout and schema failures all
    fall back to `heuristic_expansion`.
    """

    def __init__(
        self,
        chat: AIChat,
        *,
        timeouts: TimeoutConfig | None = None,
        temperature: float = 0.3,
        max_tokens: int = 300,
    ) -> None:
        self.chat = chat
        self.timeouts = timeouts or TimeoutConfig()
        self.temperature = temperature
        self.max_tokens = max_tokens

    def _request(self, query: str, tags: UsageTags | None) -> ChatRequest:
        return ChatRequest(
            messages=[
                ChatMessage(role=Role.SYSTEM, content=EXPANSION_SYSTEM_PROMPT),
                ChatMessage(role=Role.USER, content=f"Query: {query}"),
            ],
            criteria=SelectionCriteria(cost_priority="high"),
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            usage_tags=tags,
        )

    async def expand(self, query: str, *, usage_tags: UsageTags | None = None) -> QueryExpansion:
        try:
            response = await asyncio.wait_for(
                self.chat.chat(self._request(query, usage_tags)),
                timeout=self.timeouts.expansion_seconds,
            )
            return parse_expansion(query, response.content)
        except Exception as exc:
            logger.warning(
                "query_expansion_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return heuristic_expansion(query)
