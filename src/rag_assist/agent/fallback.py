"""Zero-result answer path: a generic reply with fixed low confidence."""

from __future__ import annotations

from rag_assist.agent.chat import AIChat
from rag_assist.config import ConfidencePolicy
from rag_assist.schemas import ChatRequest, RAGQuery
from rag_assist.types import ChatMessage, RAGResponse, Role

FALLBACK_SYSTEM_PROMPT = (
    "You are a helpful AI assistant. The user's query couldn't be answered "
    "using available documents. Provide a general helpful response and "
    "suggest how they might find the information they're looking for."
)

DEFAULT_FALLBACK_ANSWER = (
    "I cannot provide a specific answer to your question based on the "
    "available information. Please try rephrasing your question or provide "
    "more context."
)


class FallbackResponder:
    """Answers without retrieved context when retrieval found nothing.

    The answer is never empty: a blank provider reply is replaced by
    `DEFAULT_FALLBACK_ANSWER`. Provider errors propagate from `AIChat`.
    """

    def __init__(
        self,
        chat: AIChat,
        *,
        policy: ConfidencePolicy | None = None,
        max_tokens: int = 200,
    ) -> None:
        self.chat = chat
        self.policy = policy or ConfidencePolicy()
        self.max_tokens = max_tokens

    async def respond(self, query: RAGQuery, *, degraded: bool = False) -> RAGResponse:
        response = await self.chat.chat(
            ChatRequest(
                messages=[
                    ChatMessage(role=Role.SYSTEM, content=FALLBACK_SYSTEM_PROMPT),
                    ChatMessage(role=Role.USER, content=query.query),
                ],
                explicit_provider=query.provider,
                criteria=query.criteria,
                temperature=query.temperature,
                max_tokens=self.max_tokens,
                usage_tags=query.usage_tags,
            )
        )
        answer = response.content.strip() or DEFAULT_FALLBACK_ANSWER
        return RAGResponse(
            answer=answer,
            sources=[],
            context_used="",
            confidence=self.policy.fallback_confidence,
            provider=response.provider,
            tokens_used=response.usage.total_tokens if response.usage else None,
            degraded=degraded,
        )
