"""Retrieval-augmented answering pipeline."""

from __future__ import annotations

import re
from typing import Any

from rag_assist.agent.chat import AIChat
from rag_assist.agent.fallback import FallbackResponder
from rag_assist.config import ConfidencePolicy
from rag_assist.obs.logging import get_logger
from rag_assist.obs.usage import Timer
from rag_assist.retrieval.context import ContextAssembler
from rag_assist.retrieval.expansion import QueryExpander
from rag_assist.retrieval.fusion import HybridRanker
from rag_assist.schemas import ChatRequest, RAGQuery
from rag_assist.types import ChatMessage, Fragment, RAGResponse, Role

logger = get_logger(__name__)

_CITATION_PATTERN = re.compile(r"based on|according to", flags=re.IGNORECASE)
_REFERENCE_PATTERN = re.compile(
    r"\b(it|this|that|them|they|above|previous|earlier)\b", flags=re.IGNORECASE
)

HISTORY_WINDOW = 5

RAG_SYSTEM_PROMPT = """You are a knowledgeable AI assistant. Use the provided context to answer the user's question accurately and comprehensively.

Guidelines:
1. Base your answer primarily on the provided context
2. If the context doesn't contain enough information, clearly state what's missing
3. Be concise but complete in your response
4. If you're unsure about something, express that uncertainty
5. Cite sources when possible by referring to the document names mentioned

Context Information:
{context}
"""


def build_system_prompt(context: str, additional_context: str = "") -> str:
    prompt = RAG_SYSTEM_PROMPT.format(context=context)
    if additional_context:
        prompt += f"\nAdditional Context:\n{additional_context}\n"
    return prompt


def enhance_query_with_context(query: str, history: list[ChatMessage]) -> str:
    """Prefix a referential follow-up ("what about it?") with the last exchange."""
    if not history or not _REFERENCE_PATTERN.search(query):
        return query

    last_user = next((m.content for m in reversed(history) if m.role == Role.USER), "")
    last_assistant = next(
        (m.content for m in reversed(history) if m.role == Role.ASSISTANT), ""
    )
    if not (last_user or last_assistant):
        return query
    return f"Previous context: {last_user} {last_assistant}\n\nCurrent question: {query}"


class ConfidenceScorer:
    """Additive confidence for a grounded answer, capped at the policy ceiling.

    base + avg(similarity) * w_sim + min(n / saturation, 1) * w_src
    + length bonus + citation bonus.
    """

    def __init__(self, policy: ConfidencePolicy | None = None) -> None:
        self.policy = policy or ConfidencePolicy()

    def score(self, sources: list[Fragment], answer: str) -> float:
        policy = self.policy
        confidence = policy.base
        if sources:
            avg_similarity = sum(s.similarity_score for s in sources) / len(sources)
            confidence += avg_similarity * policy.similarity_weight
        confidence += min(len(sources) / policy.source_saturation, 1.0) * policy.source_weight
        if len(answer) > policy.length_threshold:
            confidence += policy.length_bonus
        if _CITATION_PATTERN.search(answer):
            confidence += policy.citation_bonus
        return min(confidence, policy.ceiling)


class RAGOrchestrator:
    """Expand, retrieve, pack context, generate and score one query.

    Zero retrieved fragments route to `FallbackResponder`. Retrieval
    failures surface as `RAGResponse.degraded` rather than exceptions.
    """

    def __init__(
        self,
        *,
        chat: AIChat,
        ranker: HybridRanker,
        assembler: ContextAssembler | None = None,
        expander: QueryExpander | None = None,
        fallback: FallbackResponder | None = None,
        confidence_policy: ConfidencePolicy | None = None,
    ) -> None:
        self.chat = chat
        self.ranker = ranker
        self.assembler = assembler or ContextAssembler()
        self.expander = expander or QueryExpander(chat)
        policy = confidence_policy or ConfidencePolicy()
        self.scorer = ConfidenceScorer(policy)
        self.fallback = fallback or FallbackResponder(chat, policy=policy)

    async def run(self, query: RAGQuery) -> RAGResponse:
        with Timer() as timer:
            expansion = await self.expander.expand(query.query, usage_tags=query.usage_tags)
            outcome = await self.ranker.retrieve(
                query.query,
                query.scope(),
                limit=query.max_sources,
                threshold=query.threshold,
            )

            if not outcome.fragments:
                logger.info(
                    "rag_no_matches",
                    degraded=outcome.degraded,
                    knowledge_base_id=query.knowledge_base_id,
                    project_id=query.project_id,
                )
                response = await self.fallback.respond(query, degraded=outcome.degraded)
            else:
                window = self.assembler.assemble(
                    outcome.fragments,
                    query.max_context_tokens,
                    max_sources=query.max_sources,
                )
                completion = await self.chat.chat(
                    ChatRequest(
                        messages=[
                            ChatMessage(
                                role=Role.SYSTEM,
                                content=build_system_prompt(window.text, query.context),
                            ),
                            ChatMessage(role=Role.USER, content=query.query),
                        ],
                        explicit_provider=query.provider,
                        criteria=query.criteria,
                        temperature=query.temperature,
                        max_tokens=query.max_tokens,
                        usage_tags=query.usage_tags,
                    )
                )
                response = RAGResponse(
                    answer=completion.content,
                    sources=window.sources,
                    context_used=window.text,
                    confidence=self.scorer.score(window.sources, completion.content),
                    provider=completion.provider,
                    tokens_used=completion.usage.total_tokens if completion.usage else None,
                    degraded=outcome.degraded,
                )

        logger.info(
            "rag_query_completed",
            provider=response.provider.value,
            intent=expansion.intent,
            source_count=len(response.sources),
            confidence=round(response.confidence, 3),
            degraded=response.degraded,
            latency_ms=round(timer.elapsed_ms, 1),
        )
        return response

    async def query_knowledge_base(
        self, knowledge_base_id: str, query: str, context: str = "", **options: Any
    ) -> RAGResponse:
        return await self.run(
            RAGQuery(query=query, context=context, knowledge_base_id=knowledge_base_id, **options)
        )

    async def query_project(
        self, project_id: str, query: str, context: str = "", **options: Any
    ) -> RAGResponse:
        return await self.run(
            RAGQuery(query=query, context=context, project_id=project_id, **options)
        )

    async def query_documents(
        self, document_ids: list[str], query: str, context: str = "", **options: Any
    ) -> RAGResponse:
        return await self.run(
            RAGQuery(query=query, context=context, document_ids=document_ids, **options)
        )

    async def conversational_query(
        self, query: str, history: list[ChatMessage], **options: Any
    ) -> RAGResponse:
        """Answer a follow-up using the last few turns as additional context."""
        conversation = "\n".join(
            f"{message.role.value}: {message.content}"
            for message in history[-HISTORY_WINDOW:]
        )
        return await self.run(
            RAGQuery(
                query=enhance_query_with_context(query, history),
                context=conversation,
                **options,
            )
        )

    async def multi_turn_query(
        self, query: str, previous_context: str, **options: Any
    ) -> RAGResponse:
        return await self.run(
            RAGQuery(
                query=f"{previous_context}\n\nNew question: {query}",
                context=previous_context,
                **options,
            )
        )
