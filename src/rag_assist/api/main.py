"""FastAPI entrypoint for chat, RAG query, search and usage endpoints."""

from __future__ import annotations

import json
from contextlib import aclosing
from dataclasses import asdict, dataclass
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from rag_assist.agent.chat import AIChat
from rag_assist.agent.orchestrator import RAGOrchestrator
from rag_assist.agent.registry import ToolRegistry
from rag_assist.config import Settings, get_settings
from rag_assist.errors import ConfigurationError, ProviderCallError, RagAssistError
from rag_assist.obs.logging import configure_logging
from rag_assist.obs.usage import InMemoryUsageSink, UsageAccountant
from rag_assist.providers.langchain_adapter import build_default_adapters
from rag_assist.retrieval.embedder import Embedder, HashingEmbedder, create_openai_embedder
from rag_assist.retrieval.fusion import HybridRanker
from rag_assist.retrieval.keyword import KeywordRetriever
from rag_assist.retrieval.semantic import SemanticRetriever
from rag_assist.retrieval.store import FragmentStore, InMemoryFragmentStore
from rag_assist.schemas import ChatRequest, RAGQuery
from rag_assist.types import Fragment, ProviderId, SearchScope


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    knowledge_base_id: str | None = None
    project_id: str | None = None
    document_ids: list[str] = Field(default_factory=list)
    limit: int = Field(default=5, ge=1, le=50)
    threshold: float = Field(default=0.6, ge=0.0, le=1.0)


@dataclass(slots=True)
class Services:
    """Wired components behind the HTTP surface."""

    chat: AIChat
    ranker: HybridRanker
    orchestrator: RAGOrchestrator
    usage_sink: InMemoryUsageSink
    tool_registry: ToolRegistry


def _create_embedder(settings: Settings) -> Embedder:
    if not settings.openai_api_key:
        return HashingEmbedder()
    return create_openai_embedder(settings.openai_api_key, settings.embedding_model)


def build_services(
    settings: Settings | None = None,
    *,
    store: FragmentStore | None = None,
    embedder: Embedder | None = None,
    tool_registry: ToolRegistry | None = None,
) -> Services:
    settings = settings or get_settings()
    store = store if store is not None else InMemoryFragmentStore()
    embedder = embedder or _create_embedder(settings)

    usage_sink = InMemoryUsageSink()
    tool_registry = tool_registry or ToolRegistry()
    chat = AIChat(
        build_default_adapters(settings),
        default_provider=ProviderId(settings.rag_default_provider),
        accountant=UsageAccountant(usage_sink),
        tool_registry=tool_registry,
    )
    ranker = HybridRanker(SemanticRetriever(store, embedder), KeywordRetriever(store))
    orchestrator = RAGOrchestrator(chat=chat, ranker=ranker)
    return Services(
        chat=chat,
        ranker=ranker,
        orchestrator=orchestrator,
        usage_sink=usage_sink,
        tool_registry=tool_registry,
    )


def _fragment_item(fragment: Fragment) -> dict[str, Any]:
    return {
        "id": fragment.id,
        "score": fragment.score,
        "similarity_score": fragment.similarity_score,
        "text": fragment.text,
        "document_id": fragment.source_document_id,
        "document_name": fragment.source_document_name,
        "metadata": fragment.metadata,
    }


def _sse(payload: Any) -> str:
    return f"data: {json.dumps(jsonable_encoder(payload))}\n\n"


def create_app(services: Services | None = None) -> FastAPI:
    services = services or build_services()
    app = FastAPI(title="RAG Assist", version="0.1.0")

    @app.exception_handler(ConfigurationError)
    async def _configuration_error(_: Request, exc: ConfigurationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(ProviderCallError)
    async def _provider_error(_: Request, exc: ProviderCallError) -> JSONResponse:
        return JSONResponse(
            status_code=502, content={"detail": str(exc), "provider": exc.provider}
        )

    @app.get("/health")
    def health() -> dict[str, Any]:
        providers = services.chat.available_providers()
        return {
            "status": "ok",
            "default_provider": services.chat.default_provider.value,
            "configured_providers": [p["provider"] for p in providers if p["available"]],
        }

    @app.get("/models")
    def models() -> dict[str, Any]:
        return {"items": services.chat.available_providers()}

    @app.get("/tools")
    def tools() -> dict[str, Any]:
        return {"items": jsonable_encoder(services.tool_registry.as_tool_refs())}

    @app.post("/chat")
    async def chat(request: ChatRequest) -> Any:
        if not request.streaming:
            return jsonable_encoder(await services.chat.chat(request))

        # Surface selection, credential and tool errors before the stream starts.
        services.chat.prepare(request)

        async def events():
            async with aclosing(services.chat.stream_chat(request)) as stream:
                try:
                    async for chunk in stream:
                        yield _sse(chunk)
                except RagAssistError as exc:
                    yield _sse({"error": str(exc)})
            yield "data: [DONE]\n\n"

        return StreamingResponse(events(), media_type="text/event-stream")

    @app.post("/rag/query")
    async def rag_query(query: RAGQuery) -> dict[str, Any]:
        return jsonable_encoder(await services.orchestrator.run(query))

    @app.post("/rag/search")
    async def rag_search(request: SearchRequest) -> dict[str, Any]:
        try:
            scope = SearchScope(
                knowledge_base_id=request.knowledge_base_id,
                project_id=request.project_id,
                document_ids=tuple(request.document_ids),
            )
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

        outcome = await services.ranker.retrieve(
            request.query, scope, limit=request.limit, threshold=request.threshold
        )
        return {
            "items": [_fragment_item(fragment) for fragment in outcome.fragments],
            "degraded": outcome.degraded,
        }

    @app.get("/rag/fragments/{fragment_id}/similar")
    async def rag_similar(
        fragment_id: str,
        knowledge_base_id: str | None = None,
        limit: int = Query(default=5, ge=1, le=50),
        threshold: float = Query(default=0.6, ge=0.0, le=1.0),
    ) -> dict[str, Any]:
        outcome = await services.ranker.semantic.similar_to(
            fragment_id,
            SearchScope(knowledge_base_id=knowledge_base_id),
            limit=limit,
            threshold=threshold,
        )
        return {
            "items": [_fragment_item(fragment) for fragment in outcome.fragments],
            "degraded": outcome.degraded,
        }

    @app.get("/usage")
    def usage(project_id: str | None = None, limit: int = 20) -> dict[str, Any]:
        records = [asdict(record) for record in services.usage_sink.list_recent(limit=limit)]
        return {
            "summary": services.usage_sink.summary(project_id=project_id),
            "items": records,
        }

    return app


def _create_default_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level, json=settings.log_json)
    return create_app(build_services(settings))


app = _create_default_app()
