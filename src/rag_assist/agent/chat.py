"""Direct multi-provider chat with one-shot fallback and usage accounting."""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from typing import Any

from rag_assist.agent.registry import ToolRegistry
from rag_assist.errors import ConfigurationError, ProviderCallError
from rag_assist.obs.logging import get_logger
from rag_assist.obs.usage import Timer, UsageAccountant
from rag_assist.providers.base import ProviderAdapter
from rag_assist.providers.selection import ModelSelectionPolicy
from rag_assist.schemas import ChatRequest
from rag_assist.types import ChatResponse, GenerationParams, ProviderId, StreamChunk, ToolRef

logger = get_logger(__name__)


class AIChat:
    """Uniform `chat` / `stream_chat` over interchangeable provider adapters.

    Failure policy:
    - The selected provider must have a credential; otherwise
      `ConfigurationError` is raised immediately and no other provider is
      tried.
    - A `ProviderCallError` from the selected provider triggers exactly one
      retry against `default_provider`, provided it is a different provider
      and has a credential. Errors from that retry propagate unchanged.
    - Usage is submitted once per successful call, in the background.
    """

    def __init__(
        self,
        adapters: Mapping[ProviderId, ProviderAdapter],
        *,
        policy: ModelSelectionPolicy | None = None,
        default_provider: ProviderId = ProviderId.GEMINI,
        accountant: UsageAccountant | None = None,
        tool_registry: ToolRegistry | None = None,
    ) -> None:
        self.adapters = dict(adapters)
        self.policy = policy or ModelSelectionPolicy()
        self.default_provider = ProviderId(default_provider)
        self.accountant = accountant or UsageAccountant()
        self.tool_registry = tool_registry

    def available_providers(self) -> list[dict[str, Any]]:
        return [
            {
                "provider": provider.value,
                "model_name": adapter.config.model_name,
                "available": adapter.has_credentials(),
                "supports_tools": adapter.config.supports_tools,
                "cost_per_unit": adapter.config.cost_per_unit,
            }
            for provider, adapter in self.adapters.items()
        ]

    def select(self, request: ChatRequest) -> ProviderAdapter:
        provider = self.policy.select(request.explicit_provider, request.criteria)
        return self._require(provider)

    def prepare(
        self, request: ChatRequest
    ) -> tuple[ProviderAdapter, GenerationParams, list[ToolRef]]:
        """Select the provider and resolve parameters and tools for `request`.

        Raises `ConfigurationError` for a missing credential or an unknown
        tool name.
        """
        adapter = self.select(request)
        return adapter, self._params(adapter, request), self._tools(request)

    def _tools(self, request: ChatRequest) -> list[ToolRef]:
        tools = list(request.tools)
        if request.tool_names:
            if self.tool_registry is None:
                raise ConfigurationError("No tool registry is configured")
            tools.extend(self.tool_registry.as_tool_refs(request.tool_names))
        return tools

    def _require(self, provider: ProviderId) -> ProviderAdapter:
        adapter = self.adapters.get(provider)
        if adapter is None:
            raise ConfigurationError(f"Provider is not registered: {provider.value}")
        if not adapter.has_credentials():
            raise ConfigurationError(f"{provider.value} API key is not configured")
        return adapter

    def _fallback_for(self, failed: ProviderId) -> ProviderAdapter | None:
        if failed == self.default_provider:
            return None
        adapter = self.adapters.get(self.default_provider)
        if adapter is None or not adapter.has_credentials():
            return None
        return adapter

    @staticmethod
    def _params(adapter: ProviderAdapter, request: ChatRequest) -> GenerationParams:
        return adapter.resolve_params(
            temperature=request.temperature, max_tokens=request.max_tokens
        )

    async def chat(self, request: ChatRequest) -> ChatResponse:
        adapter, params, tools = self.prepare(request)

        with Timer() as timer:
            try:
                response = await adapter.chat(request.messages, params, tools)
            except ProviderCallError as exc:
                fallback = self._fallback_for(adapter.provider)
                logger.warning(
                    "provider_call_failed",
                    provider=adapter.provider.value,
                    error=str(exc),
                    fallback_provider=fallback.provider.value if fallback else None,
                )
                if fallback is None:
                    raise
                logger.info(
                    "provider_fallback",
                    from_provider=adapter.provider.value,
                    to_provider=fallback.provider.value,
                )
                response = await fallback.chat(request.messages, params, tools)

        self.accountant.submit(
            response.provider, request.messages, response, request.usage_tags
        )
        logger.info(
            "chat_completed",
            provider=response.provider.value,
            finish_reason=response.finish_reason,
            content_length=len(response.content),
            total_tokens=response.usage.total_tokens if response.usage else None,
            latency_ms=round(timer.elapsed_ms, 1),
        )
        return response

    async def stream_chat(self, request: ChatRequest) -> AsyncIterator[StreamChunk]:
        """Stream from the selected provider.

        Falls back to the default provider only when the selected provider
        fails before emitting any chunk. Closing this generator closes the
        active provider stream.
        """

        adapter, params, tools = self.prepare(request)

        stream = adapter.stream(request.messages, params, tools)
        emitted = False
        try:
            try:
                async for chunk in stream:
                    emitted = True
                    self._on_chunk(request, chunk)
                    yield chunk
            except ProviderCallError as exc:
                fallback = None if emitted else self._fallback_for(adapter.provider)
                logger.warning(
                    "provider_call_failed",
                    provider=adapter.provider.value,
                    error=str(exc),
                    streaming=True,
                    fallback_provider=fallback.provider.value if fallback else None,
                )
                if fallback is None:
                    raise
                logger.info(
                    "provider_fallback",
                    from_provider=adapter.provider.value,
                    to_provider=fallback.provider.value,
                    streaming=True,
                )
                fallback_stream = fallback.stream(request.messages, params, tools)
                try:
                    async for chunk in fallback_stream:
                        self._on_chunk(request, chunk)
                        yield chunk
                finally:
                    await fallback_stream.aclose()
        finally:
            await stream.aclose()

    def _on_chunk(self, request: ChatRequest, chunk: StreamChunk) -> None:
        if not chunk.done:
            return
        self.accountant.submit(
            chunk.provider,
            request.messages,
            ChatResponse(content="", provider=chunk.provider, usage=chunk.usage),
            request.usage_tags,
        )
