"""Provider adapters backed by LangChain chat models."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from typing import Any

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import BaseMessage

from rag_assist.config import DEFAULT_PROVIDER_CONFIGS, ProviderConfig, Settings, TimeoutConfig
from rag_assist.errors import ConfigurationError
from rag_assist.providers.base import Completion, Delta, ProviderAdapter, content_text
from rag_assist.types import GenerationParams, ProviderId

ModelFactory = Callable[[str], BaseChatModel]


class LangChainAdapter(ProviderAdapter):
    """Adapter over a LangChain `BaseChatModel`.

    The model is built lazily from `model_factory(api_key)` so that a
    provider without a credential never constructs a client. Pass `model`
    directly to reuse an existing chat model (tests, custom deployments).
    Per-call parameters are applied with `model_copy`, which keeps the
    underlying HTTP clients shared.
    """

    def __init__(
        self,
        provider: ProviderId,
        config: ProviderConfig,
        *,
        api_key: str | None = None,
        model_factory: ModelFactory | None = None,
        model: BaseChatModel | None = None,
        max_tokens_field: str = "max_tokens",
        timeouts: TimeoutConfig | None = None,
    ) -> None:
        super().__init__(provider, config, timeouts=timeouts)
        self._api_key = api_key
        self._model_factory = model_factory
        self._model = model
        self._max_tokens_field = max_tokens_field

    def has_credentials(self) -> bool:
        return self._model is not None or bool(self._api_key and self._model_factory)

    def _base_model(self) -> BaseChatModel:
        if self._model is None:
            if not self._api_key or self._model_factory is None:
                raise ConfigurationError(f"{self.provider.value} API key is not configured")
            self._model = self._model_factory(self._api_key)
        return self._model

    def _model_for(self, params: GenerationParams) -> BaseChatModel:
        model = self._base_model()
        fields = type(model).model_fields
        # Provider-specific extras apply only where the model declares the field.
        candidates = {
            **params.extra,
            "temperature": params.temperature,
            self._max_tokens_field: params.max_tokens,
            "top_p": params.top_p,
        }
        update = {
            name: value
            for name, value in candidates.items()
            if name in fields and value is not None
        }
        return model.model_copy(update=update) if update else model

    async def _complete(
        self, native: list[BaseMessage], params: GenerationParams
    ) -> Completion:
        message = await self._model_for(params).ainvoke(native)
        usage = getattr(message, "usage_metadata", None) or {}
        metadata = getattr(message, "response_metadata", None) or {}
        return Completion(
            text=content_text(message.content),
            prompt_tokens=usage.get("input_tokens") if usage else None,
            completion_tokens=usage.get("output_tokens") if usage else None,
            finish_reason=str(
                metadata.get("finish_reason") or metadata.get("stop_reason") or "stop"
            ),
        )

    async def _open_stream(
        self, native: list[BaseMessage], params: GenerationParams
    ) -> AsyncIterator[Delta]:
        stream = self._model_for(params).astream(native)
        try:
            async for chunk in stream:
                usage = getattr(chunk, "usage_metadata", None) or {}
                yield Delta(
                    text=content_text(chunk.content),
                    prompt_tokens=int(usage.get("input_tokens", 0)),
                    completion_tokens=int(usage.get("output_tokens", 0)),
                    has_usage=bool(usage),
                )
        finally:
            await stream.aclose()


def _gemini_factory(config: ProviderConfig) -> ModelFactory:
    def _build(api_key: str) -> BaseChatModel:
        from langchain_google_genai import ChatGoogleGenerativeAI

        return ChatGoogleGenerativeAI(
            model=config.model_name,
            google_api_key=api_key,
            temperature=config.temperature,
            max_output_tokens=config.max_tokens,
            top_p=config.top_p,
            top_k=config.extra_params.get("top_k"),
        )

    return _build


def _openai_factory(config: ProviderConfig) -> ModelFactory:
    def _build(api_key: str) -> BaseChatModel:
        from langchain_openai import ChatOpenAI

        return ChatOpenAI(
            model=config.model_name,
            api_key=api_key,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            top_p=config.top_p,
            presence_penalty=config.extra_params.get("presence_penalty"),
            frequency_penalty=config.extra_params.get("frequency_penalty"),
            stream_usage=True,
        )

    return _build


def _claude_factory(config: ProviderConfig) -> ModelFactory:
    def _build(api_key: str) -> BaseChatModel:
        from langchain_anthropic import ChatAnthropic

        return ChatAnthropic(
            model=config.model_name,
            api_key=api_key,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            top_p=config.top_p,
        )

    return _build


def create_gemini_adapter(
    api_key: str | None, config: ProviderConfig | None = None, **kwargs: Any
) -> LangChainAdapter:
    config = config or DEFAULT_PROVIDER_CONFIGS[ProviderId.GEMINI.value]
    return LangChainAdapter(
        ProviderId.GEMINI,
        config,
        api_key=api_key,
        model_factory=_gemini_factory(config),
        max_tokens_field="max_output_tokens",
        **kwargs,
    )


def create_openai_adapter(
    api_key: str | None, config: ProviderConfig | None = None, **kwargs: Any
) -> LangChainAdapter:
    config = config or DEFAULT_PROVIDER_CONFIGS[ProviderId.CHATGPT.value]
    return LangChainAdapter(
        ProviderId.CHATGPT,
        config,
        api_key=api_key,
        model_factory=_openai_factory(config),
        **kwargs,
    )


def create_claude_adapter(
    api_key: str | None, config: ProviderConfig | None = None, **kwargs: Any
) -> LangChainAdapter:
    config = config or DEFAULT_PROVIDER_CONFIGS[ProviderId.CLAUDE.value]
    return LangChainAdapter(
        ProviderId.CLAUDE,
        config,
        api_key=api_key,
        model_factory=_claude_factory(config),
        **kwargs,
    )


def build_default_adapters(
    settings: Settings,
    *,
    configs: dict[str, ProviderConfig] | None = None,
    timeouts: TimeoutConfig | None = None,
) -> dict[ProviderId, ProviderAdapter]:
    configs = configs or DEFAULT_PROVIDER_CONFIGS
    return {
        ProviderId.GEMINI: create_gemini_adapter(
            settings.api_key_for("gemini"), configs["gemini"], timeouts=timeouts
        ),
        ProviderId.CHATGPT: create_openai_adapter(
            settings.api_key_for("chatgpt"), configs["chatgpt"], timeouts=timeouts
        ),
        ProviderId.CLAUDE: create_claude_adapter(
            settings.api_key_for("claude"), configs["claude"], timeouts=timeouts
        ),
    }
