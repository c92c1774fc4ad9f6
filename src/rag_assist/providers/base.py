"""Uniform provider adapter contract for chat and streaming chat."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from langchain_core.messages import BaseMessage

from rag_assist.config import ProviderConfig, TimeoutConfig
from rag_assist.errors import ConfigurationError, ProviderCallError
from rag_assist.obs.usage import build_usage, estimate_token_count
from rag_assist.providers.formatters import MessageFormatter, get_formatter
from rag_assist.types import (
    ChatMessage,
    ChatResponse,
    GenerationParams,
    ProviderId,
    StreamChunk,
    ToolRef,
    Usage,
)


@dataclass(slots=True)
class Completion:
    """Raw provider reply before usage/cost normalization."""

    text: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    finish_reason: str = "stop"


@dataclass(slots=True)
class Delta:
    """One raw streaming increment; token counts are summed across deltas."""

    text: str = ""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    has_usage: bool = False


class ProviderAdapter(ABC):
    """Base class for one language-model provider.

    Subclasses implement `_complete` and `_open_stream` against their SDK;
    this class applies message formatting, call deadlines, error translation
    to `ProviderCallError`, usage/cost normalization and stream teardown.
    """

    def __init__(
        self,
        provider: ProviderId,
        config: ProviderConfig,
        *,
        formatter: MessageFormatter | None = None,
        timeouts: TimeoutConfig | None = None,
    ) -> None:
        self.provider = provider
        self.config = config
        self.formatter = formatter or get_formatter(provider)
        self.timeouts = timeouts or TimeoutConfig()

    @abstractmethod
    def has_credentials(self) -> bool:
        """Whether a credential is configured for this provider."""

    @abstractmethod
    async def _complete(
        self, native: list[BaseMessage], params: GenerationParams
    ) -> Completion:
        """Run one non-streaming completion."""

    @abstractmethod
    def _open_stream(
        self, native: list[BaseMessage], params: GenerationParams
    ) -> AsyncIterator[Delta]:
        """Open a streaming completion; the iterator owns the connection."""

    def resolve_params(
        self, *, temperature: float | None = None, max_tokens: int | None = None
    ) -> GenerationParams:
        return GenerationParams(
            max_tokens=max_tokens if max_tokens is not None else self.config.max_tokens,
            temperature=temperature if temperature is not None else self.config.temperature,
            top_p=self.config.top_p,
            extra=dict(self.config.extra_params),
        )

    def usage_for(self, prompt_tokens: int, completion_tokens: int) -> Usage:
        return build_usage(prompt_tokens, completion_tokens, self.config)

    async def chat(
        self,
        messages: list[ChatMessage],
        params: GenerationParams,
        tools: list[ToolRef] | None = None,
    ) -> ChatResponse:
        native = self.formatter.to_provider_messages(messages, list(tools or []))
        try:
            completion = await asyncio.wait_for(
                self._complete(native, params), timeout=self.timeouts.provider_seconds
            )
        except (ProviderCallError, ConfigurationError):
            raise
        except asyncio.TimeoutError as exc:
            raise ProviderCallError(self.provider.value, "call timed out") from exc
        except Exception as exc:
            raise ProviderCallError(self.provider.value, str(exc) or type(exc).__name__) from exc

        usage = None
        if completion.prompt_tokens is not None or completion.completion_tokens is not None:
            usage = self.usage_for(
                completion.prompt_tokens or 0, completion.completion_tokens or 0
            )
        return ChatResponse(
            content=completion.text,
            provider=self.provider,
            usage=usage,
            finish_reason=completion.finish_reason,
        )

    async def stream(
        self,
        messages: list[ChatMessage],
        params: GenerationParams,
        tools: list[ToolRef] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Yield content chunks, then exactly one `done=True` chunk with usage.

        Closing this generator (e.g. `contextlib.aclosing` or `aclose()`)
        closes the underlying provider stream before returning.
        """

        native = self.formatter.to_provider_messages(messages, list(tools or []))
        raw = self._open_stream(native, params)
        parts: list[str] = []
        prompt_tokens = completion_tokens = 0
        has_usage = False
        try:
            while True:
                try:
                    delta = await asyncio.wait_for(
                        anext(raw), timeout=self.timeouts.provider_seconds
                    )
                except StopAsyncIteration:
                    break
                except (ProviderCallError, ConfigurationError):
                    raise
                except asyncio.TimeoutError as exc:
                    raise ProviderCallError(self.provider.value, "stream timed out") from exc
                except Exception as exc:
                    raise ProviderCallError(
                        self.provider.value, str(exc) or type(exc).__name__
                    ) from exc

                if delta.has_usage:
                    has_usage = True
                    prompt_tokens += delta.prompt_tokens
                    completion_tokens += delta.completion_tokens
                if delta.text:
                    parts.append(delta.text)
                    yield StreamChunk(chunk=delta.text, done=False, provider=self.provider)

            if not has_usage:
                prompt_tokens = estimate_token_count(_prompt_text(native))
                completion_tokens = estimate_token_count("".join(parts))
            yield StreamChunk(
                chunk="",
                done=True,
                provider=self.provider,
                usage=self.usage_for(prompt_tokens, completion_tokens),
            )
        finally:
            aclose = getattr(raw, "aclose", None)
            if aclose is not None:
                await aclose()


def _prompt_text(native: list[BaseMessage]) -> str:
    return "\n".join(content_text(message.content) for message in native)


def content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for item in content or []:
        if isinstance(item, dict):
            if item.get("type", "text") == "text" and "text" in item:
                parts.append(str(item["text"]))
        else:
            parts.append(str(item))
    return "".join(parts)
