from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest
from langchain_core.messages import BaseMessage

from rag_assist.agent.chat import AIChat
from rag_assist.config import DEFAULT_PROVIDER_CONFIGS, TimeoutConfig
from rag_assist.obs.usage import InMemoryUsageSink, UsageAccountant, UsageRecord
from rag_assist.providers.base import Completion, Delta, ProviderAdapter
from rag_assist.retrieval.store import StoredFragment, StoredHit
from rag_assist.types import GenerationParams, ProviderId, SearchScope


class FakeAdapter(ProviderAdapter):
    """Scriptable provider double that records calls and stream teardown."""

    def __init__(
        self,
        provider: ProviderId,
        *,
        reply: str | Callable[[list[BaseMessage]], str] = "Here is a helpful answer.",
        chunks: tuple[str, ...] = ("Hello", " there", ", friend", "!"),
        credentials: bool = True,
        fail: bool = False,
        fail_stream_at: int | None = None,
        usage: tuple[int, int] | None = (12, 8),
        delay: float = 0.0,
        stall_stream_at: int | None = None,
        timeouts: TimeoutConfig | None = None,
    ) -> None:
        super().__init__(provider, DEFAULT_PROVIDER_CONFIGS[provider.value], timeouts=timeouts)
        self.reply = reply
        self.chunks = chunks
        self.credentials = credentials
        self.fail = fail
        self.fail_stream_at = fail_stream_at
        self.usage = usage
        self.delay = delay
        self.stall_stream_at = stall_stream_at
        self.calls: list[list[BaseMessage]] = []
        self.params: list[GenerationParams] = []
        self.streams_opened = 0
        self.streams_closed = 0

    def has_credentials(self) -> bool:
        return self.credentials

    async def _complete(
        self, native: list[BaseMessage], params: GenerationParams
    ) -> Completion:
        self.calls.append(native)
        self.params.append(params)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("upstream unavailable")
        text = self.reply(native) if callable(self.reply) else self.reply
        prompt_tokens, completion_tokens = self.usage or (None, None)
        return Completion(
            text=text, prompt_tokens=prompt_tokens, completion_tokens=completion_tokens
        )

    async def _open_stream(self, native: list[BaseMessage], params: GenerationParams):
        self.calls.append(native)
        self.params.append(params)
        self.streams_opened += 1
        try:
            for index, text in enumerate(self.chunks):
                if self.fail or self.fail_stream_at == index:
                    raise RuntimeError("stream dropped")
                if self.stall_stream_at == index:
                    await asyncio.sleep(3600)
                yield Delta(text=text)
            if self.usage is not None:
                yield Delta(
                    prompt_tokens=self.usage[0],
                    completion_tokens=self.usage[1],
                    has_usage=True,
                )
        finally:
            self.streams_closed += 1


class StubStore:
    """Fragment store returning fixed rows; either route can fail or lag."""

    def __init__(
        self,
        vector_hits: list[StoredHit] | None = None,
        text_hits: list[StoredHit] | None = None,
        *,
        fail_vector: bool = False,
        fail_text: bool = False,
        delay_vector: float = 0.0,
        delay_text: float = 0.0,
        embeddings: dict[str, list[float]] | None = None,
    ) -> None:
        self.vector_hits = vector_hits or []
        self.text_hits = text_hits or []
        self.fail_vector = fail_vector
        self.fail_text = fail_text
        self.delay_vector = delay_vector
        self.delay_text = delay_text
        self.embeddings = embeddings or {}
        self.vector_requests: list[tuple[float, int, SearchScope]] = []

    async def nearest_neighbors(self, embedding, threshold, count, scope):
        self.vector_requests.append((threshold, count, scope))
        if self.delay_vector:
            await asyncio.sleep(self.delay_vector)
        if self.fail_vector:
            raise ConnectionError("vector index offline")
        return [hit for hit in self.vector_hits if hit.similarity >= threshold][:count]

    async def full_text_search(self, query_text, scope, limit):
        if self.delay_text:
            await asyncio.sleep(self.delay_text)
        if self.fail_text:
            raise ConnectionError("full-text index offline")
        return self.text_hits[:limit]

    async def fragment_embedding(self, fragment_id):
        if self.fail_vector:
            raise ConnectionError("vector index offline")
        return self.embeddings.get(fragment_id)


class FailingSink:
    async def write(self, record: UsageRecord) -> None:
        raise RuntimeError("usage table unavailable")


def stored(fragment_id: str, text: str, **kwargs) -> StoredFragment:
    return StoredFragment(id=fragment_id, text=text, **kwargs)


@pytest.fixture
def usage_sink() -> InMemoryUsageSink:
    return InMemoryUsageSink()


@pytest.fixture
def accountant(usage_sink: InMemoryUsageSink) -> UsageAccountant:
    return UsageAccountant(usage_sink)


@pytest.fixture
def adapters() -> dict[ProviderId, FakeAdapter]:
    return {provider: FakeAdapter(provider) for provider in ProviderId}


@pytest.fixture
def ai_chat(adapters: dict[ProviderId, FakeAdapter], accountant: UsageAccountant) -> AIChat:
    return AIChat(adapters, accountant=accountant)
