"""Usage accounting: token/cost records written off the response path."""

from __future__ import annotations

import asyncio
import math
import re
import time
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

from rag_assist.config import DEFAULT_PROVIDER_CONFIGS, ProviderConfig
from rag_assist.errors import UsageLoggingError
from rag_assist.obs.logging import get_logger
from rag_assist.types import ChatMessage, ChatResponse, ProviderId, Usage, UsageTags

logger = get_logger(__name__)

_HANGUL_PATTERN = re.compile(r"[ㄱ-ㅎㅏ-ㅣ가-힣]")


def estimate_token_count(text: str) -> int:
    """Rough token estimate: 4 chars per token, 2.5 when Hangul is present."""
    if not text:
        return 0
    chars_per_token = 2.5 if _HANGUL_PATTERN.search(text) else 4.0
    return math.ceil(len(text) / chars_per_token)


def calculate_cost(total_tokens: int, config: ProviderConfig) -> float:
    return (total_tokens / 1000.0) * config.cost_per_unit


def build_usage(
    prompt_tokens: int, completion_tokens: int, config: ProviderConfig
) -> Usage:
    total = prompt_tokens + completion_tokens
    return Usage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=total,
        cost=calculate_cost(total, config),
    )


@dataclass(slots=True)
class UsageRecord:
    record_id: str
    timestamp_utc: str
    provider: str
    model_name: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    cost: float
    estimated: bool
    project_id: str | None = None
    conversation_id: str | None = None
    workflow_type: str | None = None
    workflow_stage: str | None = None


class UsageSink(Protocol):
    """Persistence target for usage records."""

    async def write(self, record: UsageRecord) -> None:
        """Persist one record."""


class InMemoryUsageSink:
    """Usage storage for tests, local runs and the API's `/usage` view."""

    def __init__(self) -> None:
        self._records: list[UsageRecord] = []

    async def write(self, record: UsageRecord) -> None:
        self._records.append(record)

    def list_recent(self, limit: int = 20) -> list[UsageRecord]:
        return self._records[-limit:]

    def summary(self, project_id: str | None = None) -> dict[str, object]:
        """Aggregate totals, per-provider and per-workflow usage."""
        records = [
            record
            for record in self._records
            if project_id is None or record.project_id == project_id
        ]
        return {
            "total": _aggregate(records),
            "by_provider": _group(records, lambda r: r.provider),
            "by_workflow": _group(
                (r for r in records if r.workflow_type), lambda r: r.workflow_type
            ),
        }

    def session_summary(self) -> dict[str, object]:
        summary = self.summary()
        return {"total": summary["total"], "by_provider": summary["by_provider"]}

    def project_summary(self, project_id: str) -> dict[str, object]:
        return self.summary(project_id=project_id)


def _aggregate(records: Iterable[UsageRecord]) -> dict[str, float | int]:
    totals: dict[str, float | int] = {
        "calls": 0,
        "prompt_tokens": 0,
        "completion_tokens": 0,
        "total_tokens": 0,
        "cost": 0.0,
    }
    for record in records:
        totals["calls"] += 1
        totals["prompt_tokens"] += record.prompt_tokens
        totals["completion_tokens"] += record.completion_tokens
        totals["total_tokens"] += record.total_tokens
        totals["cost"] += record.cost
    return totals


def _group(records, key) -> dict[str, dict[str, float | int]]:
    buckets: dict[str, list[UsageRecord]] = {}
    for record in records:
        buckets.setdefault(str(key(record)), []).append(record)
    return {name: _aggregate(items) for name, items in buckets.items()}


class UsageAccountant:
    """Best-effort usage recorder.

    `record` never raises: every failure (token estimation, cost lookup, sink
    write) is logged and swallowed. `submit` schedules `record` as a
    background task so the caller's response never waits on persistence.
    """

    def __init__(
        self,
        sink: UsageSink | None = None,
        *,
        provider_configs: dict[str, ProviderConfig] | None = None,
    ) -> None:
        self.sink = sink if sink is not None else InMemoryUsageSink()
        self._configs = provider_configs or DEFAULT_PROVIDER_CONFIGS
        self._pending: set[asyncio.Task[UsageRecord | None]] = set()

    def build_record(
        self,
        provider: ProviderId,
        messages: list[ChatMessage],
        response: ChatResponse,
        tags: UsageTags | None = None,
    ) -> UsageRecord:
        config = self._configs[provider.value]
        usage = response.usage
        estimated = usage is None
        if usage is None:
            prompt_text = "\n".join(message.content for message in messages)
            usage = build_usage(
                estimate_token_count(prompt_text),
                estimate_token_count(response.content),
                config,
            )
        tags = tags or UsageTags()
        return UsageRecord(
            record_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            provider=provider.value,
            model_name=config.model_name,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
            cost=usage.cost,
            estimated=estimated,
            project_id=tags.project_id,
            conversation_id=tags.conversation_id,
            workflow_type=tags.workflow_type,
            workflow_stage=tags.workflow_stage,
        )

    async def record(
        self,
        provider: ProviderId,
        messages: list[ChatMessage],
        response: ChatResponse,
        tags: UsageTags | None = None,
    ) -> UsageRecord | None:
        try:
            record = self.build_record(provider, messages, response, tags)
            try:
                await self.sink.write(record)
            except Exception as exc:
                raise UsageLoggingError(str(exc)) from exc
        except Exception as exc:
            logger.warning(
                "usage_record_failed",
                provider=provider.value,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None
        return record

    def submit(
        self,
        provider: ProviderId,
        messages: list[ChatMessage],
        response: ChatResponse,
        tags: UsageTags | None = None,
    ) -> None:
        """Fire-and-forget `record`; safe to call from any coroutine."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as exc:
            logger.warning("usage_record_failed", provider=provider.value, error=str(exc))
            return
        try:
            task = loop.create_task(self.record(provider, list(messages), response, tags))
        except Exception as exc:
            logger.warning("usage_record_failed", provider=provider.value, error=str(exc))
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for outstanding background records (tests and shutdown)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class Timer:
    """Simple context timer used around provider calls."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
