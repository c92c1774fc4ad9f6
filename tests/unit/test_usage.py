import pytest

from conftest import FailingSink
from rag_assist.config import DEFAULT_PROVIDER_CONFIGS
from rag_assist.obs.usage import (
    InMemoryUsageSink,
    UsageAccountant,
    build_usage,
    estimate_token_count,
)
from rag_assist.types import ChatMessage, ChatResponse, ProviderId, Role, Usage, UsageTags

MESSAGES = [ChatMessage(role=Role.USER, content="How do refunds work?")]


def test_token_estimate_uses_denser_ratio_for_hangul() -> None:
    assert estimate_token_count("") == 0
    assert estimate_token_count("abcdefgh") == 2
    assert estimate_token_count("abcde") == 2
    assert estimate_token_count("안녕하세요") == 2


def test_cost_is_per_thousand_tokens() -> None:
    usage = build_usage(600, 400, DEFAULT_PROVIDER_CONFIGS["chatgpt"])

    assert usage.total_tokens == 1000
    assert usage.cost == pytest.approx(0.03)


@pytest.mark.asyncio
async def test_record_uses_reported_usage_and_tags() -> None:
    sink = InMemoryUsageSink()
    accountant = UsageAccountant(sink)
    response = ChatResponse(
        content="answer",
        provider=ProviderId.CLAUDE,
        usage=Usage(prompt_tokens=100, completion_tokens=50, total_tokens=150, cost=0.003),
    )

    record = await accountant.record(
        ProviderId.CLAUDE,
        MESSAGES,
        response,
        UsageTags(project_id="p-1", workflow_type="proposal", workflow_stage="draft"),
    )

    assert record is not None
    assert record.estimated is False
    assert record.total_tokens == 150
    assert record.model_name == DEFAULT_PROVIDER_CONFIGS["claude"].model_name
    assert sink.list_recent() == [record]
    assert record.workflow_stage == "draft"


@pytest.mark.asyncio
async def test_record_estimates_missing_usage() -> None:
    accountant = UsageAccountant()
    response = ChatResponse(content="x" * 40, provider=ProviderId.GEMINI)

    record = await accountant.record(ProviderId.GEMINI, MESSAGES, response)

    assert record.estimated is True
    assert record.prompt_tokens == estimate_token_count(MESSAGES[0].content)
    assert record.completion_tokens == 10


@pytest.mark.asyncio
async def test_failing_sink_is_swallowed() -> None:
    accountant = UsageAccountant(FailingSink())
    response = ChatResponse(content="ok", provider=ProviderId.GEMINI)

    assert await accountant.record(ProviderId.GEMINI, MESSAGES, response) is None

    accountant.submit(ProviderId.GEMINI, MESSAGES, response)
    await accountant.drain()


def test_submit_without_running_loop_does_not_raise() -> None:
    sink = InMemoryUsageSink()
    accountant = UsageAccountant(sink)

    accountant.submit(ProviderId.GEMINI, MESSAGES, ChatResponse(content="ok", provider=ProviderId.GEMINI))

    assert sink.list_recent() == []


@pytest.mark.asyncio
async def test_summaries_group_by_provider_and_workflow() -> None:
    sink = InMemoryUsageSink()
    accountant = UsageAccountant(sink)
    tags = UsageTags(project_id="p-1", workflow_type="rfp")
    for provider in (ProviderId.GEMINI, ProviderId.GEMINI, ProviderId.CLAUDE):
        usage = Usage(prompt_tokens=10, completion_tokens=10, total_tokens=20, cost=0.1)
        accountant.submit(provider, MESSAGES, ChatResponse("ok", provider, usage), tags)
    accountant.submit(
        ProviderId.CHATGPT,
        MESSAGES,
        ChatResponse("ok", ProviderId.CHATGPT, Usage(1, 1, 2, 0.01)),
    )
    await accountant.drain()

    session = sink.session_summary()
    project = sink.project_summary("p-1")

    assert session["total"]["calls"] == 4
    assert session["by_provider"]["gemini"]["total_tokens"] == 40
    assert project["total"]["calls"] == 3
    assert project["by_workflow"]["rfp"]["cost"] == pytest.approx(0.3)
