import itertools

import pytest

from rag_assist.agent.orchestrator import ConfidenceScorer, enhance_query_with_context
from rag_assist.types import ChatMessage, Fragment, Role


def _sources(*scores: float) -> list[Fragment]:
    return [
        Fragment(id=f"f{i}", text="text", metadata={}, similarity_score=score)
        for i, score in enumerate(scores)
    ]


def test_additive_terms() -> None:
    scorer = ConfidenceScorer()

    assert scorer.score([], "") == pytest.approx(0.5)
    assert scorer.score(_sources(0.9), "short") == pytest.approx(0.5 + 0.27 + 0.02)
    long_cited = "According to the handbook, " + "x" * 100
    assert scorer.score(_sources(0.8, 0.6), long_cited) == pytest.approx(
        0.5 + 0.21 + 0.04 + 0.1 + 0.05
    )


def test_citation_match_is_case_insensitive() -> None:
    scorer = ConfidenceScorer()

    assert scorer.score([], "Based On the policy") == pytest.approx(0.55)


def test_confidence_stays_in_range() -> None:
    scorer = ConfidenceScorer()
    answers = ["", "ok", "based on " + "y" * 200]
    for count, similarity, answer in itertools.product(range(0, 9), (0.0, 0.6, 1.0), answers):
        value = scorer.score(_sources(*([similarity] * count)), answer)
        assert 0.5 <= value <= 1.0


def test_reference_pattern_prefixes_last_exchange() -> None:
    history = [
        ChatMessage(role=Role.USER, content="What is the refund window?"),
        ChatMessage(role=Role.ASSISTANT, content="30 days."),
    ]

    assert enhance_query_with_context("Does it apply to sales?", history) == (
        "Previous context: What is the refund window? 30 days.\n\n"
        "Current question: Does it apply to sales?"
    )
    assert enhance_query_with_context("Any shipping fees?", history) == "Any shipping fees?"
    assert enhance_query_with_context("Does it apply?", []) == "Does it apply?"
