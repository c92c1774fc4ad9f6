"""Token-bounded context packing."""

from __future__ import annotations

import math

from rag_assist.config import ContextConfig
from rag_assist.types import ContextWindow, Fragment

DEFAULT_SOURCE_NAME = "Knowledge Base"


def format_source(fragment: Fragment) -> str:
    name = fragment.source_document_name or DEFAULT_SOURCE_NAME
    return f"Source: {name}\n{fragment.text}\n\n"


class ContextAssembler:
    """Greedily packs ranked fragments into a context window.

    Packing is a strict prefix: fragments are taken in rank order and packing
    stops at the first one whose formatted text would push the running token
    estimate past the budget. Smaller fragments further down are not tried.
    """

    def __init__(self, config: ContextConfig | None = None) -> None:
        self.config = config or ContextConfig()

    def estimate_tokens(self, text: str) -> int:
        return math.ceil(len(text) / self.config.chars_per_token)

    def assemble(
        self,
        fragments: list[Fragment],
        token_budget: int | None = None,
        *,
        max_sources: int | None = None,
    ) -> ContextWindow:
        budget = token_budget or self.config.token_budget
        cap = max_sources or self.config.max_sources
        ranked = sorted(fragments, key=lambda item: item.score, reverse=True)

        total = 0
        parts: list[str] = []
        sources: list[Fragment] = []
        for fragment in ranked[:cap]:
            source_text = format_source(fragment)
            cost = self.estimate_tokens(source_text)
            if total + cost > budget:
                break
            parts.append(source_text)
            sources.append(fragment)
            total += cost

        return ContextWindow(text="".join(parts), sources=sources, estimated_token_count=total)
