"""Deterministic provider selection."""

from __future__ import annotations

from dataclasses import dataclass

from rag_assist.schemas import SelectionCriteria
from rag_assist.types import ProviderId


@dataclass(slots=True, frozen=True)
class ModelSelectionPolicy:
    """Maps an explicit request or qualitative criteria to a provider.

    Rule order: explicit provider, tool use, creativity, cost priority,
    then the cost-efficient default. Pure: equal inputs give equal output.
    """

    tool_provider: ProviderId = ProviderId.CLAUDE
    creative_provider: ProviderId = ProviderId.CHATGPT
    cost_efficient_provider: ProviderId = ProviderId.GEMINI

    def select(
        self,
        explicit_provider: ProviderId | None = None,
        criteria: SelectionCriteria | None = None,
    ) -> ProviderId:
        if explicit_provider is not None:
            return ProviderId(explicit_provider)
        if criteria is None:
            return self.cost_efficient_provider
        if criteria.requires_tool_use:
            return self.tool_provider
        if criteria.needs_creativity:
            return self.creative_provider
        if criteria.cost_priority == "high":
            return self.cost_efficient_provider
        return self.cost_efficient_provider
