"""Catalog of tool descriptors that chat requests can offer by name."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from rag_assist.errors import ConfigurationError
from rag_assist.types import ToolRef


class ToolSpec(BaseModel):
    """A tool's name, purpose and argument schema.

    Only the descriptor is shared with providers; running the tool is up to
    the caller that receives the provider's tool request.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    description: str
    args_schema: type[BaseModel]
    tags: tuple[str, ...] = ()

    def as_tool_ref(self) -> ToolRef:
        return ToolRef(
            name=self.name,
            description=self.description,
            parameters=self.args_schema.model_json_schema(),
        )


class ToolRegistry:
    """Resolves requested tool names into provider-neutral descriptors."""

    def __init__(self, specs: list[ToolSpec] | None = None) -> None:
        self._tools: dict[str, ToolSpec] = {}
        for spec in specs or []:
            self.register(spec)

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def names(self) -> list[str]:
        return list(self._tools)

    def as_tool_refs(self, names: list[str] | None = None) -> list[ToolRef]:
        """Descriptors for `names` (all tools when omitted), in request order."""
        if names is None:
            return [spec.as_tool_ref() for spec in self._tools.values()]
        unknown = [name for name in names if name not in self._tools]
        if unknown:
            raise ConfigurationError(f"Unknown tool(s): {', '.join(unknown)}")
        return [self._tools[name].as_tool_ref() for name in names]
