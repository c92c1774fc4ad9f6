"""Per-provider message formatting.

Each provider receives the same conversation in its own native shape:

* `PromptFoldFormatter` - no system role; instructions are prepended to one
  `User:`/`Assistant:` transcript sent as a single human message.
* `RoleMessageFormatter` - one leading system-role message, turns unchanged.
* `SystemFieldFormatter` - the system text travels as a distinct leading
  system field and the conversation must strictly alternate, so consecutive
  same-role turns are merged.

When tools are offered, their descriptors are rendered into the
instruction channel of every format.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from rag_assist.types import ChatMessage, ProviderId, Role, ToolRef


def render_tool_instructions(tools: list[ToolRef]) -> str:
    if not tools:
        return ""
    lines = ["Available tools (request one by name with JSON arguments):"]
    for tool in tools:
        lines.append(f"- {tool.name}: {tool.description}")
        if tool.parameters:
            lines.append(f"  parameters: {json.dumps(tool.parameters, sort_keys=True)}")
    return "\n".join(lines)


def instruction_text(messages: list[ChatMessage], tools: list[ToolRef]) -> str:
    """Concatenate all system turns and the tool block into one instruction."""
    parts = [message.content for message in messages if message.role is Role.SYSTEM]
    tool_block = render_tool_instructions(tools)
    if tool_block:
        parts.append(tool_block)
    return "\n\n".join(part for part in parts if part)


def _conversation(messages: list[ChatMessage]) -> list[ChatMessage]:
    return [message for message in messages if message.role is not Role.SYSTEM]


def _to_langchain(message: ChatMessage) -> BaseMessage:
    if message.role is Role.ASSISTANT:
        return AIMessage(content=message.content)
    return HumanMessage(content=message.content)


class MessageFormatter(ABC):
    """Converts the uniform message list into a provider's native messages."""

    @abstractmethod
    def to_provider_messages(
        self, messages: list[ChatMessage], tools: list[ToolRef] | None = None
    ) -> list[BaseMessage]:
        """Return messages ready for the provider's chat model."""


class PromptFoldFormatter(MessageFormatter):
    def to_provider_messages(
        self, messages: list[ChatMessage], tools: list[ToolRef] | None = None
    ) -> list[BaseMessage]:
        instructions = instruction_text(messages, list(tools or []))
        transcript = "\n\n".join(
            f"{'Assistant' if message.role is Role.ASSISTANT else 'User'}: {message.content}"
            for message in _conversation(messages)
        )
        prompt = f"{instructions}\n\n{transcript}" if instructions else transcript
        return [HumanMessage(content=prompt)]


class RoleMessageFormatter(MessageFormatter):
    def to_provider_messages(
        self, messages: list[ChatMessage], tools: list[ToolRef] | None = None
    ) -> list[BaseMessage]:
        instructions = instruction_text(messages, list(tools or []))
        native: list[BaseMessage] = []
        if instructions:
            native.append(SystemMessage(content=instructions))
        native.extend(_to_langchain(message) for message in _conversation(messages))
        return native


class SystemFieldFormatter(MessageFormatter):
    def to_provider_messages(
        self, messages: list[ChatMessage], tools: list[ToolRef] | None = None
    ) -> list[BaseMessage]:
        instructions = instruction_text(messages, list(tools or []))
        merged: list[ChatMessage] = []
        for message in _conversation(messages):
            if merged and merged[-1].role is message.role:
                merged[-1] = ChatMessage(
                    role=message.role,
                    content=f"{merged[-1].content}\n\n{message.content}",
                )
            else:
                merged.append(message)
        if merged and merged[0].role is Role.ASSISTANT:
            merged.insert(0, ChatMessage(role=Role.USER, content="(conversation continues)"))

        native: list[BaseMessage] = []
        if instructions:
            native.append(SystemMessage(content=instructions))
        native.extend(_to_langchain(message) for message in merged)
        return native


FORMATTERS: dict[ProviderId, MessageFormatter] = {
    ProviderId.GEMINI: PromptFoldFormatter(),
    ProviderId.CHATGPT: RoleMessageFormatter(),
    ProviderId.CLAUDE: SystemFieldFormatter(),
}


def get_formatter(provider: ProviderId) -> MessageFormatter:
    try:
        return FORMATTERS[provider]
    except KeyError as exc:
        raise KeyError(f"No message formatter registered for provider: {provider}") from exc
