from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from rag_assist.providers.formatters import (
    PromptFoldFormatter,
    RoleMessageFormatter,
    SystemFieldFormatter,
    get_formatter,
)
from rag_assist.types import ChatMessage, ProviderId, Role, ToolRef

CONVERSATION = [
    ChatMessage(role=Role.SYSTEM, content="Be brief."),
    ChatMessage(role=Role.USER, content="Hi"),
    ChatMessage(role=Role.ASSISTANT, content="Hello!"),
    ChatMessage(role=Role.USER, content="What is RAG?"),
]

LOOKUP = ToolRef(
    name="lookup",
    description="Find a document",
    parameters={"type": "object", "properties": {"q": {"type": "string"}}},
)


def test_prompt_fold_has_no_system_role() -> None:
    native = PromptFoldFormatter().to_provider_messages(CONVERSATION, [LOOKUP])

    assert len(native) == 1
    assert isinstance(native[0], HumanMessage)
    prompt = native[0].content
    assert prompt.startswith("Be brief.")
    assert "- lookup: Find a document" in prompt
    assert "User: Hi\n\nAssistant: Hello!\n\nUser: What is RAG?" in prompt


def test_role_messages_keep_system_turn() -> None:
    native = RoleMessageFormatter().to_provider_messages(CONVERSATION)

    assert [type(item) for item in native] == [SystemMessage, HumanMessage, AIMessage, HumanMessage]
    assert native[0].content == "Be brief."


def test_system_field_merges_consecutive_turns() -> None:
    messages = [
        ChatMessage(role=Role.ASSISTANT, content="Earlier answer"),
        ChatMessage(role=Role.USER, content="First"),
        ChatMessage(role=Role.SYSTEM, content="Be brief."),
        ChatMessage(role=Role.USER, content="Second"),
    ]

    native = SystemFieldFormatter().to_provider_messages(messages, [LOOKUP])

    assert isinstance(native[0], SystemMessage)
    assert "lookup" in native[0].content
    roles = [type(item) for item in native[1:]]
    assert roles == [HumanMessage, AIMessage, HumanMessage]
    assert native[-1].content == "First\n\nSecond"


def test_registry_covers_every_provider() -> None:
    assert isinstance(get_formatter(ProviderId.GEMINI), PromptFoldFormatter)
    assert isinstance(get_formatter(ProviderId.CHATGPT), RoleMessageFormatter)
    assert isinstance(get_formatter(ProviderId.CLAUDE), SystemFieldFormatter)
