"""Error types raised across the RAG and chat layers."""

from __future__ import annotations


class RagAssistError(Exception):
    """Base class for all package errors."""


class ConfigurationError(RagAssistError):
    """A provider is missing its credential or is otherwise misconfigured."""


class ProviderCallError(RagAssistError):
    """A language-model provider failed while serving a call."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class RetrievalError(RagAssistError):
    """Embedding or search backend failure; never escapes a retriever."""


class ExpansionParseError(RagAssistError):
    """The query-expansion reply did not match the expected schema."""


class UsageLoggingError(RagAssistError):
    """A usage record could not be written."""
