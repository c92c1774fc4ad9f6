"""RAG Assist package."""

from .config import ContextConfig, RankingPolicy, RetrievalConfig
from .types import ProviderId

__all__ = ["ContextConfig", "ProviderId", "RankingPolicy", "RetrievalConfig"]
