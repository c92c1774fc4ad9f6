"""Configuration models for the RAG system."""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RetrievalConfig(BaseModel):
    """Configures candidate counts and the semantic similarity floor."""

    limit: int = Field(default=5, ge=1)
    threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    overfetch_factor: int = Field(default=2, ge=1)


class RankingPolicy(BaseModel):
    """Weights and boosts applied when merging semantic and keyword hits."""

    vector_weight: float = Field(default=0.7, ge=0.0)
    keyword_weight: float = Field(default=0.3, ge=0.0)
    exact_match_boost: float = Field(default=1.2, ge=1.0)
    short_text_boost: float = Field(default=1.1, ge=1.0)
    short_text_chars: int = Field(default=500, ge=1)
    metadata_confidence_boost: float = Field(default=1.05, ge=1.0)
    metadata_confidence_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    metadata_confidence_key: str = "confidence_score"


class ContextConfig(BaseModel):
    """Configures greedy context packing."""

    token_budget: int = Field(default=4000, ge=1)
    max_sources: int = Field(default=5, ge=1)
    chars_per_token: int = Field(default=4, ge=1)


class ConfidencePolicy(BaseModel):
    """Additive confidence terms for generated answers."""

    base: float = Field(default=0.5, ge=0.0, le=1.0)
    similarity_weight: float = Field(default=0.3, ge=0.0)
    source_weight: float = Field(default=0.1, ge=0.0)
    source_saturation: int = Field(default=5, ge=1)
    length_bonus: float = Field(default=0.1, ge=0.0)
    length_threshold: int = Field(default=100, ge=0)
    citation_bonus: float = Field(default=0.05, ge=0.0)
    fallback_confidence: float = Field(default=0.2, ge=0.0, le=1.0)
    ceiling: float = Field(default=1.0, gt=0.0, le=1.0)


class TimeoutConfig(BaseModel):
    """Deadlines (seconds) for every external call."""

    embedding_seconds: float = Field(default=10.0, gt=0.0)
    retrieval_seconds: float = Field(default=10.0, gt=0.0)
    provider_seconds: float = Field(default=60.0, gt=0.0)
    expansion_seconds: float = Field(default=15.0, gt=0.0)


class ProviderConfig(BaseModel):
    """Static per-provider generation defaults and pricing."""

    model_config = ConfigDict(frozen=True)

    model_name: str
    max_tokens: int = Field(ge=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    top_p: float = Field(default=1.0, gt=0.0, le=1.0)
    cost_per_unit: float = Field(default=0.0, ge=0.0, description="USD per 1K tokens")
    supports_tools: bool = False
    extra_params: dict[str, Any] = Field(default_factory=dict)


DEFAULT_PROVIDER_CONFIGS: dict[str, ProviderConfig] = {
    "gemini": ProviderConfig(
        model_name="gemini-1.5-pro",
        max_tokens=8192,
        temperature=0.7,
        top_p=0.95,
        cost_per_unit=0.01,
        extra_params={"top_k": 40},
    ),
    "chatgpt": ProviderConfig(
        model_name="gpt-4o",
        max_tokens=4096,
        temperature=0.7,
        top_p=1.0,
        cost_per_unit=0.03,
        extra_params={"presence_penalty": 0.0, "frequency_penalty": 0.0},
    ),
    "claude": ProviderConfig(
        model_name="claude-3-5-sonnet-20241022",
        max_tokens=8192,
        temperature=0.7,
        top_p=1.0,
        cost_per_unit=0.02,
        supports_tools=True,
    ),
}


class Settings(BaseSettings):
    """Process settings loaded from environment variables or `.env`."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    google_ai_api_key: str | None = None
    openai_api_key: str | None = None
    anthropic_api_key: str | None = None
    embedding_model: str = "text-embedding-3-small"

    rag_default_provider: str = "gemini"
    log_level: str = "INFO"
    log_json: bool = True

    def api_key_for(self, provider: str) -> str | None:
        key_map = {
            "gemini": self.google_ai_api_key,
            "chatgpt": self.openai_api_key,
            "claude": self.anthropic_api_key,
        }
        key = key_map.get(provider)
        return key or None


@lru_cache()
def get_settings() -> Settings:
    """Returns the cached Settings instance."""
    return Settings()
