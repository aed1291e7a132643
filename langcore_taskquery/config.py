"""Settings consumed by the parsing pipeline.

All models are frozen pydantic models: the pipeline reads them but
never mutates them, and each call receives them by value.
"""

from __future__ import annotations

import os
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

ProviderName = Literal["openai", "openrouter", "anthropic", "ollama"]

DEFAULT_ENDPOINTS: dict[str, str] = {
    "openai": "https://api.openai.com/v1/chat/completions",
    "openrouter": "https://openrouter.ai/api/v1/chat/completions",
    "anthropic": "https://api.anthropic.com/v1/messages",
    "ollama": "http://localhost:11434/api/chat",
}

# Environment variables consulted when a provider has no key configured.
API_KEY_ENV_VARS: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}

PROVIDER_LABELS: dict[str, str] = {
    "openai": "OpenAI",
    "openrouter": "OpenRouter",
    "anthropic": "Anthropic",
    "ollama": "Ollama",
}


def provider_label(provider: str, model: str) -> str:
    """Format ``"Provider: model"`` for error messages and UIs."""
    return f"{PROVIDER_LABELS.get(provider, provider)}: {model}"


class ProviderConfig(BaseModel):
    """Connection settings for one provider."""

    model_config = ConfigDict(frozen=True)

    api_key: str = Field(default="", description="API key (empty for local providers)")
    api_endpoint: str = Field(default="", description="Full request URL; empty uses the provider default")
    max_tokens: int = Field(default=2000, ge=1, description="Maximum tokens to generate")
    context_window: int = Field(default=8192, ge=1, description="Context window passed to local models")
    timeout: float = Field(default=60.0, gt=0, description="Request timeout in seconds")


class PurposeConfig(BaseModel):
    """Provider / model / temperature selected for one pipeline stage."""

    model_config = ConfigDict(frozen=True)

    provider: ProviderName = "openai"
    model: str = "gpt-4o-mini"
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)


class StatusCategory(BaseModel):
    """One user-visible status category keyed by a stable category key."""

    model_config = ConfigDict(frozen=True)

    display_name: str
    aliases: list[str] = Field(default_factory=list)
    symbols: list[str] = Field(default_factory=list)
    description: str = ""


def _default_status_mapping() -> dict[str, StatusCategory]:
    return {
        "open": StatusCategory(
            display_name="Open",
            aliases=["open", "o", "todo", "to-do"],
            symbols=[" "],
            description="Tasks not yet started or awaiting action",
        ),
        "inProgress": StatusCategory(
            display_name="In progress",
            aliases=["inprogress", "in-progress", "wip", "doing", "ip"],
            symbols=["/"],
            description="Tasks currently being worked on",
        ),
        "completed": StatusCategory(
            display_name="Completed",
            aliases=["completed", "done", "finished", "x"],
            symbols=["x", "X"],
            description="Tasks that have been finished",
        ),
        "cancelled": StatusCategory(
            display_name="Cancelled",
            aliases=["cancelled", "canceled", "dropped"],
            symbols=["-"],
            description="Tasks that were abandoned or cancelled",
        ),
    }


def _default_priority_mapping() -> dict[int, list[str]]:
    return {
        1: ["1", "high", "highest", "urgent"],
        2: ["2", "medium"],
        3: ["3", "low"],
        4: ["4", "none"],
    }


class ParserSettings(BaseModel):
    """Everything the parsing pipeline needs to know about the user.

    Example::

        settings = ParserSettings(
            query_languages=["English", "中文"],
            expansions_per_language=5,
            parsing=PurposeConfig(provider="ollama", model="qwen2.5:14b"),
        )
    """

    model_config = ConfigDict(frozen=True)

    query_languages: list[str] = Field(
        default_factory=lambda: ["English"],
        description="Languages semantic expansions are generated in",
    )
    expansions_per_language: int = Field(
        default=5,
        ge=1,
        description="Semantic equivalents per language per core keyword",
    )
    enable_semantic_expansion: bool = True
    status_mapping: dict[str, StatusCategory] = Field(default_factory=_default_status_mapping)
    priority_mapping: dict[int, list[str]] = Field(default_factory=_default_priority_mapping)
    due_date_terms: list[str] = Field(
        default_factory=list,
        description="Extra user terms that mean 'due date'",
    )
    user_stop_words: list[str] = Field(default_factory=list)
    provider_configs: dict[str, ProviderConfig] = Field(
        default_factory=lambda: {name: ProviderConfig() for name in DEFAULT_ENDPOINTS},
    )
    parsing: PurposeConfig = Field(default_factory=PurposeConfig)
    pricing_table: dict[str, dict[str, float]] = Field(
        default_factory=dict,
        description="Snapshot of USD rates per 1M tokens: {model: {input, output}}",
    )

    @field_validator("priority_mapping")
    @classmethod
    def _check_priority_levels(cls, value: dict[int, list[str]]) -> dict[int, list[str]]:
        bad = [level for level in value if level not in (1, 2, 3, 4)]
        if bad:
            raise ValueError(f"priority levels must be 1-4, got {bad}")
        return value

    @property
    def languages(self) -> list[str]:
        """Configured query languages, never empty."""
        return list(self.query_languages) or ["English"]

    @property
    def max_keywords_per_core(self) -> int:
        """Target number of variations generated for each core keyword."""
        if not self.enable_semantic_expansion:
            return len(self.languages)
        return self.expansions_per_language * len(self.languages)

    def provider_config_for(self, purpose: PurposeConfig) -> ProviderConfig:
        return self.provider_configs.get(purpose.provider) or ProviderConfig()

    def endpoint_for(self, purpose: PurposeConfig) -> str:
        return self.provider_config_for(purpose).api_endpoint or DEFAULT_ENDPOINTS[purpose.provider]

    def api_key_for(self, provider: str) -> str:
        """Configured key for *provider*, falling back to its env var."""
        config = self.provider_configs.get(provider)
        if config is not None and config.api_key:
            return config.api_key
        env_var = API_KEY_ENV_VARS.get(provider)
        return os.environ.get(env_var, "") if env_var else ""
