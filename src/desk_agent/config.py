"""
Configuration management for desk-agent

Uses pydantic-settings for environment variable parsing and validation.
Settings are re-read at every loop iteration through ``load_settings`` so
edits to the environment or ``.env`` take effect mid-session.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
ZAI_BASE_URLS = {
    "general": "https://api.z.ai/api/paas/v4",
    "coding": "https://api.z.ai/api/coding/paas/v4",
}


class ContextConfig(BaseModel):
    """Context-window tunables for one session."""

    model_config = ConfigDict(frozen=True)

    context_window_tokens: int = 200_000
    reserve_output_tokens: int = 8_000
    keep_last_turns: int = 6
    soft_trim_ratio: float = 0.5
    hard_clear_ratio: float = 0.7
    memory_flush_ratio: float = 0.8
    compaction_ratio: float = 0.85
    tool_result_head_chars: int = 800
    tool_result_tail_chars: int = 800
    keep_last_tool_results: int = 2
    max_chunk_tokens: int = 3_000
    max_summary_tokens: int = 2_000
    max_memory_tokens: int = 800
    safety_margin: float = 1.2

    @model_validator(mode="after")
    def check_ratios(self) -> "ContextConfig":
        ratios = (
            self.soft_trim_ratio,
            self.hard_clear_ratio,
            self.memory_flush_ratio,
            self.compaction_ratio,
        )
        if not (0 < ratios[0] < ratios[1] < ratios[2] < ratios[3] <= 1):
            raise ValueError(
                "context ratios must satisfy "
                "0 < soft_trim < hard_clear < memory_flush < compaction <= 1"
            )
        budgets = {
            "context_window_tokens": self.context_window_tokens,
            "max_chunk_tokens": self.max_chunk_tokens,
            "max_summary_tokens": self.max_summary_tokens,
            "max_memory_tokens": self.max_memory_tokens,
        }
        for name, value in budgets.items():
            if value <= 0:
                raise ValueError(f"{name} must be positive")
        if self.reserve_output_tokens < 0 or self.keep_last_tool_results < 0:
            raise ValueError("reserve_output_tokens and keep_last_tool_results must be >= 0")
        if self.safety_margin < 1:
            raise ValueError("safety_margin must be >= 1")
        return self


class ModelInfo(BaseModel):
    """A model offered by a configured provider."""

    id: str
    name: str | None = None
    context_length: int | None = None


class ProviderConfig(BaseModel):
    """An OpenAI-compatible endpoint."""

    id: str
    type: Literal["openai", "openrouter", "zai"] = "openai"
    api_key: str = ""
    base_url: str = ""
    zai_api_prefix: Literal["general", "coding"] = "general"
    models: list[ModelInfo] = Field(default_factory=list)


class LLMConfig(BaseModel):
    """Resolved configuration for a single model call path."""

    provider: str = "openai"
    model: str = "gpt-4o"
    api_key: str = ""
    base_url: str | None = None
    max_tokens: int = 4096
    temperature: float | None = None
    timeout: float = 300.0
    context_length: int | None = None


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="DESK_AGENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "desk-agent"
    debug: bool = False
    log_level: str = "INFO"

    # Default model endpoint
    api_key: str = Field(default="", description="API key for the default endpoint")
    base_url: str = Field(default="https://api.openai.com/v1", description="OpenAI-compatible base URL")
    model: str = Field(default="gpt-4o", description="Model id, or provider::model")
    max_tokens: int = 4096
    temperature: float | None = None
    request_timeout_seconds: float = 300.0
    providers: list[ProviderConfig] = Field(default_factory=list)

    # Agent loop
    permission_mode: Literal["default", "ask"] = "ask"
    max_iterations: int = 50
    loop_window: int = 5
    max_loop_retries: int = 5

    # Features
    enable_memory: bool = True
    enable_preview: bool = True
    preview_mode: Literal["always", "ask", "never"] = "ask"
    enable_file_tools: bool = True
    enable_shell_tools: bool = True
    enable_execution_log: bool = True

    # Storage
    data_dir: Path = Field(default=Path.home() / ".desk-agent", description="Logs, database and global memory")
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/desk-agent.db",
        description="Database connection URL"
    )

    context: ContextConfig = Field(default_factory=ContextConfig)

    def get_provider(self, provider_id: str) -> ProviderConfig | None:
        for provider in self.providers:
            if provider.id == provider_id:
                return provider
        return None

    def get_llm_config(self, model_id: str | None = None) -> LLMConfig:
        """Resolve a model id (``provider::model`` or plain) into an LLMConfig."""
        model_id = model_id or self.model
        if not model_id:
            raise ConfigurationError(
                "No model configured. Set DESK_AGENT_MODEL or pick a model in settings."
            )

        if "::" in model_id:
            provider_id, model_name = model_id.split("::", 1)
            provider = self.get_provider(provider_id)
            if provider is None:
                raise ConfigurationError(
                    f"Provider '{provider_id}' not found. Check the providers list in settings."
                )
            if provider.type == "openrouter":
                base_url = OPENROUTER_BASE_URL
            elif provider.type == "zai":
                base_url = ZAI_BASE_URLS[provider.zai_api_prefix]
            else:
                base_url = provider.base_url
            api_key = provider.api_key
            context_length = next(
                (m.context_length for m in provider.models if m.id == model_name),
                None,
            )
            provider_name = provider.type
        else:
            model_name = model_id
            base_url = self.base_url
            api_key = self.api_key
            context_length = None
            provider_name = "openai"

        if not api_key:
            raise ConfigurationError(
                "API key is not configured. Please set it in Settings "
                "(DESK_AGENT_API_KEY or the provider's api_key)."
            )
        if not base_url:
            raise ConfigurationError("Base URL is not configured for this provider.")

        return LLMConfig(
            provider=provider_name,
            model=model_name,
            api_key=api_key,
            base_url=base_url,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            timeout=self.request_timeout_seconds,
            context_length=context_length,
        )

    def context_config_for(self, llm_config: LLMConfig) -> ContextConfig:
        """Context tunables with the model's known context length applied."""
        if not llm_config.context_length:
            return self.context
        # model_validate so the override goes through validation again
        return ContextConfig.model_validate(
            {**self.context.model_dump(), "context_window_tokens": llm_config.context_length}
        )

    @property
    def logs_dir(self) -> Path:
        return self.data_dir / "logs"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def load_settings() -> Settings:
    """Read settings fresh from the environment (hot-reload)."""
    return Settings()
