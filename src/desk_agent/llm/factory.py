"""
LLM factory for creating provider instances.

Every supported provider (openai, openrouter, zai, custom) speaks the
chat-completions protocol, so all of them route to OpenAILLM; the base URL
is already resolved by ``Settings.get_llm_config``.
"""

from ..config import LLMConfig, Settings
from .base import BaseLLM
from .openai import OpenAILLM


def create_llm(config: LLMConfig | None = None, settings: Settings | None = None) -> BaseLLM:
    """Create an LLM instance based on configuration."""
    if config is None:
        if settings is None:
            from ..config import get_settings
            settings = get_settings()
        config = settings.get_llm_config()

    return OpenAILLM(
        api_key=config.api_key,
        model=config.model,
        base_url=config.base_url,
        max_tokens=config.max_tokens,
        temperature=config.temperature,
        timeout=config.timeout,
        provider=config.provider,
    )
