"""
Tests for configuration module.
"""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from desk_agent.config import ContextConfig, LLMConfig, Settings, load_settings
from desk_agent.errors import ConfigurationError


def test_settings_default_values():
    """Test that settings have sensible defaults."""
    with patch.dict(os.environ, {}, clear=True):
        settings = Settings(_env_file=None)

        assert settings.app_name == "desk-agent"
        assert settings.permission_mode == "ask"
        assert settings.max_iterations == 50
        assert settings.loop_window == 5
        assert settings.max_loop_retries == 5
        assert settings.context.keep_last_turns == 6


def test_settings_from_env():
    """Test loading settings from environment variables."""
    env = {
        "DESK_AGENT_API_KEY": "test_key",
        "DESK_AGENT_MODEL": "gpt-4o-mini",
        "DESK_AGENT_PERMISSION_MODE": "default",
        "DESK_AGENT_ENABLE_PREVIEW": "false",
        "DESK_AGENT_CONTEXT__KEEP_LAST_TURNS": "3",
    }

    with patch.dict(os.environ, env, clear=True):
        settings = Settings(_env_file=None)

        assert settings.api_key == "test_key"
        assert settings.model == "gpt-4o-mini"
        assert settings.permission_mode == "default"
        assert settings.enable_preview is False
        assert settings.context.keep_last_turns == 3


def test_load_settings_reads_environment_each_time():
    """Test that load_settings is not cached."""
    with patch.dict(os.environ, {"DESK_AGENT_MAX_ITERATIONS": "7"}, clear=True):
        first = load_settings()
    with patch.dict(os.environ, {"DESK_AGENT_MAX_ITERATIONS": "9"}, clear=True):
        second = load_settings()

    assert first.max_iterations == 7
    assert second.max_iterations == 9


def test_get_llm_config_default_endpoint():
    """Test resolving a plain model id against the default endpoint."""
    with patch.dict(os.environ, {}, clear=True):
        settings = Settings(_env_file=None, api_key="test_key", temperature=0.2)
        config = settings.get_llm_config()

        assert isinstance(config, LLMConfig)
        assert config.provider == "openai"
        assert config.model == "gpt-4o"
        assert config.api_key == "test_key"
        assert config.base_url == "https://api.openai.com/v1"
        assert config.temperature == 0.2


def test_get_llm_config_provider_model():
    """Test resolving provider::model ids."""
    with patch.dict(os.environ, {}, clear=True):
        settings = Settings(
            _env_file=None,
            providers=[
                {
                    "id": "router",
                    "type": "openrouter",
                    "api_key": "router_key",
                    "models": [{"id": "meta/llama", "context_length": 32000}],
                },
                {"id": "zai", "type": "zai", "api_key": "zai_key", "zai_api_prefix": "coding"},
            ],
        )

        config = settings.get_llm_config("router::meta/llama")
        assert config.provider == "openrouter"
        assert config.model == "meta/llama"
        assert config.base_url == "https://openrouter.ai/api/v1"
        assert config.context_length == 32000

        zai = settings.get_llm_config("zai::glm-4")
        assert zai.base_url == "https://api.z.ai/api/coding/paas/v4"


def test_get_llm_config_missing_key():
    """Test that a missing API key is a configuration error."""
    with patch.dict(os.environ, {}, clear=True):
        settings = Settings(_env_file=None)

        with pytest.raises(ConfigurationError, match="API key"):
            settings.get_llm_config()


def test_get_llm_config_unknown_provider():
    """Test that an unknown provider prefix is a configuration error."""
    with patch.dict(os.environ, {}, clear=True):
        settings = Settings(_env_file=None, api_key="test_key")

        with pytest.raises(ConfigurationError, match="not found"):
            settings.get_llm_config("nowhere::model")


def test_context_config_for_uses_model_context_length():
    """Test that a known context length overrides the window size."""
    settings = Settings(_env_file=None, api_key="k")

    tuned = settings.context_config_for(LLMConfig(context_length=64_000))
    assert tuned.context_window_tokens == 64_000
    assert tuned.keep_last_turns == settings.context.keep_last_turns

    assert settings.context_config_for(LLMConfig()) is settings.context


def test_context_config_rejects_unordered_ratios():
    """Test ratio ordering validation."""
    with pytest.raises(ValidationError):
        ContextConfig(soft_trim_ratio=0.8, hard_clear_ratio=0.7)

    with pytest.raises(ValidationError):
        ContextConfig(compaction_ratio=1.5)


def test_context_config_is_frozen():
    """Test that context config cannot be mutated."""
    config = ContextConfig()

    with pytest.raises(ValidationError):
        config.keep_last_turns = 1


def test_logs_dir_under_data_dir(tmp_path):
    """Test that logs live under the data directory."""
    settings = Settings(_env_file=None, data_dir=tmp_path)

    assert settings.logs_dir == tmp_path / "logs"
