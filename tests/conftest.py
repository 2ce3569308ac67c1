"""
Shared fixtures for driving the agent loop without a network.
"""

import pytest

from desk_agent.config import ContextConfig
from desk_agent.storage import MemorySessionStore

from .fakes import make_settings


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def store():
    return MemorySessionStore()


@pytest.fixture
def workspace(tmp_path):
    path = tmp_path / "workspace"
    path.mkdir()
    return path


@pytest.fixture
def small_context():
    """A context window small enough to cross thresholds in tests."""
    return ContextConfig(
        context_window_tokens=1_000,
        reserve_output_tokens=0,
        safety_margin=1.0,
        keep_last_tool_results=1,
        tool_result_head_chars=20,
        tool_result_tail_chars=20,
    )
