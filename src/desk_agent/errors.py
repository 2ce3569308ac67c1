"""
Exception hierarchy for desk-agent.
"""


class DeskAgentError(Exception):
    """Base class for all desk-agent errors."""

    retryable: bool = False


class ConfigurationError(DeskAgentError):
    """Model/provider settings are missing or invalid."""


class MaxIterationsExceeded(DeskAgentError):
    """The agent loop hit its hard iteration cap."""

    def __init__(self, iterations: int):
        super().__init__(f"Max iterations reached ({iterations})")
        self.iterations = iterations


class LoopExhausted(DeskAgentError):
    """The same tool kept being called after every corrective hint."""

    def __init__(self, tool_name: str, retries: int):
        super().__init__(f"Loop not resolved: {tool_name} called repeatedly")
        self.tool_name = tool_name
        self.retries = retries


class RunAborted(DeskAgentError):
    """Raised inside the loop when the external abort signal fires."""
