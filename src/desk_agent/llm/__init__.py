"""
LLM module for OpenAI-compatible model providers.

Providers:
- OpenAI
- OpenRouter (fixed base URL)
- Z.AI (general or coding API prefix)
- any custom OpenAI-compatible endpoint
"""

from .base import (
    BaseLLM,
    ContentPart,
    LLMMessage,
    LLMResponse,
    StreamChunk,
    StreamTurn,
    TokenUsage,
    ToolCall,
    ToolCallDelta,
    ToolDefinition,
)
from .errors import ProviderError, extract_error_message, is_retryable_error
from .openai import OpenAILLM
from .factory import create_llm

__all__ = [
    "BaseLLM",
    "ContentPart",
    "LLMMessage",
    "LLMResponse",
    "StreamChunk",
    "StreamTurn",
    "TokenUsage",
    "ToolCall",
    "ToolCallDelta",
    "ToolDefinition",
    "ProviderError",
    "extract_error_message",
    "is_retryable_error",
    "OpenAILLM",
    "create_llm",
]
