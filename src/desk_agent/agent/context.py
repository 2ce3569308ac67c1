"""
Context estimation and tool-result pruning.

Token counts here are a 4-characters-per-token heuristic, used only to
decide when to prune, flush memory or compact. Provider-reported usage is
tracked separately by the runner.
"""

import json
import math
from dataclasses import asdict, replace

from ..config import ContextConfig
from ..llm.base import LLMMessage

CHARS_PER_TOKEN = 4
MESSAGE_OVERHEAD_TOKENS = 4
IMAGE_PLACEHOLDER = "[image]"


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_message_tokens(message: LLMMessage) -> int:
    tokens = estimate_tokens(message.text) + MESSAGE_OVERHEAD_TOKENS
    if message.tool_calls:
        tokens += estimate_tokens(json.dumps([asdict(tc) for tc in message.tool_calls]))
    return tokens


def estimate_messages_tokens(messages: list[LLMMessage]) -> int:
    return sum(estimate_message_tokens(m) for m in messages)


def effective_window(config: ContextConfig) -> int:
    available = max(1, config.context_window_tokens - config.reserve_output_tokens)
    return math.floor(available / config.safety_margin)


def usage_ratio(token_count: int, config: ContextConfig) -> float:
    """Estimated tokens over the effective window. Values above 1 mean overflow."""
    window = effective_window(config)
    if window <= 0:
        return 1.0
    return token_count / window


def soft_trim(content: str, head_chars: int, tail_chars: int) -> str:
    """Keep the head and tail of a tool result with an omission marker."""
    if len(content) <= head_chars + tail_chars + 40:
        return content
    head = content[:head_chars]
    tail = content[-tail_chars:] if tail_chars > 0 else ""
    omitted = len(content) - len(head) - len(tail)
    trimmed = (
        f"{head}\n... [omitted {omitted} chars] ...\n{tail}"
        f"\n\n[Tool result trimmed: kept first {len(head)} and last {len(tail)} chars.]"
    )
    # never grow the message
    return trimmed if len(trimmed) < len(content) else content


def hard_clear(content: str) -> str:
    """Replace a tool result with a placeholder stating its original length."""
    placeholder = f"[Tool result removed; original length {len(content)} chars.]"
    return placeholder if len(placeholder) < len(content) else content


def prune_messages(messages: list[LLMMessage], config: ContextConfig) -> list[LLMMessage]:
    """Return a copy of ``messages`` with old tool results trimmed or cleared.

    The input list and its messages are never modified. Below the soft-trim
    ratio the same list object is returned.
    """
    ratio = usage_ratio(estimate_messages_tokens(messages), config)
    if ratio <= config.soft_trim_ratio:
        return messages

    tool_indexes = [i for i, m in enumerate(messages) if m.role == "tool"]
    keep = config.keep_last_tool_results
    protected = set(tool_indexes[-keep:]) if keep > 0 else set()
    clear = ratio > config.hard_clear_ratio

    pruned: list[LLMMessage] = []
    for index, message in enumerate(messages):
        if (
            message.role != "tool"
            or index in protected
            or not isinstance(message.content, str)
        ):
            pruned.append(message)
            continue

        if clear:
            content = hard_clear(message.content)
        else:
            content = soft_trim(
                message.content,
                config.tool_result_head_chars,
                config.tool_result_tail_chars,
            )
        pruned.append(message if content == message.content else replace(message, content=content))

    return pruned
