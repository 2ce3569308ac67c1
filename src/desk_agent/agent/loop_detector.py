"""
Detection of repeated single tool calls.
"""

from collections import deque
from dataclasses import dataclass

from ..llm.base import ToolCall

DEFAULT_LOOP_WINDOW = 5
DEFAULT_MAX_LOOP_RETRIES = 5

LOOP_HINT = """IMPORTANT: You've been calling the same tool repeatedly without making progress. Please:
1. STOP and reflect on what you have already learned from the previous results.
2. Try a DIFFERENT approach or a different tool.
3. If the task is complete, respond to the user with your final answer.
4. If you are stuck, explain what is blocking you instead of retrying.
DO NOT call the same tool again with similar arguments."""


@dataclass
class LoopVerdict:
    flagged: bool = False
    exhausted: bool = False
    tool_name: str | None = None
    retry_count: int = 0


class LoopDetector:
    """Tracks recent single tool calls and flags runs of the same tool.

    Parallel batches (two or more calls in one turn) are never a loop and
    reset the window.
    """

    def __init__(self, window: int = DEFAULT_LOOP_WINDOW, max_retries: int = DEFAULT_MAX_LOOP_RETRIES):
        self.window = window
        self.max_retries = max_retries
        self.retry_count = 0
        self._recent: deque[tuple[str, str]] = deque(maxlen=window)

    @property
    def recent(self) -> list[tuple[str, str]]:
        return list(self._recent)

    def observe(self, tool_calls: list[ToolCall]) -> LoopVerdict:
        if len(tool_calls) != 1:
            if tool_calls:
                self._recent.clear()
            return LoopVerdict(retry_count=self.retry_count)

        call = tool_calls[0]
        self._recent.append((call.name, call.arguments or ""))

        if len(self._recent) < self.window or any(name != call.name for name, _ in self._recent):
            return LoopVerdict(retry_count=self.retry_count)

        self.retry_count += 1
        self._recent.clear()
        return LoopVerdict(
            flagged=True,
            exhausted=self.retry_count >= self.max_retries,
            tool_name=call.name,
            retry_count=self.retry_count,
        )
