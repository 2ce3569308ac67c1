"""
Agent module - the execution loop and the context-window manager.

Includes:
- AgentRunner: one prompt of one session, from stream to terminal state
- ToolDispatchGate: permission, compliance and preview checks per tool call
- LoopDetector: repeated single-tool calls
- Context estimation/pruning and compaction/memory-flush summarization
"""

from .approvals import PermissionBroker, PermissionRequest
from .compaction import get_compaction_cutoff_index, run_memory_flush, summarize_for_compaction
from .context import estimate_messages_tokens, estimate_tokens, prune_messages, usage_ratio
from .gate import GateOutcome, ToolDispatchGate, parse_tool_arguments
from .loop_detector import LoopDetector, LoopVerdict
from .runner import AgentRunner, RunnerHandle, RunState, run_agent

__all__ = [
    "PermissionBroker",
    "PermissionRequest",
    "get_compaction_cutoff_index",
    "run_memory_flush",
    "summarize_for_compaction",
    "estimate_messages_tokens",
    "estimate_tokens",
    "prune_messages",
    "usage_ratio",
    "GateOutcome",
    "ToolDispatchGate",
    "parse_tool_arguments",
    "LoopDetector",
    "LoopVerdict",
    "AgentRunner",
    "RunnerHandle",
    "RunState",
    "run_agent",
]
