"""
Tools module for agent capabilities.
"""

from .base import BaseTool, Tool, ToolExecutionContext, ToolParameter, ToolResult
from .registry import ToolRegistry, build_tool_registry

__all__ = [
    "BaseTool",
    "Tool",
    "ToolExecutionContext",
    "ToolParameter",
    "ToolResult",
    "ToolRegistry",
    "build_tool_registry",
]
