"""
Tool registry for managing available tools.

The registry is the loop's tool executor: ``execute`` never raises, every
failure comes back as a ``ToolResult`` with ``success=False``.
"""

from typing import Any, Union

import structlog

from ..config import Settings
from ..llm.base import ToolDefinition
from .base import BaseTool, Tool, ToolExecutionContext, ToolResult

logger = structlog.get_logger()


class ToolRegistry:
    """Registry for managing tools."""

    def __init__(self):
        self._tools: dict[str, Union[BaseTool, Tool]] = {}

    def register(self, tool: Union[BaseTool, Tool]) -> None:
        """Register a tool."""
        self._tools[tool.name] = tool
        logger.debug("Tool registered", tool_name=tool.name)

    def unregister(self, name: str) -> None:
        """Unregister a tool."""
        if name in self._tools:
            del self._tools[name]
            logger.debug("Tool unregistered", tool_name=name)

    def get(self, name: str) -> Union[BaseTool, Tool, None]:
        """Get a tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def get_definitions(self) -> list[ToolDefinition]:
        """Get all tool definitions for LLM."""
        definitions = []
        for tool in self._tools.values():
            if isinstance(tool, Tool):
                definitions.append(ToolDefinition(
                    name=tool.name,
                    description=tool.description,
                    parameters=tool.get_parameters_schema(),
                ))
            else:
                definitions.append(ToolDefinition(
                    name=tool.name,
                    description=tool.description,
                    parameters=tool.parameters,
                ))
        return definitions

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        context: ToolExecutionContext,
    ) -> ToolResult:
        """Execute a tool by name."""
        tool = self.get(name)
        if tool is None:
            return ToolResult(
                success=False,
                output="",
                error=f"Tool '{name}' not found",
            )

        try:
            logger.info("Executing tool", tool_name=name, arguments=arguments)
            result = await tool.execute(context, **arguments)
            logger.info("Tool executed", tool_name=name, success=result.success)
            return result
        except TypeError as e:
            logger.warning("Invalid tool arguments", tool_name=name, error=str(e))
            return ToolResult(
                success=False,
                output="",
                error=f"Invalid arguments for {name}: {e}",
            )
        except Exception as e:
            logger.error("Tool execution error", tool_name=name, error=str(e))
            return ToolResult(
                success=False,
                output="",
                error=str(e),
            )


def build_tool_registry(settings: Settings) -> ToolRegistry:
    """Create a registry with the tools enabled in ``settings``."""
    registry = ToolRegistry()

    if settings.enable_file_tools:
        _register_file_tools(registry)
    if settings.enable_shell_tools:
        _register_shell_tools(registry)
    _register_todo_tools(registry)

    return registry


def _register_file_tools(registry: ToolRegistry) -> None:
    """Register file operation tools."""
    try:
        from .file_tool import create_file_tools
        for tool in create_file_tools():
            registry.register(tool)
    except Exception as e:
        logger.warning("Failed to register file tools", error=str(e))


def _register_shell_tools(registry: ToolRegistry) -> None:
    """Register shell command tools."""
    try:
        from .shell_tool import create_shell_tools
        for tool in create_shell_tools():
            registry.register(tool)
    except Exception as e:
        logger.warning("Failed to register shell tools", error=str(e))


def _register_todo_tools(registry: ToolRegistry) -> None:
    """Register the todo list tool."""
    try:
        from .todo_tool import create_todo_tools
        for tool in create_todo_tools():
            registry.register(tool)
    except Exception as e:
        logger.warning("Failed to register todo tools", error=str(e))
