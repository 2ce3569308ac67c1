"""
Base classes for tools.
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Coroutine

if TYPE_CHECKING:
    from ..governance.charter import ADRItem, CharterData
    from ..storage.base import TodoItem


@dataclass
class ToolResult:
    """Result from a tool execution."""

    success: bool
    output: str = ""
    data: Any = None
    error: str | None = None


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    param_type: str  # string, integer, boolean, array, object
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None
    items: dict[str, Any] | None = None


@dataclass
class ToolExecutionContext:
    """What a tool can see of the session it runs in."""

    cwd: str
    session_id: str = ""
    todos: list["TodoItem"] = field(default_factory=list)
    on_todos_changed: Callable[[list["TodoItem"]], Awaitable[None]] | None = None
    on_charter_changed: Callable[["CharterData", str], Awaitable[None]] | None = None
    on_adrs_changed: Callable[[list["ADRItem"]], Awaitable[None]] | None = None
    is_path_safe: Callable[[str], bool] | None = None

    def path_is_safe(self, path: str) -> bool:
        if self.is_path_safe is not None:
            return self.is_path_safe(path)
        root = os.path.realpath(self.cwd)
        target = os.path.realpath(os.path.join(root, path))
        return target == root or target.startswith(root + os.sep)

    def resolve_path(self, path: str) -> Path:
        """Absolute path inside the working directory.

        Raises:
            PermissionError: if the path escapes the working directory
        """
        if not self.path_is_safe(path):
            raise PermissionError(f"Path is outside the working directory: {path}")
        return Path(os.path.realpath(os.path.join(self.cwd, path)))


@dataclass
class Tool:
    """
    Simple tool wrapper that can be created from a function.

    The handler is called as ``handler(context, **arguments)``.
    """

    name: str
    description: str
    parameters: list[ToolParameter]
    handler: Callable[..., Coroutine[Any, Any, ToolResult]]

    def get_parameters_schema(self) -> dict[str, Any]:
        """Convert parameters to JSON Schema format."""
        properties = {}
        required = []

        for param in self.parameters:
            prop: dict[str, Any] = {
                "type": param.param_type,
                "description": param.description,
            }
            if param.enum:
                prop["enum"] = param.enum
            if param.default is not None:
                prop["default"] = param.default
            if param.items:
                prop["items"] = param.items

            properties[param.name] = prop

            if param.required:
                required.append(param.name)

        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }

    async def execute(self, context: ToolExecutionContext, **kwargs: Any) -> ToolResult:
        """Execute the tool handler."""
        return await self.handler(context, **kwargs)


class BaseTool(ABC):
    """Base class for all tools."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the tool name."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Get the tool description."""
        pass

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """Get the tool parameters schema (JSON Schema)."""
        pass

    @abstractmethod
    async def execute(self, context: ToolExecutionContext, **kwargs: Any) -> ToolResult:
        """Execute the tool with given arguments."""
        pass
