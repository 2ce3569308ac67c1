"""
Todo Tool - the agent's per-session task list.
"""

from typing import Any
from uuid import uuid4

from ..storage.base import TodoItem
from .base import Tool, ToolExecutionContext, ToolParameter, ToolResult

TODO_STATUSES = ["pending", "in_progress", "completed", "cancelled"]
STATUS_MARKS = {"pending": "[ ]", "in_progress": "[~]", "completed": "[x]", "cancelled": "[-]"}


def format_todos(todos: list[TodoItem]) -> str:
    if not todos:
        return "No todos."
    return "\n".join(f"{STATUS_MARKS.get(t.status, '[ ]')} {t.content} ({t.id})" for t in todos)


def _parse_todos(raw: list[Any]) -> list[TodoItem]:
    todos = []
    for item in raw:
        if isinstance(item, str):
            todos.append(TodoItem(id=uuid4().hex[:8], content=item))
            continue
        if not isinstance(item, dict) or not item.get("content"):
            raise ValueError("each todo needs a 'content' field")
        status = item.get("status", "pending")
        if status not in TODO_STATUSES:
            raise ValueError(f"invalid todo status: {status}")
        todos.append(TodoItem(id=str(item.get("id") or uuid4().hex[:8]), content=item["content"], status=status))
    return todos


async def manage_todos_handler(
    context: ToolExecutionContext,
    action: str,
    todos: list[Any] | None = None,
) -> ToolResult:
    """Read or replace the session's todo list."""
    if action == "read":
        return ToolResult(success=True, output=format_todos(context.todos))

    if action == "clear":
        updated: list[TodoItem] = []
    elif action == "write":
        try:
            updated = _parse_todos(todos or [])
        except ValueError as e:
            return ToolResult(success=False, error=str(e))
    else:
        return ToolResult(success=False, error=f"Unknown action: {action}")

    context.todos = updated
    if context.on_todos_changed is not None:
        await context.on_todos_changed(updated)
    return ToolResult(success=True, output=format_todos(updated), data=updated)


def create_todo_tools() -> list[Tool]:
    manage_todos = Tool(
        name="manage_todos",
        description=(
            "Track multi-step work. 'write' replaces the whole list, "
            "'read' shows it, 'clear' empties it."
        ),
        parameters=[
            ToolParameter(
                name="action",
                param_type="string",
                description="What to do with the list",
                enum=["read", "write", "clear"],
            ),
            ToolParameter(
                name="todos",
                param_type="array",
                description="Full todo list for 'write': objects with content, status and optional id",
                required=False,
                items={
                    "type": "object",
                    "properties": {
                        "id": {"type": "string"},
                        "content": {"type": "string"},
                        "status": {"type": "string", "enum": TODO_STATUSES},
                    },
                    "required": ["content"],
                },
            ),
        ],
        handler=manage_todos_handler,
    )
    return [manage_todos]
