"""
System prompt and first-prompt builders for the agent loop.

The system prompt is rebuilt before every iteration so it always reflects
the current tool set, todo list and session memory.
"""

import platform
from datetime import datetime

from ..llm.base import ToolDefinition
from ..storage.base import TodoItem

NO_WORKSPACE = "No workspace folder"

SYSTEM_PROMPT = """You are Desk Agent, a careful software assistant working inside the user's project.

Working directory: {cwd}
Platform: {platform}
Date: {date}

## Available Tools
{tools_summary}

## Guidelines
1. Inspect before you change: read files and list directories before editing them
2. Prefer small, targeted edits (edit_file) over rewriting whole files
3. Use manage_todos to plan work that takes more than a few steps, and keep it current
4. Never repeat the same tool call with the same arguments hoping for a different result
5. Some tools require the user's approval; if a call is denied, choose another approach or ask
6. When the task is done, answer with a short summary of what changed"""


def generate_tools_summary(definitions: list[ToolDefinition]) -> str:
    """One line per tool: name and the first sentence of its description."""
    if not definitions:
        return "No tools are available in this session."
    lines = []
    for definition in definitions:
        description = definition.description.split(". ")[0].rstrip(".")
        lines.append(f"- **{definition.name}**: {description}")
    return "\n".join(lines)


def format_todos_section(todos: list[TodoItem]) -> str:
    if not todos:
        return ""
    lines = [f"- [{todo.status}] {todo.content}" for todo in todos]
    return "\n\n## Current Todos\n" + "\n".join(lines)


def get_system_prompt(
    cwd: str | None,
    tools_summary: str,
    todos: list[TodoItem] | None = None,
    memory: str = "",
) -> str:
    prompt = SYSTEM_PROMPT.format(
        cwd=cwd or NO_WORKSPACE,
        platform=platform.system(),
        date=datetime.now().strftime("%Y-%m-%d"),
        tools_summary=tools_summary,
    )
    prompt += format_todos_section(todos or [])
    if memory.strip():
        prompt += f"\n\nSESSION MEMORY:\n{memory.strip()}\n\n---\n"
    return prompt


def memory_prefix(memory: str) -> str | None:
    """Prefix for the first user prompt of a session, carrying global memory."""
    if not memory.strip():
        return None
    return f"MEMORY FROM PREVIOUS SESSIONS:\n{memory.strip()}\n\n---\n\nUSER REQUEST:\n"
