"""
File Operations Tool - List, read, write, edit and search files.

All paths are resolved against the session's working directory and may
not escape it.
"""

import fnmatch
import logging
import re
from pathlib import Path
from typing import Optional

from .base import Tool, ToolExecutionContext, ToolParameter, ToolResult

logger = logging.getLogger(__name__)

BLOCKED_PATH_PARTS = {".ssh", ".gnupg", ".aws", ".gcloud", "credentials"}
SKIPPED_DIRS = {".git", "node_modules", "__pycache__", ".venv", ".desk-agent"}


class FileManager:
    """File operations confined to one working directory."""

    def __init__(self, context: ToolExecutionContext):
        self.context = context
        self.root = Path(context.cwd).expanduser().resolve()

    def _resolve(self, path: str) -> Path:
        resolved = self.context.resolve_path(path)
        lowered = {part.lower() for part in resolved.parts}
        if lowered & BLOCKED_PATH_PARTS:
            logger.warning(f"Blocked path pattern: {path}")
            raise PermissionError(f"Access denied: {path}")
        return resolved

    def read_file(self, path: str, max_lines: Optional[int] = None) -> str:
        """Read a file's contents."""
        file_path = self._resolve(path)

        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {path}")
        if not file_path.is_file():
            raise IsADirectoryError(f"Path is a directory: {path}")

        content = file_path.read_text(encoding="utf-8", errors="replace")

        if max_lines:
            lines = content.split("\n")
            if len(lines) > max_lines:
                content = "\n".join(lines[:max_lines])
                content += f"\n\n... (truncated, {len(lines) - max_lines} more lines)"

        return content

    def write_file(self, path: str, content: str) -> str:
        """Write content to a file, creating parent directories."""
        file_path = self._resolve(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content, encoding="utf-8")
        return f"Wrote {len(content)} characters to {file_path.relative_to(self.root)}"

    def edit_file(self, path: str, old_string: str, new_string: str) -> str:
        """Replace the first occurrence of ``old_string``."""
        file_path = self._resolve(path)
        if not file_path.is_file():
            raise FileNotFoundError(f"File not found: {path}")

        content = file_path.read_text(encoding="utf-8")
        if not old_string:
            raise ValueError("old_string must not be empty")
        if old_string not in content:
            raise ValueError(f"old_string not found in {path}")

        file_path.write_text(content.replace(old_string, new_string, 1), encoding="utf-8")
        return f"Edited {file_path.relative_to(self.root)}"

    def list_files(self, path: str = ".", pattern: str = "*", recursive: bool = False) -> list[str]:
        """List files in a directory."""
        dir_path = self._resolve(path)

        if not dir_path.exists():
            raise FileNotFoundError(f"Directory not found: {path}")
        if not dir_path.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {path}")

        entries = dir_path.rglob(pattern) if recursive else dir_path.glob(pattern)
        files = []
        for entry in entries:
            relative = entry.relative_to(dir_path)
            if any(part in SKIPPED_DIRS for part in relative.parts):
                continue
            files.append(f"{relative}/" if entry.is_dir() else str(relative))
        return sorted(files)

    def search_files(self, pattern: str, path: str = ".", content_search: bool = False) -> list[dict]:
        """Search for files by name (glob) or content (regex)."""
        dir_path = self._resolve(path)
        if not dir_path.exists():
            raise FileNotFoundError(f"Directory not found: {path}")

        regex = re.compile(pattern, re.IGNORECASE) if content_search else None
        results = []

        for file_path in dir_path.rglob("*"):
            if not file_path.is_file():
                continue
            relative = file_path.relative_to(dir_path)
            if any(part in SKIPPED_DIRS for part in relative.parts):
                continue

            if regex is not None:
                try:
                    content = file_path.read_text(encoding="utf-8")
                except (UnicodeDecodeError, PermissionError):
                    continue
                matches = list(regex.finditer(content))
                if matches:
                    first = matches[0]
                    results.append({
                        "file": str(relative),
                        "matches": len(matches),
                        "preview": content[max(0, first.start() - 20):first.end() + 50],
                    })
            elif fnmatch.fnmatch(file_path.name.lower(), pattern.lower()):
                results.append({"file": str(relative), "size": file_path.stat().st_size})

        return results


async def read_file_handler(context: ToolExecutionContext, path: str, max_lines: int = 500) -> ToolResult:
    """Read a file."""
    try:
        content = FileManager(context).read_file(path, max_lines)
        return ToolResult(success=True, output=content)
    except Exception as e:
        return ToolResult(success=False, error=str(e))


async def write_file_handler(context: ToolExecutionContext, path: str, content: str) -> ToolResult:
    """Write to a file."""
    try:
        result = FileManager(context).write_file(path, content)
        return ToolResult(success=True, output=result)
    except Exception as e:
        return ToolResult(success=False, error=str(e))


async def edit_file_handler(
    context: ToolExecutionContext,
    path: str,
    old_string: str = "",
    new_string: str = "",
    content: Optional[str] = None,
    _use_write_mode: bool = False,
) -> ToolResult:
    """Edit a file in place, or overwrite it when the user supplied the full content."""
    try:
        manager = FileManager(context)
        if _use_write_mode and content is not None:
            result = manager.write_file(path, content)
        else:
            result = manager.edit_file(path, old_string, new_string)
        return ToolResult(success=True, output=result)
    except Exception as e:
        return ToolResult(success=False, error=str(e))


async def list_files_handler(
    context: ToolExecutionContext,
    path: str = ".",
    pattern: str = "*",
    recursive: bool = False,
) -> ToolResult:
    """List files in a directory."""
    try:
        files = FileManager(context).list_files(path, pattern, recursive)

        if not files:
            return ToolResult(success=True, output="No files found.")

        output = "\n".join(files[:200])
        if len(files) > 200:
            output += f"\n\n... and {len(files) - 200} more entries"

        return ToolResult(success=True, output=output, data=files)
    except Exception as e:
        return ToolResult(success=False, error=str(e))


async def search_files_handler(
    context: ToolExecutionContext,
    pattern: str,
    path: str = ".",
    search_content: bool = False,
) -> ToolResult:
    """Search for files."""
    try:
        results = FileManager(context).search_files(pattern, path, search_content)

        if not results:
            return ToolResult(success=True, output="No matches found.")

        output_lines = [f"Search results ({len(results)} matches):"]
        for r in results[:50]:
            if "preview" in r:
                output_lines.append(f"- {r['file']} ({r['matches']} matches): {r['preview'][:80]!r}")
            else:
                output_lines.append(f"- {r['file']} ({r['size']} bytes)")

        if len(results) > 50:
            output_lines.append(f"\n... and {len(results) - 50} more matches")

        return ToolResult(success=True, output="\n".join(output_lines), data=results)
    except Exception as e:
        return ToolResult(success=False, error=str(e))


def create_file_tools() -> list[Tool]:
    """Create file operation tools."""
    read_file = Tool(
        name="read_file",
        description="Read the contents of a file in the working directory.",
        parameters=[
            ToolParameter(
                name="path",
                param_type="string",
                description="Path to the file, relative to the working directory",
            ),
            ToolParameter(
                name="max_lines",
                param_type="integer",
                description="Maximum lines to read (default: 500)",
                required=False,
            ),
        ],
        handler=read_file_handler,
    )

    write_file = Tool(
        name="write_file",
        description="Create or overwrite a file in the working directory.",
        parameters=[
            ToolParameter(name="path", param_type="string", description="Path to the file"),
            ToolParameter(name="content", param_type="string", description="Full file content"),
        ],
        handler=write_file_handler,
    )

    edit_file = Tool(
        name="edit_file",
        description="Replace the first occurrence of old_string with new_string in a file.",
        parameters=[
            ToolParameter(name="path", param_type="string", description="Path to the file"),
            ToolParameter(name="old_string", param_type="string", description="Exact text to replace"),
            ToolParameter(name="new_string", param_type="string", description="Replacement text"),
        ],
        handler=edit_file_handler,
    )

    list_files = Tool(
        name="list_files",
        description="List files in a directory of the working directory.",
        parameters=[
            ToolParameter(
                name="path",
                param_type="string",
                description="Directory path (default: .)",
                required=False,
            ),
            ToolParameter(
                name="pattern",
                param_type="string",
                description="Glob pattern to filter files (default: *)",
                required=False,
            ),
            ToolParameter(
                name="recursive",
                param_type="boolean",
                description="Search recursively (default: false)",
                required=False,
            ),
        ],
        handler=list_files_handler,
    )

    search_files = Tool(
        name="search_files",
        description="Search for files by name pattern or content.",
        parameters=[
            ToolParameter(
                name="pattern",
                param_type="string",
                description="Search pattern (glob for names, regex for content)",
            ),
            ToolParameter(
                name="path",
                param_type="string",
                description="Directory to search in (default: .)",
                required=False,
            ),
            ToolParameter(
                name="search_content",
                param_type="boolean",
                description="Search file contents instead of names (default: false)",
                required=False,
            ),
        ],
        handler=search_files_handler,
    )

    return [list_files, read_file, write_file, edit_file, search_files]
