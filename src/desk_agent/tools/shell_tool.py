"""
Shell Command Tool - Controlled execution of shell commands.

Commands run in the session's working directory with a timeout, output
limits and a list of blocked patterns.
"""

import asyncio
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Optional

from .base import Tool, ToolExecutionContext, ToolParameter, ToolResult

logger = logging.getLogger(__name__)


@dataclass
class ShellConfig:
    """Configuration for shell command execution."""

    timeout_seconds: int = 120
    max_output_lines: int = 400
    max_output_chars: int = 30000

    blocked_patterns: list[str] = field(default_factory=lambda: [
        r"rm\s+-rf\s+/(\s|$)",
        r"rm\s+-rf\s+~",
        r">\s*/dev/sd",
        r"mkfs",
        r"dd\s+if=",
        r":\(\)\s*\{\s*:\|:&\s*\};:",
        r"curl.*\|\s*(ba)?sh",
        r"wget.*\|\s*(ba)?sh",
    ])


class ShellExecutor:
    """Executes shell commands with safety controls."""

    def __init__(self, config: Optional[ShellConfig] = None):
        self.config = config or ShellConfig()

    def _is_command_allowed(self, command: str) -> tuple[bool, str]:
        """Check if a command is allowed to execute."""
        if not command.strip():
            return False, "Empty command"

        for pattern in self.config.blocked_patterns:
            if re.search(pattern, command, re.IGNORECASE):
                return False, "Command contains blocked pattern"

        return True, "OK"

    async def execute(self, command: str, cwd: str) -> tuple[int, str, str]:
        """
        Execute a shell command.

        Returns:
            Tuple of (return_code, stdout, stderr)
        """
        allowed, reason = self._is_command_allowed(command)
        if not allowed:
            return -1, "", f"Command blocked: {reason}"

        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=os.environ.copy(),
        )

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return -1, "", f"Command timed out after {self.config.timeout_seconds} seconds"
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        return (
            process.returncode if process.returncode is not None else -1,
            self._truncate_output(stdout.decode("utf-8", errors="replace")),
            self._truncate_output(stderr.decode("utf-8", errors="replace")),
        )

    def _truncate_output(self, output: str) -> str:
        """Truncate output to configured limits."""
        lines = output.split("\n")

        if len(lines) > self.config.max_output_lines:
            output = "\n".join(lines[:self.config.max_output_lines])
            output += f"\n\n... (truncated, {self.config.max_output_lines} of {len(lines)} lines shown)"

        if len(output) > self.config.max_output_chars:
            output = output[:self.config.max_output_chars] + "\n\n... (truncated)"

        return output


async def run_command_handler(context: ToolExecutionContext, command: str) -> ToolResult:
    """Execute a shell command in the working directory."""
    try:
        return_code, stdout, stderr = await ShellExecutor().execute(command, context.cwd)
    except OSError as e:
        logger.error(f"Error executing command: {e}")
        return ToolResult(success=False, error=str(e))

    output_parts = []
    if stdout:
        output_parts.append(stdout.rstrip())
    if stderr:
        output_parts.append(f"[stderr]\n{stderr.rstrip()}")
    if return_code != 0:
        output_parts.append(f"[exit code {return_code}]")
    if not output_parts:
        output_parts.append("Command completed successfully (no output)")

    text = "\n\n".join(output_parts)
    if return_code == 0:
        return ToolResult(success=True, output=text, data={"exit_code": return_code})
    return ToolResult(success=False, error=text, data={"exit_code": return_code})


def create_shell_tools() -> list[Tool]:
    """Create shell-related tools."""
    run_command = Tool(
        name="run_command",
        description="Execute a shell command in the working directory.",
        parameters=[
            ToolParameter(
                name="command",
                param_type="string",
                description="The shell command to execute",
            ),
        ],
        handler=run_command_handler,
    )

    return [run_command]
