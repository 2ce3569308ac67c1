"""
Tool Dispatch Gate - everything between "the model asked for a tool" and
"the tool ran".

For each call, in order:

1. parse (and if needed repair) the argument text
2. ask the user for permission when the permission mode is ``ask``
3. check the action against the session charter, if there is one
4. show a before/after preview for file-mutating tools
5. execute through the registry
6. record file changes made by write_file / edit_file

Every outcome, including denials and rejections, comes back as a
``GateOutcome`` whose ``content`` is the tool message sent to the model.
Only an abort escapes, as ``RunAborted``.
"""

import json
import os
import re
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

import structlog

from ..config import Settings
from ..events import AgentEvent, EventSink, system_notice
from ..governance import (
    ActionIntent,
    ADRItem,
    CharterData,
    ComplianceResult,
    check_action_compliance,
    create_action_intent,
    format_compliance_result,
)
from ..llm.base import ToolCall
from ..preview import PreviewManager, create_change_preview, create_preview_batch
from ..storage.base import FileChange, SessionStore
from ..tools.base import ToolExecutionContext, ToolResult
from ..tools.registry import ToolRegistry
from ..vcs import VersionControl, count_lines
from .approvals import PermissionBroker
from .execution_log import ExecutionLogger

logger = structlog.get_logger()

T = TypeVar("T")

PREVIEW_TOOLS = ("write_file", "edit_file")
FILE_CHANGE_TOOLS = ("write_file", "edit_file")

PARSE_ERROR_KEY = "_parse_error"
DENIED_MESSAGE = "Error: Tool execution denied by user"
PREVIEW_REJECTED_MESSAGE = "Error: File change rejected by user during preview"

_TRAILING_COMMA = re.compile(r",\s*$")

ComplianceChecker = Callable[[ActionIntent, CharterData, list[ADRItem]], ComplianceResult]


def parse_tool_arguments(raw: str | None) -> dict[str, Any]:
    """Parse streamed argument text.

    Truncated objects get one repair attempt (drop a trailing comma, close
    the brace). Anything still unparseable comes back as
    ``{"_parse_error": ...}`` instead of raising.
    """
    if not raw or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        try:
            parsed = json.loads(_TRAILING_COMMA.sub("", raw) + "}")
        except ValueError:
            logger.warning("Unparseable tool arguments", raw=raw[:200])
            return {PARSE_ERROR_KEY: f"Invalid JSON: {raw[:200]}..."}

    if not isinstance(parsed, dict):
        return {PARSE_ERROR_KEY: f"Arguments must be a JSON object, got: {raw[:200]}..."}
    return parsed


def tool_result_content(result: ToolResult) -> str:
    if result.success:
        return result.output or "Success"
    return f"Error: {result.error}"


@dataclass
class GateOutcome:
    """What happened to one tool call."""

    tool_call_id: str
    tool_name: str
    arguments: dict[str, Any]
    content: str
    is_error: bool
    executed: bool = False
    result: ToolResult | None = None
    file_changes: list[FileChange] = field(default_factory=list)


async def _plain_wait(awaitable: Awaitable[T]) -> T:
    return await awaitable


class ToolDispatchGate:
    """Applies permission, compliance and preview checks before running a tool.

    ``wait`` wraps every suspension point; the runner passes a wrapper that
    raises ``RunAborted`` as soon as the run is aborted.
    """

    def __init__(
        self,
        session_id: str,
        store: SessionStore,
        emit: EventSink,
        permissions: PermissionBroker,
        previews: PreviewManager,
        compliance_checker: ComplianceChecker = check_action_compliance,
        vcs: VersionControl | None = None,
        execution_log: ExecutionLogger | None = None,
        wait: Callable[[Awaitable[Any]], Awaitable[Any]] = _plain_wait,
    ):
        self.session_id = session_id
        self.store = store
        self.emit = emit
        self.permissions = permissions
        self.previews = previews
        self.compliance_checker = compliance_checker
        self.vcs = vcs
        self.execution_log = execution_log
        self.wait = wait

    def _log_tool(self, call: ToolCall, arguments: dict[str, Any], status: str, **extra: Any) -> None:
        if self.execution_log is not None:
            self.execution_log.log_tool_execution(call.name, call.id, arguments, status, **extra)

    def _reject(self, call: ToolCall, arguments: dict[str, Any], content: str, started: float) -> GateOutcome:
        self._log_tool(
            call,
            arguments,
            "error",
            error=content,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return GateOutcome(call.id, call.name, arguments, content, is_error=True)

    async def dispatch(
        self,
        call: ToolCall,
        registry: ToolRegistry,
        settings: Settings,
        context: ToolExecutionContext,
    ) -> GateOutcome:
        started = time.monotonic()
        arguments = parse_tool_arguments(call.arguments)
        if PARSE_ERROR_KEY in arguments:
            return self._reject(
                call,
                arguments,
                f"Error: Failed to parse tool arguments. {arguments[PARSE_ERROR_KEY]}",
                started,
            )

        self._log_tool(call, arguments, "start")

        if settings.permission_mode == "ask":
            if not await self._ask_permission(call, arguments):
                logger.info("Tool denied", tool_name=call.name, tool_use_id=call.id)
                return self._reject(call, arguments, DENIED_MESSAGE, started)

        session = await self.store.get_session(self.session_id)
        if session is not None and session.charter is not None:
            compliance = self.compliance_checker(
                create_action_intent(call.name, arguments),
                session.charter,
                session.adrs,
            )
            if not compliance.allowed:
                formatted = format_compliance_result(compliance)
                logger.info("Tool blocked by compliance", tool_name=call.name, reason=compliance.reason)
                self.emit(system_notice(self.session_id, formatted, subtype="warning"))
                return self._reject(call, arguments, f"Error: {formatted}", started)
            if compliance.status == "soft_fail":
                self.emit(system_notice(self.session_id, f"⚠️ Compliance note: {compliance.reason}", subtype="info"))

        if call.name in PREVIEW_TOOLS and settings.enable_preview and settings.preview_mode != "never":
            if not await self._preview(call, arguments, context):
                return self._reject(call, arguments, PREVIEW_REJECTED_MESSAGE, started)

        result = await self.wait(registry.execute(call.name, arguments, context))
        content = tool_result_content(result)
        self._log_tool(
            call,
            arguments,
            "success" if result.success else "error",
            result=content[:500] + "... (truncated)" if len(content) > 500 else content,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

        outcome = GateOutcome(
            call.id,
            call.name,
            arguments,
            content,
            is_error=not result.success,
            executed=True,
            result=result,
        )
        if result.success and call.name in FILE_CHANGE_TOOLS:
            outcome.file_changes = await self._track_file_change(call.name, arguments, context.cwd)
        return outcome

    async def _ask_permission(self, call: ToolCall, arguments: dict[str, Any]) -> bool:
        request = self.permissions.create_request(
            call.id,
            call.name,
            arguments,
            str(arguments.get("explanation") or ""),
        )
        self.emit(AgentEvent("permission.request", {
            "session_id": self.session_id,
            "tool_use_id": call.id,
            "tool_name": call.name,
            "input": arguments,
            "explanation": request.explanation,
        }))
        self._log_tool(call, arguments, "permission_required")
        return await self.wait(self.permissions.wait(call.id))

    async def _preview(self, call: ToolCall, arguments: dict[str, Any], context: ToolExecutionContext) -> bool:
        """Ask for approval of a file change. Mutates ``arguments`` if the user edited the result."""
        path = str(arguments.get("path") or arguments.get("file_path") or "")
        before = ""
        after = str(arguments.get("content") or "")
        preview_type = "file_create"

        try:
            full_path = context.resolve_path(path) if path else None
            if full_path is not None and full_path.is_file():
                before = full_path.read_text(encoding="utf-8", errors="replace")
                if call.name == "write_file":
                    preview_type = "file_edit"
                else:
                    old_string = str(arguments.get("old_string") or "")
                    if old_string and old_string in before:
                        after = before.replace(old_string, str(arguments.get("new_string") or ""), 1)
                        preview_type = "file_edit"
        except (OSError, PermissionError) as e:
            logger.warning("Failed to read file for preview", path=path, error=str(e))

        preview = create_change_preview(
            preview_type,
            path,
            before=before,
            after=after,
            description=arguments.get("explanation"),
        )
        batch = create_preview_batch(self.session_id, call.id, call.name, [preview])
        decision = await self.wait(self.previews.request_approval(batch))

        if not decision.approved:
            logger.info("Preview rejected", tool_name=call.name, path=path)
            return False

        item = decision.previews[0] if decision.previews else None
        if item is not None and item.action == "approve_modified" and item.content:
            arguments["content"] = item.content
            if call.name == "edit_file":
                arguments["_use_write_mode"] = True
        return True

    async def _track_file_change(self, tool_name: str, arguments: dict[str, Any], cwd: str) -> list[FileChange]:
        path = arguments.get("path") or arguments.get("file_path")
        if not path or not cwd:
            return []
        absolute = path if os.path.isabs(path) else os.path.join(cwd, path)

        try:
            stats = None
            if self.vcs is not None:
                relative = await self.vcs.relative_path(path, cwd)
                stats = await self.vcs.diff_stats(path, cwd)
            else:
                relative = os.path.relpath(absolute, cwd)

            if stats is not None:
                additions, deletions = stats.additions, stats.deletions
            else:
                additions = count_lines(absolute) if tool_name == "write_file" else 0
                deletions = 0

            if not (additions or deletions or tool_name == "write_file"):
                return []

            changes = [FileChange(path=relative, additions=additions, deletions=deletions)]
            await self.store.add_file_changes(self.session_id, changes)
            self.emit(AgentEvent("file_changes.updated", {
                "session_id": self.session_id,
                "file_changes": await self.store.get_file_changes(self.session_id),
            }))
            logger.info("Tracked file change", path=relative, additions=additions, deletions=deletions)
            return changes
        except Exception as e:
            logger.error("Failed to track file change", path=path, error=str(e))
            return []
