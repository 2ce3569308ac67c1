"""
Permission requests - the loop asks, the caller answers.

Each request is a future keyed by the tool call id. The loop awaits the
future; the caller resolves it through ``PermissionBroker.resolve``.
Nothing is shared between sessions: every runner owns its own broker.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

logger = structlog.get_logger()


@dataclass
class PermissionRequest:
    """A tool execution waiting for the user's decision."""
    id: str
    tool_name: str
    arguments: dict[str, Any]
    explanation: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    future: asyncio.Future = field(default_factory=lambda: asyncio.get_running_loop().create_future(), repr=False)

    @property
    def is_pending(self) -> bool:
        return not self.future.done()

    @property
    def approved(self) -> bool:
        return self.future.done() and not self.future.cancelled() and bool(self.future.result())

    def format_for_display(self) -> str:
        args_display = "\n".join(f"  {k}: {str(v)[:100]}" for k, v in self.arguments.items())
        return (
            f"🔴 Approval required for `{self.tool_name}`\n"
            f"{args_display}"
        )


class PermissionBroker:
    """Pending permission requests of one session."""

    def __init__(self):
        self._pending: dict[str, PermissionRequest] = {}

    def create_request(
        self,
        request_id: str,
        tool_name: str,
        arguments: dict[str, Any],
        explanation: str = "",
    ) -> PermissionRequest:
        request = PermissionRequest(
            id=request_id,
            tool_name=tool_name,
            arguments=arguments,
            explanation=explanation or f"Execute `{tool_name}` with given arguments",
        )
        self._pending[request_id] = request
        logger.info("Permission requested", request_id=request_id, tool=tool_name)
        return request

    def resolve(self, request_id: str, approved: bool) -> bool:
        """Answer a pending request. Returns False if there is nothing to answer."""
        request = self._pending.get(request_id)
        if request is None or not request.is_pending:
            return False
        request.future.set_result(approved)
        logger.info("Permission resolved", request_id=request_id, tool=request.tool_name, approved=approved)
        return True

    async def wait(self, request_id: str) -> bool:
        """Suspend until the request is answered. Returns True if approved."""
        request = self._pending.get(request_id)
        if request is None:
            return False
        try:
            return bool(await request.future)
        finally:
            self._pending.pop(request_id, None)

    def get_pending(self, request_id: str) -> PermissionRequest | None:
        return self._pending.get(request_id)

    def list_pending(self) -> list[PermissionRequest]:
        return [r for r in self._pending.values() if r.is_pending]

    def cancel_all(self) -> None:
        for request in self._pending.values():
            if request.is_pending:
                request.future.cancel()
        self._pending.clear()
