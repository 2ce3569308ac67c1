"""
Preview Manager - before/after approval of file changes.

A preview batch bundles one or more proposed changes for a tool call. The
loop awaits ``request_approval``; the caller answers each preview with
``handle_preview_approval`` or the whole batch with ``handle_batch_approval``.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Literal
from uuid import uuid4

import structlog

from .events import AgentEvent, EventSink

logger = structlog.get_logger()

PreviewType = Literal["file_edit", "file_create", "file_delete", "command_exec"]
PreviewStatus = Literal["pending", "approved", "rejected", "modified"]
ApprovalAction = Literal["approve", "approve_modified", "reject_retry", "reject_skip"]


@dataclass
class ChangePreview:
    id: str
    type: PreviewType
    target: str
    before: str | None = None
    after: str | None = None
    command: str | None = None
    description: str | None = None
    status: PreviewStatus = "pending"
    user_modified_content: str | None = None
    created_at: float = field(default_factory=time.time)


@dataclass
class PreviewBatch:
    id: str
    session_id: str
    tool_call_id: str
    tool_name: str
    previews: list[ChangePreview]
    status: Literal["pending", "resolved"] = "pending"
    created_at: float = field(default_factory=time.time)


@dataclass
class PreviewApproval:
    batch_id: str
    preview_id: str
    action: ApprovalAction
    modified_content: str | None = None
    reject_reason: str | None = None


@dataclass
class BatchApproval:
    batch_id: str
    action: Literal["approve_all", "reject_all"]
    reject_reason: str | None = None


@dataclass
class PreviewDecision:
    id: str
    action: ApprovalAction
    content: str | None = None


@dataclass
class PreviewBatchResult:
    batch_id: str
    approved: bool
    previews: list[PreviewDecision] = field(default_factory=list)


def create_change_preview(
    type: PreviewType,
    target: str,
    before: str | None = None,
    after: str | None = None,
    command: str | None = None,
    description: str | None = None,
) -> ChangePreview:
    return ChangePreview(
        id=str(uuid4()),
        type=type,
        target=target,
        before=before,
        after=after,
        command=command,
        description=description,
    )


def create_preview_batch(
    session_id: str,
    tool_call_id: str,
    tool_name: str,
    previews: list[ChangePreview],
) -> PreviewBatch:
    return PreviewBatch(
        id=str(uuid4()),
        session_id=session_id,
        tool_call_id=tool_call_id,
        tool_name=tool_name,
        previews=previews,
    )


_STATUS_TO_ACTION: dict[str, ApprovalAction] = {
    "approved": "approve",
    "modified": "approve_modified",
}


class PreviewManager:
    """Pending preview batches, each resolved through a future keyed by batch id."""

    def __init__(self, emit: EventSink | None = None):
        self._emit = emit
        self._pending: dict[str, tuple[PreviewBatch, asyncio.Future]] = {}

    async def request_approval(self, batch: PreviewBatch) -> PreviewBatchResult:
        """Publish the batch and suspend until the user resolves it."""
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[batch.id] = (batch, future)
        if self._emit is not None:
            self._emit(AgentEvent("preview.request", {"session_id": batch.session_id, "batch": batch}))
        logger.info("Preview requested", batch_id=batch.id, tool=batch.tool_name, items=len(batch.previews))
        try:
            return await future
        finally:
            self._pending.pop(batch.id, None)

    def _resolve(self, batch: PreviewBatch, result: PreviewBatchResult) -> None:
        entry = self._pending.pop(batch.id, None)
        batch.status = "resolved"
        if entry is not None and not entry[1].done():
            entry[1].set_result(result)
        if self._emit is not None:
            self._emit(AgentEvent("preview.resolved", {"session_id": batch.session_id, "batch_id": batch.id}))

    def handle_preview_approval(self, approval: PreviewApproval) -> bool:
        """Resolve one preview; the batch resolves once every item is decided."""
        entry = self._pending.get(approval.batch_id)
        if entry is None:
            logger.warning("No pending preview batch", batch_id=approval.batch_id)
            return False
        batch = entry[0]

        for preview in batch.previews:
            if preview.id == approval.preview_id:
                if approval.action == "approve":
                    preview.status = "approved"
                elif approval.action == "approve_modified":
                    preview.status = "modified"
                else:
                    preview.status = "rejected"
                if approval.modified_content is not None:
                    preview.user_modified_content = approval.modified_content
                break

        if any(p.status == "pending" for p in batch.previews):
            return True

        self._resolve(batch, PreviewBatchResult(
            batch_id=batch.id,
            approved=any(p.status in ("approved", "modified") for p in batch.previews),
            previews=[
                PreviewDecision(
                    id=p.id,
                    action=_STATUS_TO_ACTION.get(p.status, "reject_skip"),
                    content=p.user_modified_content if p.status == "modified" else p.after,
                )
                for p in batch.previews
            ],
        ))
        return True

    def handle_batch_approval(self, approval: BatchApproval) -> bool:
        entry = self._pending.get(approval.batch_id)
        if entry is None:
            logger.warning("No pending preview batch", batch_id=approval.batch_id)
            return False
        batch = entry[0]
        approved = approval.action == "approve_all"

        for preview in batch.previews:
            preview.status = "approved" if approved else "rejected"

        self._resolve(batch, PreviewBatchResult(
            batch_id=batch.id,
            approved=approved,
            previews=[
                PreviewDecision(id=p.id, action="approve" if approved else "reject_skip", content=p.after)
                for p in batch.previews
            ],
        ))
        return True

    def cancel_batch(self, batch_id: str) -> None:
        """Resolve a batch as rejected (e.g. the session was stopped)."""
        entry = self._pending.get(batch_id)
        if entry is None:
            return
        batch = entry[0]
        self._resolve(batch, PreviewBatchResult(
            batch_id=batch_id,
            approved=False,
            previews=[PreviewDecision(id=p.id, action="reject_skip") for p in batch.previews],
        ))

    def cancel_session_batches(self, session_id: str) -> None:
        for batch_id, (batch, _) in list(self._pending.items()):
            if batch.session_id == session_id:
                self.cancel_batch(batch_id)

    def get_pending_batch(self, batch_id: str) -> PreviewBatch | None:
        entry = self._pending.get(batch_id)
        return entry[0] if entry else None

    def has_pending_batches(self, session_id: str) -> bool:
        return any(batch.session_id == session_id for batch, _ in self._pending.values())
