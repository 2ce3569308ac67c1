"""
Events emitted by the agent loop to its caller (UI, CLI, tests).
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Literal

EventType = Literal[
    "stream.message",
    "stream.user_prompt",
    "session.status",
    "permission.request",
    "preview.request",
    "preview.resolved",
    "todos.updated",
    "file_changes.updated",
]


@dataclass
class AgentEvent:
    """A tagged event. ``payload`` always carries ``session_id``."""

    type: EventType
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def session_id(self) -> str | None:
        return self.payload.get("session_id")

    @property
    def message(self) -> dict[str, Any]:
        """The inner message of a ``stream.message`` event."""
        return self.payload.get("message", {})


EventSink = Callable[[AgentEvent], None]


def stream_message(session_id: str, message: dict[str, Any]) -> AgentEvent:
    return AgentEvent("stream.message", {"session_id": session_id, "message": message})


def session_status(session_id: str, status: str, **extra: Any) -> AgentEvent:
    return AgentEvent("session.status", {"session_id": session_id, "status": status, **extra})


def system_notice(session_id: str, text: str, subtype: str = "notice") -> AgentEvent:
    return stream_message(session_id, {"type": "system", "subtype": subtype, "text": text})


def stream_event(session_id: str, event: dict[str, Any]) -> AgentEvent:
    """A partial-message (content block) event."""
    return stream_message(session_id, {"type": "stream_event", "event": event})
