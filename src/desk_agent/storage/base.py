"""
Session storage types and the SessionStore interface the agent loop uses.
"""

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Literal, Protocol, runtime_checkable

from ..governance.charter import ADRItem, CharterData

SessionStatus = Literal["idle", "running", "completed", "error"]
RecordType = Literal["user_prompt", "text", "tool_use", "tool_result", "system_summary"]
TodoStatus = Literal["pending", "in_progress", "completed", "cancelled"]


@dataclass
class Attachment:
    """A file the user attached to a prompt."""

    id: str
    type: Literal["image", "video", "audio", "file"]
    name: str
    mime_type: str = ""
    data_url: str = ""
    size: int = 0
    path: str | None = None


@dataclass
class HistoryRecord:
    """One persisted entry of a session's history.

    ``text`` holds the prompt, assistant text, tool output or summary
    depending on ``type``.
    """

    type: RecordType
    text: str = ""
    tool_use_id: str | None = None
    tool_name: str | None = None
    tool_input: dict[str, Any] | None = None
    is_error: bool = False
    attachments: list[Attachment] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)

    @classmethod
    def user_prompt(cls, prompt: str, attachments: list[Attachment] | None = None) -> "HistoryRecord":
        return cls(type="user_prompt", text=prompt, attachments=list(attachments or []))

    @classmethod
    def assistant_text(cls, text: str) -> "HistoryRecord":
        return cls(type="text", text=text)

    @classmethod
    def tool_use(cls, tool_use_id: str, name: str, tool_input: dict[str, Any]) -> "HistoryRecord":
        return cls(type="tool_use", tool_use_id=tool_use_id, tool_name=name, tool_input=tool_input)

    @classmethod
    def tool_result(cls, tool_use_id: str, content: str, is_error: bool = False) -> "HistoryRecord":
        return cls(type="tool_result", tool_use_id=tool_use_id, text=content, is_error=is_error)

    @classmethod
    def system_summary(cls, summary: str) -> "HistoryRecord":
        return cls(type="system_summary", text=summary)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryRecord":
        data = dict(data)
        data["attachments"] = [Attachment(**a) for a in data.get("attachments") or []]
        return cls(**data)


@dataclass
class TodoItem:
    id: str
    content: str
    status: TodoStatus = "pending"


@dataclass
class FileChange:
    """A file the agent changed, with line stats relative to the working dir."""

    path: str
    additions: int = 0
    deletions: int = 0
    status: Literal["pending", "confirmed"] = "pending"
    commit_hash: str | None = None


@dataclass
class SessionInfo:
    id: str
    title: str = ""
    status: SessionStatus = "idle"
    cwd: str | None = None
    model: str | None = None
    temperature: float | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    charter: CharterData | None = None
    charter_hash: str | None = None
    adrs: list[ADRItem] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)


@dataclass
class SessionHistory:
    records: list[HistoryRecord] = field(default_factory=list)
    todos: list[TodoItem] = field(default_factory=list)


@runtime_checkable
class SessionStore(Protocol):
    """Persistence the agent loop depends on."""

    async def get_session(self, session_id: str) -> SessionInfo | None: ...

    async def update_session(self, session_id: str, **updates: Any) -> None: ...

    async def get_session_history(self, session_id: str) -> SessionHistory: ...

    async def replace_messages_before_index_with_summary(
        self, session_id: str, index: int, summary: str
    ) -> None: ...

    async def record_message(self, session_id: str, record: HistoryRecord) -> None: ...

    async def save_todos(self, session_id: str, todos: list[TodoItem]) -> None: ...

    async def add_file_changes(self, session_id: str, changes: list[FileChange]) -> None: ...

    async def get_file_changes(self, session_id: str) -> list[FileChange]: ...


def merge_file_changes(existing: list[FileChange], changes: list[FileChange]) -> list[FileChange]:
    """Fold new changes into the list, summing line stats per path."""
    merged = {change.path: FileChange(**asdict(change)) for change in existing}
    for change in changes:
        current = merged.get(change.path)
        if current is None:
            merged[change.path] = FileChange(**asdict(change))
        else:
            current.additions += change.additions
            current.deletions += change.deletions
            current.status = "pending"
    return list(merged.values())
