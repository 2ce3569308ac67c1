"""
In-process session store. Used by tests and one-shot CLI runs.
"""

import copy
import time
from dataclasses import replace
from typing import Any
from uuid import uuid4

from .base import (
    FileChange,
    HistoryRecord,
    SessionHistory,
    SessionInfo,
    TodoItem,
    merge_file_changes,
)


class MemorySessionStore:
    """Keeps sessions, history, todos and file changes in dictionaries."""

    def __init__(self):
        self._sessions: dict[str, SessionInfo] = {}
        self._records: dict[str, list[HistoryRecord]] = {}
        self._todos: dict[str, list[TodoItem]] = {}
        self._file_changes: dict[str, list[FileChange]] = {}

    async def create_session(
        self,
        title: str = "",
        cwd: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        session_id: str | None = None,
    ) -> SessionInfo:
        session = SessionInfo(
            id=session_id or str(uuid4()),
            title=title,
            cwd=cwd,
            model=model,
            temperature=temperature,
        )
        self._sessions[session.id] = session
        self._records[session.id] = []
        self._todos[session.id] = []
        self._file_changes[session.id] = []
        return replace(session)

    def _require(self, session_id: str) -> SessionInfo:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise KeyError(f"Unknown session: {session_id}") from None

    async def get_session(self, session_id: str) -> SessionInfo | None:
        session = self._sessions.get(session_id)
        return copy.deepcopy(session) if session else None

    async def update_session(self, session_id: str, **updates: Any) -> None:
        session = self._require(session_id)
        for key, value in updates.items():
            if not hasattr(session, key):
                raise AttributeError(f"SessionInfo has no field '{key}'")
            setattr(session, key, value)
        session.updated_at = time.time()

    async def get_session_history(self, session_id: str) -> SessionHistory:
        self._require(session_id)
        return SessionHistory(
            records=list(self._records[session_id]),
            todos=[replace(t) for t in self._todos[session_id]],
        )

    async def replace_messages_before_index_with_summary(
        self, session_id: str, index: int, summary: str
    ) -> None:
        self._require(session_id)
        records = self._records[session_id]
        if index < 0:
            return
        self._records[session_id] = [HistoryRecord.system_summary(summary)] + records[index + 1:]

    async def record_message(self, session_id: str, record: HistoryRecord) -> None:
        self._require(session_id)
        self._records[session_id].append(record)

    async def save_todos(self, session_id: str, todos: list[TodoItem]) -> None:
        self._require(session_id)
        self._todos[session_id] = [replace(t) for t in todos]

    async def add_file_changes(self, session_id: str, changes: list[FileChange]) -> None:
        self._require(session_id)
        self._file_changes[session_id] = merge_file_changes(self._file_changes[session_id], changes)

    async def get_file_changes(self, session_id: str) -> list[FileChange]:
        self._require(session_id)
        return [replace(c) for c in self._file_changes[session_id]]
