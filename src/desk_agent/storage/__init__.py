"""
Session storage: the SessionStore interface and its implementations.
"""

from .base import (
    Attachment,
    FileChange,
    HistoryRecord,
    SessionHistory,
    SessionInfo,
    SessionStatus,
    SessionStore,
    TodoItem,
)
from .memory import MemorySessionStore
from .sql import SqlSessionStore

__all__ = [
    "Attachment",
    "FileChange",
    "HistoryRecord",
    "SessionHistory",
    "SessionInfo",
    "SessionStatus",
    "SessionStore",
    "TodoItem",
    "MemorySessionStore",
    "SqlSessionStore",
]
