"""
SQLAlchemy-backed session store.
"""

import time
from dataclasses import asdict
from typing import Any

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..governance.charter import ADRItem, CharterData
from ..models import ChatSession, FileChangeEntry, HistoryEntry, init_database
from .base import (
    FileChange,
    HistoryRecord,
    SessionHistory,
    SessionInfo,
    TodoItem,
    merge_file_changes,
)

logger = structlog.get_logger()


def _to_info(row: ChatSession) -> SessionInfo:
    return SessionInfo(
        id=row.id,
        title=row.title,
        status=row.status,  # type: ignore[arg-type]
        cwd=row.cwd,
        model=row.model,
        temperature=row.temperature,
        input_tokens=row.input_tokens,
        output_tokens=row.output_tokens,
        charter=CharterData.from_dict(row.charter) if row.charter else None,
        charter_hash=row.charter_hash,
        adrs=[ADRItem.from_dict(a) for a in row.adrs or []],
        created_at=row.created_at.timestamp() if row.created_at else time.time(),
        updated_at=row.updated_at.timestamp() if row.updated_at else time.time(),
    )


class SqlSessionStore:
    """SessionStore over the async ORM models in ``desk_agent.models``."""

    def __init__(self, session_maker: async_sessionmaker):
        self._session_maker = session_maker

    @classmethod
    async def open(cls, database_url: str) -> "SqlSessionStore":
        return cls(await init_database(database_url))

    async def close(self) -> None:
        """Dispose of the engine and its pooled connections."""
        await self._session_maker.kw["bind"].dispose()

    async def create_session(
        self,
        title: str = "",
        cwd: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
    ) -> SessionInfo:
        async with self._session_maker() as db:
            row = ChatSession(title=title, cwd=cwd, model=model, temperature=temperature, adrs=[], todos=[])
            db.add(row)
            await db.commit()
            await db.refresh(row)
            logger.info("Created session", session_id=row.id, cwd=cwd)
            return _to_info(row)

    async def _get_row(self, db: AsyncSession, session_id: str) -> ChatSession:
        row = await db.get(ChatSession, session_id)
        if row is None:
            raise KeyError(f"Unknown session: {session_id}")
        return row

    async def get_session(self, session_id: str) -> SessionInfo | None:
        async with self._session_maker() as db:
            row = await db.get(ChatSession, session_id)
            return _to_info(row) if row else None

    async def update_session(self, session_id: str, **updates: Any) -> None:
        async with self._session_maker() as db:
            row = await self._get_row(db, session_id)
            for key, value in updates.items():
                if key == "charter":
                    value = value.to_dict() if value is not None else None
                elif key == "adrs":
                    value = [adr.to_dict() for adr in value]
                elif not hasattr(row, key):
                    raise AttributeError(f"Session has no column '{key}'")
                setattr(row, key, value)
            await db.commit()

    async def get_session_history(self, session_id: str) -> SessionHistory:
        async with self._session_maker() as db:
            row = await self._get_row(db, session_id)
            result = await db.execute(
                select(HistoryEntry)
                .where(HistoryEntry.session_id == session_id)
                .order_by(HistoryEntry.position)
            )
            records = [HistoryRecord.from_dict(entry.payload) for entry in result.scalars()]
            todos = [TodoItem(**t) for t in row.todos or []]
            return SessionHistory(records=records, todos=todos)

    async def replace_messages_before_index_with_summary(
        self, session_id: str, index: int, summary: str
    ) -> None:
        if index < 0:
            return
        async with self._session_maker() as db:
            result = await db.execute(
                select(HistoryEntry)
                .where(HistoryEntry.session_id == session_id)
                .order_by(HistoryEntry.position)
            )
            entries = list(result.scalars())
            replaced = entries[: index + 1]
            if not replaced:
                return

            position = replaced[-1].position
            await db.execute(
                delete(HistoryEntry).where(HistoryEntry.id.in_([e.id for e in replaced]))
            )
            record = HistoryRecord.system_summary(summary)
            db.add(HistoryEntry(
                session_id=session_id,
                position=position,
                type=record.type,
                payload=record.to_dict(),
            ))
            await db.commit()
            logger.info("Compacted session history", session_id=session_id, replaced=len(replaced))

    async def record_message(self, session_id: str, record: HistoryRecord) -> None:
        async with self._session_maker() as db:
            last = await db.scalar(
                select(func.max(HistoryEntry.position)).where(HistoryEntry.session_id == session_id)
            )
            db.add(HistoryEntry(
                session_id=session_id,
                position=(last if last is not None else -1) + 1,
                type=record.type,
                payload=record.to_dict(),
            ))
            await db.commit()

    async def save_todos(self, session_id: str, todos: list[TodoItem]) -> None:
        async with self._session_maker() as db:
            row = await self._get_row(db, session_id)
            row.todos = [asdict(t) for t in todos]
            await db.commit()

    async def add_file_changes(self, session_id: str, changes: list[FileChange]) -> None:
        async with self._session_maker() as db:
            await self._get_row(db, session_id)
            result = await db.execute(
                select(FileChangeEntry).where(FileChangeEntry.session_id == session_id)
            )
            existing_rows = list(result.scalars())
            existing = [
                FileChange(
                    path=e.path,
                    additions=e.additions,
                    deletions=e.deletions,
                    status=e.status,  # type: ignore[arg-type]
                    commit_hash=e.commit_hash,
                )
                for e in existing_rows
            ]
            for entry in existing_rows:
                await db.delete(entry)
            for change in merge_file_changes(existing, changes):
                db.add(FileChangeEntry(session_id=session_id, **asdict(change)))
            await db.commit()

    async def get_file_changes(self, session_id: str) -> list[FileChange]:
        async with self._session_maker() as db:
            result = await db.execute(
                select(FileChangeEntry).where(FileChangeEntry.session_id == session_id)
            )
            return [
                FileChange(
                    path=e.path,
                    additions=e.additions,
                    deletions=e.deletions,
                    status=e.status,  # type: ignore[arg-type]
                    commit_hash=e.commit_hash,
                )
                for e in result.scalars()
            ]
