"""
Session Memory - durable notes kept per working directory.

Each working directory gets an append-only ``.desk-agent/memory.md`` file.
Only the memory flush writes to it; the agent loop reads its tail into the
system prompt on every iteration.
"""

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from filelock import FileLock, Timeout

logger = logging.getLogger(__name__)

MEMORY_DIR_NAME = ".desk-agent"
MEMORY_FILE_NAME = "memory.md"
DEFAULT_MAX_CHARS = 8000
LOCK_TIMEOUT_SECONDS = 10.0


class SessionMemory:
    """Append-only memory file scoped to a working directory."""

    def __init__(self, cwd: Optional[str]):
        """Initialize session memory.

        Args:
            cwd: Working directory of the session. ``None`` disables memory.
        """
        self.path: Optional[Path] = (
            Path(cwd).expanduser() / MEMORY_DIR_NAME / MEMORY_FILE_NAME if cwd else None
        )

    @property
    def enabled(self) -> bool:
        return self.path is not None

    @property
    def lock_path(self) -> Optional[Path]:
        return self.path.with_name(f"{self.path.name}.lock") if self.path else None

    def load(self, max_chars: int = DEFAULT_MAX_CHARS) -> str:
        """Read the tail of the memory file.

        Returns:
            The last ``max_chars`` characters, or "" if there is no memory yet
        """
        if self.path is None or not self.path.exists():
            return ""
        try:
            content = self.path.read_text(encoding="utf-8").strip()
        except OSError as e:
            logger.warning(f"Failed to read session memory {self.path}: {e}")
            return ""
        return content[-max_chars:] if len(content) > max_chars else content

    async def append(self, entry: str) -> bool:
        """Append a timestamped section.

        Args:
            entry: Markdown text to add

        Returns:
            True if something was written
        """
        if self.path is None or not entry.strip():
            return False

        timestamp = datetime.now(timezone.utc).isoformat()
        section = f"\n\n## {timestamp}\n{entry.strip()}\n"

        try:
            await asyncio.to_thread(self._write_locked, section)
        except Timeout:
            logger.warning(f"Timed out waiting for the memory file lock {self.lock_path}")
            return False

        logger.info(f"Appended {len(entry)} chars to session memory {self.path}")
        return True

    def _write_locked(self, section: str) -> None:
        # the file lock is shared with other processes appending to the same directory
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with FileLock(self.lock_path, timeout=LOCK_TIMEOUT_SECONDS):
            with self.path.open("a", encoding="utf-8") as f:
                f.write(section)


def load_global_memory(data_dir: Path, max_chars: int = DEFAULT_MAX_CHARS) -> str:
    """User-level memory shared by all sessions (``<data_dir>/memory.md``)."""
    path = Path(data_dir).expanduser() / MEMORY_FILE_NAME
    if not path.exists():
        return ""
    try:
        content = path.read_text(encoding="utf-8").strip()
    except OSError as e:
        logger.warning(f"Failed to read global memory {path}: {e}")
        return ""
    return content[-max_chars:]
