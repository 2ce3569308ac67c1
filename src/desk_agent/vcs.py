"""
Git helpers for file-change bookkeeping.
"""

import asyncio
import os
import shutil
from dataclasses import dataclass
from typing import Protocol

import structlog

logger = structlog.get_logger()


@dataclass
class DiffStats:
    additions: int = 0
    deletions: int = 0


class VersionControl(Protocol):
    async def relative_path(self, file_path: str, cwd: str) -> str: ...

    async def diff_stats(self, file_path: str, cwd: str) -> DiffStats | None: ...


def count_lines(path: str) -> int:
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            return sum(1 for _ in f)
    except OSError:
        return 0


class GitClient:
    """Runs git in a subprocess. Every method degrades gracefully outside a repo."""

    def __init__(self, git_binary: str | None = None, timeout: float = 10.0):
        self.git_binary = git_binary or shutil.which("git")
        self.timeout = timeout

    async def _run(self, cwd: str, *args: str) -> str | None:
        if not self.git_binary:
            return None
        try:
            process = await asyncio.create_subprocess_exec(
                self.git_binary,
                *args,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.debug("git unavailable", error=str(e))
            return None

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning("git command timed out", args=args)
            return None

        if process.returncode != 0:
            return None
        return stdout.decode("utf-8", errors="replace").strip()

    async def is_repo(self, cwd: str) -> bool:
        return await self._run(cwd, "rev-parse", "--is-inside-work-tree") == "true"

    async def relative_path(self, file_path: str, cwd: str) -> str:
        absolute = file_path if os.path.isabs(file_path) else os.path.join(cwd, file_path)
        root = await self._run(cwd, "rev-parse", "--show-toplevel")
        base = root or cwd
        return os.path.relpath(os.path.realpath(absolute), os.path.realpath(base))

    async def diff_stats(self, file_path: str, cwd: str) -> DiffStats | None:
        """Added/removed lines for one file, or None outside a git repo."""
        if not await self.is_repo(cwd):
            return None

        output = await self._run(cwd, "diff", "--numstat", "HEAD", "--", file_path)
        if output:
            added, deleted, *_ = output.splitlines()[0].split("\t")
            # binary files report "-"
            return DiffStats(
                additions=int(added) if added.isdigit() else 0,
                deletions=int(deleted) if deleted.isdigit() else 0,
            )

        tracked = await self._run(cwd, "ls-files", "--error-unmatch", "--", file_path)
        if tracked is None:
            absolute = file_path if os.path.isabs(file_path) else os.path.join(cwd, file_path)
            return DiffStats(additions=count_lines(absolute))
        return DiffStats()
