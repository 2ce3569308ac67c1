"""
Command-line interface for desk-agent.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Awaitable, Callable

import structlog
from pydantic import ValidationError

from .agent import AgentRunner, RunState
from .config import Settings, get_settings
from .errors import ConfigurationError
from .events import AgentEvent
from .preview import BatchApproval, PreviewBatch
from .storage import SqlSessionStore
from .vcs import GitClient


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level.upper())
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger()


def main() -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="desk-agent",
        description="desk-agent - a tool-using LLM agent for your working directory",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run one prompt")
    run_parser.add_argument("prompt", help="What the agent should do")
    run_parser.add_argument("--cwd", default=os.getcwd(), help="Working directory (default: current)")
    run_parser.add_argument("--model", default=None, help="Model id, or provider::model")
    run_parser.add_argument("--session", default=None, help="Continue an existing session")
    run_parser.add_argument("--yes", action="store_true", help="Approve every tool call and preview")

    config_parser = subparsers.add_parser("config", help="Show configuration")
    config_parser.add_argument("--check", action="store_true", help="Check configuration validity")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"❌ Invalid configuration:\n{e}")
        sys.exit(2)

    configure_logging("DEBUG" if settings.debug else settings.log_level)

    if args.command == "run":
        state = asyncio.run(run_prompt(settings, args.prompt, args.cwd, args.model, args.session, args.yes))
        sys.exit(0 if state in (RunState.COMPLETED, RunState.ABORTED) else 1)
    elif args.command == "config":
        show_config(settings, args.check)
    else:
        parser.print_help()


def _ensure_sqlite_dir(database_url: str) -> None:
    """Create the directory of a file-backed SQLite database."""
    prefix = "sqlite+aiosqlite:///"
    if database_url.startswith(prefix):
        path = database_url[len(prefix):]
        if path and path != ":memory:":
            Path(path).expanduser().parent.mkdir(parents=True, exist_ok=True)


async def read_line(prompt: str) -> str:
    """Read one line from stdin without tying up a worker thread.

    Cancelling the coroutine stops the wait at once, so a pending prompt
    never outlives the run that asked it.
    """
    print(prompt, end="", flush=True)
    loop = asyncio.get_running_loop()
    answer: asyncio.Future = loop.create_future()

    def on_readable() -> None:
        if not answer.done():
            answer.set_result(sys.stdin.readline())

    try:
        fd = sys.stdin.fileno()
        loop.add_reader(fd, on_readable)
    except (NotImplementedError, OSError, ValueError):
        # no reader support on Windows event loops or for stdin without a descriptor
        return await asyncio.to_thread(sys.stdin.readline)

    try:
        return await answer
    finally:
        loop.remove_reader(fd)


class ConsoleSink:
    """Prints loop events to the terminal and answers approval requests."""

    def __init__(self, auto_approve: bool, read_line: Callable[[str], Awaitable[str]] = read_line):
        self.auto_approve = auto_approve
        self.read_line = read_line
        self.runner: AgentRunner | None = None
        self._tasks: set[asyncio.Task] = set()

    def __call__(self, event: AgentEvent) -> None:
        if event.type == "stream.message":
            self._print_message(event.message)
        elif event.type == "permission.request":
            self._spawn(self._answer_permission(event.payload))
        elif event.type == "preview.request":
            self._spawn(self._answer_preview(event.payload["batch"]))
        elif event.type == "file_changes.updated":
            for change in event.payload.get("file_changes", []):
                print(f"  ✎ {change.path} (+{change.additions} -{change.deletions})")
        elif event.type == "session.status" and event.payload.get("status") in ("completed", "error", "idle"):
            usage = event.payload.get("usage") or {}
            print(f"\n[{event.payload['status']}] tokens in={usage.get('input_tokens', 0)} out={usage.get('output_tokens', 0)}")

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def cancel_pending(self) -> None:
        """Drop prompts still waiting for an answer."""
        for task in list(self._tasks):
            task.cancel()

    def _print_message(self, message: dict) -> None:
        kind = message.get("type")
        if kind == "stream_event":
            event = message["event"]
            if event["type"] == "content_block_delta":
                print(event["delta"]["text"], end="", flush=True)
            elif event["type"] == "content_block_stop":
                print()
        elif kind == "system" and message.get("subtype") in ("notice", "warning", "info"):
            print(f"\n[{message['subtype']}] {message.get('text', '')}")
        elif kind == "text":
            print(message.get("text", ""))
        elif kind == "assistant":
            for block in message["message"]["content"]:
                if block.get("type") == "tool_use":
                    print(f"\n→ {block['name']} {block['input']}")
        elif kind == "user":
            for block in message["message"]["content"]:
                if block.get("type") == "tool_result":
                    marker = "✗" if block.get("is_error") else "✓"
                    first_line = (block.get("content") or "").splitlines()[:1]
                    print(f"  {marker} {first_line[0] if first_line else ''}")

    async def _confirm(self, question: str) -> bool:
        if self.auto_approve:
            return True
        answer = await self.read_line(f"{question} [y/N] ")
        return answer.strip().lower() in ("y", "yes")

    async def _answer_permission(self, payload: dict) -> None:
        request = self.runner.permissions.get_pending(payload["tool_use_id"]) if self.runner else None
        if request is not None:
            question = request.format_for_display()
        else:
            question = f"Approval required for `{payload['tool_name']}` {payload['input']}"
        approved = await self._confirm(f"\n{question}\nAllow?")
        if self.runner is not None:
            self.runner.resolve_permission(payload["tool_use_id"], approved)

    async def _answer_preview(self, batch: PreviewBatch) -> None:
        for preview in batch.previews:
            print(f"\n--- {preview.target} ({preview.type})")
            print(preview.after or "")
            print("---")
        approved = await self._confirm(f"Apply changes to {len(batch.previews)} file(s)?")
        if self.runner is not None:
            self.runner.resolve_preview_batch_approval(
                BatchApproval(batch_id=batch.id, action="approve_all" if approved else "reject_all")
            )


async def run_prompt(
    settings: Settings,
    prompt: str,
    cwd: str,
    model: str | None,
    session_id: str | None,
    auto_approve: bool,
) -> RunState:
    """Run one prompt against a persistent session."""
    _ensure_sqlite_dir(settings.database_url)
    store = await SqlSessionStore.open(settings.database_url)

    session = await store.get_session(session_id) if session_id else None
    if session_id and session is None:
        print(f"❌ Unknown session: {session_id}")
        await store.close()
        return RunState.ERRORED
    if session is None:
        session = await store.create_session(
            title=prompt[:60],
            cwd=str(Path(cwd).resolve()),
            model=model,
        )
        print(f"Session {session.id}")

    sink = ConsoleSink(auto_approve)
    runner = AgentRunner(session, prompt, store, sink, vcs=GitClient())
    sink.runner = runner

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, runner.abort)
    except NotImplementedError:
        # signal handlers are unavailable on Windows event loops
        pass

    try:
        return await runner.run()
    finally:
        sink.cancel_pending()
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass
        await store.close()


def show_config(settings: Settings, check: bool) -> None:
    """Show current configuration."""

    def mask(value: str) -> str:
        if not value:
            return "(not set)"
        return value[:4] + "..." + value[-4:] if len(value) > 10 else "****"

    print("\n=== desk-agent Configuration ===\n")

    print("Model:")
    print(f"  Model: {settings.model}")
    print(f"  Base URL: {settings.base_url}")
    print(f"  API Key: {mask(settings.api_key)}")
    print(f"  Temperature: {settings.temperature if settings.temperature is not None else '(provider default)'}")
    for provider in settings.providers:
        print(f"  Provider {provider.id} ({provider.type}): key {mask(provider.api_key)}, {len(provider.models)} model(s)")

    print("\nAgent Loop:")
    print(f"  Permission Mode: {settings.permission_mode}")
    print(f"  Max Iterations: {settings.max_iterations}")
    print(f"  Loop Window / Retries: {settings.loop_window} / {settings.max_loop_retries}")

    print("\nFeatures:")
    print(f"  Memory: {settings.enable_memory}")
    print(f"  Preview: {settings.enable_preview} ({settings.preview_mode})")
    print(f"  File Tools: {settings.enable_file_tools}")
    print(f"  Shell Tools: {settings.enable_shell_tools}")
    print(f"  Execution Log: {settings.enable_execution_log} ({settings.logs_dir})")

    print("\nContext Window:")
    ctx = settings.context
    print(f"  Window / Reserve: {ctx.context_window_tokens} / {ctx.reserve_output_tokens} tokens")
    print(
        f"  Ratios: trim {ctx.soft_trim_ratio}, clear {ctx.hard_clear_ratio}, "
        f"flush {ctx.memory_flush_ratio}, compact {ctx.compaction_ratio}"
    )

    print("\nDatabase:")
    print(f"  URL: {settings.database_url}")

    if check:
        print("\n=== Configuration Check ===\n")
        errors = []
        warnings = []

        try:
            settings.get_llm_config()
        except ConfigurationError as e:
            errors.append(str(e))

        if settings.permission_mode == "default":
            warnings.append("Permission mode is 'default' - tools run without asking")
        if settings.enable_shell_tools and not settings.enable_preview:
            warnings.append("Shell tools are enabled and previews are off")

        if errors:
            print("❌ Errors:")
            for e in errors:
                print(f"   - {e}")

        if warnings:
            print("⚠️  Warnings:")
            for w in warnings:
                print(f"   - {w}")

        if not errors and not warnings:
            print("✅ Configuration looks good!")
        elif not errors:
            print("\n✅ Configuration is valid (with warnings)")
        else:
            print("\n❌ Configuration has errors - fix them before running")
            sys.exit(1)


if __name__ == "__main__":
    main()
