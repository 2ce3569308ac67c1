"""
Execution log - what the loop sent, what came back, what ran.

Two outputs under ``<data_dir>/logs``:

- ``sessions/<session_id>/turn-NNN-request.json`` and ``-response.json``,
  one pair per iteration, with inline image data redacted;
- ``execution-YYYY-MM-DD.jsonl``, one structured entry per event.

Write failures are logged and swallowed; logging never breaks a run.
"""

import json
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

import structlog

from ..llm.base import ContentPart, LLMMessage

logger = structlog.get_logger()

REDACTED_IMAGE_URL = "data:image/webp;base64,<redacted>"

EntryType = Literal["llm_request", "llm_response", "tool_execution", "iteration", "decision"]


def redact_messages_for_log(messages: list[LLMMessage]) -> list[dict[str, Any]]:
    """Messages as plain dicts with inline ``data:`` image URLs replaced."""
    redacted = []
    for message in messages:
        data = asdict(message)
        if isinstance(message.content, list):
            data["content"] = [_redact_part(part) for part in message.content]
        redacted.append(data)
    return redacted


def _redact_part(part: ContentPart) -> dict[str, Any]:
    data = part.to_dict()
    if part.type == "image_url" and (part.image_url or "").startswith("data:"):
        data["image_url"] = {"url": REDACTED_IMAGE_URL}
    return data


def _default(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, Path):
        return str(value)
    return repr(value)


class ExecutionLogger:
    """Per-session writer for turn files and the daily JSONL log."""

    def __init__(self, logs_dir: Path, session_id: str, enabled: bool = True):
        self.logs_dir = Path(logs_dir)
        self.session_id = session_id
        self.enabled = enabled

    @property
    def session_dir(self) -> Path:
        return self.logs_dir / "sessions" / self.session_id

    @property
    def daily_file(self) -> Path:
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        return self.logs_dir / f"execution-{today}.jsonl"

    def log_turn(self, iteration: int, kind: Literal["request", "response"], data: dict[str, Any]) -> Path | None:
        """Write one turn file. Returns its path, or None if nothing was written."""
        if not self.enabled:
            return None
        path = self.session_dir / f"turn-{iteration:03d}-{kind}.json"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(data, indent=2, default=_default, ensure_ascii=False), encoding="utf-8")
        except OSError as e:
            logger.warning("Failed to write turn log", path=str(path), error=str(e))
            return None
        return path

    def _write(self, entry_type: EntryType, level: str = "info", **data: Any) -> None:
        if not self.enabled:
            return
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "session_id": self.session_id,
            "level": level,
            "type": entry_type,
            **data,
        }
        try:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
            with self.daily_file.open("a", encoding="utf-8") as f:
                f.write(json.dumps(entry, default=_default, ensure_ascii=False) + "\n")
        except OSError as e:
            logger.warning("Failed to write execution log", error=str(e))

    def log_llm_request(self, model: str, message_count: int, tool_count: int, has_attachments: bool) -> None:
        self._write(
            "llm_request",
            model=model,
            message_count=message_count,
            tool_count=tool_count,
            has_attachments=has_attachments,
        )

    def log_llm_response(
        self,
        finish_reason: str | None,
        text_length: int,
        tool_calls_count: int,
        input_tokens: int,
        output_tokens: int,
        duration_ms: int,
    ) -> None:
        self._write(
            "llm_response",
            finish_reason=finish_reason,
            text_length=text_length,
            tool_calls_count=tool_calls_count,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=duration_ms,
        )

    def log_tool_execution(
        self,
        tool_name: str,
        tool_use_id: str,
        tool_input: Any,
        status: Literal["start", "success", "error", "permission_required"],
        result: Any = None,
        error: str | None = None,
        duration_ms: int | None = None,
    ) -> None:
        self._write(
            "tool_execution",
            level="error" if status == "error" else "info",
            tool_name=tool_name,
            tool_use_id=tool_use_id,
            input=tool_input,
            status=status,
            result=result,
            error=error,
            duration_ms=duration_ms,
        )

    def log_iteration(
        self,
        iteration: int,
        action: Literal["start", "complete"],
        total_input_tokens: int,
        total_output_tokens: int,
        elapsed_ms: int,
    ) -> None:
        self._write(
            "iteration",
            iteration=iteration,
            action=action,
            total_input_tokens=total_input_tokens,
            total_output_tokens=total_output_tokens,
            elapsed_ms=elapsed_ms,
        )

    def log_decision(self, decision: str, reason: str, context: Any = None) -> None:
        self._write("decision", decision=decision, reason=reason, context=context)
