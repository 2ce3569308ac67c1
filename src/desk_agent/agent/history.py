"""
Replay of persisted session history into the message list sent to the model.
"""

import json

from ..llm.base import ContentPart, LLMMessage, ToolCall
from ..storage.base import Attachment, HistoryRecord

SUMMARY_PREFIX = "[System Summary]\n"


def attachment_parts(prompt: str, attachments: list[Attachment]) -> list[ContentPart]:
    """Prompt text plus attachments as content parts."""
    parts = [ContentPart(type="text", text=prompt)]
    for attachment in attachments:
        if attachment.type == "image" and attachment.data_url:
            parts.append(ContentPart(type="image_url", image_url=attachment.data_url))
        else:
            location = f" at {attachment.path}" if attachment.path else ""
            parts.append(ContentPart(
                type="text",
                text=f"[Attached {attachment.type}: {attachment.name}{location}]",
            ))
    return parts


def user_message(record: HistoryRecord, prefix: str | None = None) -> LLMMessage:
    prompt = f"{prefix}{record.text}" if prefix else record.text
    if record.attachments:
        return LLMMessage(role="user", content=attachment_parts(prompt, record.attachments))
    return LLMMessage(role="user", content=prompt)


def build_messages_from_history(
    records: list[HistoryRecord],
    system_prompt: str,
    first_prompt_prefix: str | None = None,
) -> list[LLMMessage]:
    """Fold history records into a normalized message list.

    Consecutive assistant text and tool calls become one assistant message,
    followed by the results of those calls in call order. Calls without a
    recorded result and results without a call are dropped so every tool
    message stays paired with its assistant tool call.
    """
    messages = [LLMMessage(role="system", content=system_prompt)]

    pending_text: list[str] = []
    pending_calls: list[ToolCall] = []
    results: dict[str, HistoryRecord] = {}
    seen_prompt = False

    def flush() -> None:
        paired = [call for call in pending_calls if call.id in results]
        text = "\n".join(pending_text)
        if paired:
            messages.append(LLMMessage(role="assistant", content=text, tool_calls=paired))
            for call in paired:
                result = results[call.id]
                messages.append(LLMMessage(
                    role="tool",
                    content=result.text,
                    tool_call_id=call.id,
                    name=call.name,
                ))
        elif text:
            messages.append(LLMMessage(role="assistant", content=text))
        pending_text.clear()
        pending_calls.clear()
        results.clear()

    for record in records:
        if record.type == "text":
            if results:
                flush()
            pending_text.append(record.text)
        elif record.type == "tool_use":
            if results:
                flush()
            pending_calls.append(ToolCall(
                id=record.tool_use_id or "",
                name=record.tool_name or "",
                arguments=json.dumps(record.tool_input or {}, ensure_ascii=False),
            ))
        elif record.type == "tool_result":
            if any(call.id == record.tool_use_id for call in pending_calls):
                results[record.tool_use_id or ""] = record
        elif record.type == "user_prompt":
            flush()
            prefix = first_prompt_prefix if not seen_prompt else None
            messages.append(user_message(record, prefix))
            seen_prompt = True
        elif record.type == "system_summary":
            flush()
            messages.append(LLMMessage(role="system", content=f"{SUMMARY_PREFIX}{record.text}"))

    flush()
    return messages


def last_user_prompt(records: list[HistoryRecord]) -> str | None:
    for record in reversed(records):
        if record.type == "user_prompt":
            return record.text
    return None
