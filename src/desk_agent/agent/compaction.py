"""
Conversation Compaction - staged summarization of session history.

Two operations share one summarization pipeline:
- memory flush: distill durable facts into the working directory's memory file
- compaction: replace an old prefix of the history with one summary record

Transcripts are split into chunks, each chunk is summarized, and the
partials are merged (at most twice) until they fit the target budget.
"""

import json
import re

import structlog

from ..config import ContextConfig
from ..llm.base import BaseLLM, LLMMessage
from ..llm.errors import is_context_limit_error
from ..memory.session_memory import SessionMemory
from ..storage.base import Attachment, HistoryRecord
from .context import CHARS_PER_TOKEN, estimate_tokens

logger = structlog.get_logger()

SUMMARIZER_TEMPERATURE = 0.2
MIN_OUTPUT_TOKENS = 128
MAX_OUTPUT_TOKENS = 2048

MEMORY_INSTRUCTIONS = " ".join([
    "You are preparing a session memory note before context compaction.",
    "Extract durable facts, decisions, file paths, commands, TODOs, and important parameters.",
    "Only include items that will matter later in THIS session.",
    "Be concise. No speculation.",
    'Return JSON ONLY in the form: {"memory":"- item\\n- item"} or {"memory":""}.',
])
MEMORY_MERGE_INSTRUCTIONS = " ".join([
    "Merge these memory notes into a single concise JSON.",
    'Return JSON ONLY in the form: {"memory":"- item\\n- item"} or {"memory":""}.',
])
COMPACTION_INSTRUCTIONS = " ".join([
    "Summarize the following conversation history.",
    "Preserve decisions, requirements, file paths, commands, errors, TODOs, and key parameters.",
    "Keep it factual and concise.",
])
COMPACTION_MERGE_INSTRUCTIONS = " ".join([
    "Merge these partial summaries into one coherent summary.",
    "Preserve decisions, requirements, file paths, commands, errors, TODOs, and key parameters.",
])

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


def trim_long_text(text: str, max_chars: int) -> str:
    """Keep the first 60% and last 30% of ``max_chars``."""
    if len(text) <= max_chars:
        return text
    head = text[: int(max_chars * 0.6)]
    tail_len = int(max_chars * 0.3)
    tail = text[-tail_len:] if tail_len > 0 else ""
    omitted = len(text) - len(head) - len(tail)
    return f"{head}\n... [omitted {omitted} chars] ...\n{tail}"


def _format_attachments(attachments: list[Attachment]) -> str:
    if not attachments:
        return ""
    return "\n[Attachments: " + ", ".join(f"{a.name} ({a.type})" for a in attachments) + "]"


def format_record(record: HistoryRecord) -> str:
    if record.type == "user_prompt":
        return f"USER: {record.text}{_format_attachments(record.attachments)}".strip()
    if record.type == "text":
        return f"ASSISTANT: {record.text}".strip()
    if record.type == "tool_use":
        arguments = json.dumps(record.tool_input or {}, ensure_ascii=False)
        return f"ASSISTANT TOOL_CALL: {record.tool_name or ''} {trim_long_text(arguments, 2000)}".strip()
    if record.type == "tool_result":
        prefix = "TOOL_ERROR" if record.is_error else "TOOL_RESULT"
        return f"{prefix}: {trim_long_text(record.text, 4000)}".strip()
    return f"SYSTEM_SUMMARY: {record.text}".strip()


def format_transcript(records: list[HistoryRecord]) -> str:
    return "\n\n".join(format_record(r) for r in records)


def truncate_transcript(transcript: str, config: ContextConfig) -> str:
    """Bound summarizer input to half the window, keeping 30% head and 70% tail."""
    max_chars = config.context_window_tokens * CHARS_PER_TOKEN // 2
    if len(transcript) <= max_chars:
        return transcript
    return (
        transcript[: int(max_chars * 0.3)]
        + "\n\n... [middle omitted] ...\n\n"
        + transcript[-int(max_chars * 0.7):]
    )


def split_text_by_tokens(text: str, max_tokens: int) -> list[str]:
    max_chars = max(200, max_tokens * CHARS_PER_TOKEN)
    if len(text) <= max_chars:
        return [text]
    return [text[i:i + max_chars] for i in range(0, len(text), max_chars)]


async def call_summarizer(
    llm: BaseLLM,
    system_prompt: str,
    content: str,
    max_tokens: int,
    retries: int = 2,
) -> str:
    """One summarization call; halves the input on context-limit errors."""
    output_tokens = max(MIN_OUTPUT_TOKENS, min(max_tokens, MAX_OUTPUT_TOKENS))

    for attempt in range(retries + 1):
        try:
            response = await llm.generate(
                messages=[LLMMessage(role="user", content=content)],
                system_prompt=system_prompt,
                max_tokens=output_tokens,
                temperature=SUMMARIZER_TEMPERATURE,
            )
            return response.content.strip()
        except Exception as e:
            if is_context_limit_error(e) and attempt < retries:
                content = content[: len(content) // 2]
                logger.warning(
                    "Summarizer hit context limit, retrying with halved input",
                    chars=len(content),
                    attempt=attempt + 1,
                )
                continue
            raise

    return ""


async def summarize_in_stages(
    llm: BaseLLM,
    text: str,
    instructions: str,
    merge_instructions: str,
    max_chunk_tokens: int,
    max_output_tokens: int,
    max_target_tokens: int,
) -> str:
    """Summarize chunk by chunk, then merge partials until they fit the target."""
    partials: list[str] = []
    for chunk in split_text_by_tokens(text, max_chunk_tokens):
        try:
            summary = await call_summarizer(llm, instructions, chunk, max_output_tokens)
        except Exception as e:
            logger.warning("Skipping chunk after summarizer error", chars=len(chunk), error=str(e))
            continue
        if summary:
            partials.append(summary)

    if not partials:
        return ""
    if len(partials) == 1:
        return partials[0]

    merged = "\n".join(partials)
    if estimate_tokens(merged) > max_target_tokens:
        merged = await call_summarizer(llm, merge_instructions, merged, max_output_tokens)

    if estimate_tokens(merged) > max_target_tokens:
        merged = await call_summarizer(
            llm,
            f"{merge_instructions}\nBe even more concise.",
            merged,
            max(MIN_OUTPUT_TOKENS, max_output_tokens // 2),
        )

    return merged.strip()


def parse_memory_text(summary: str) -> str:
    """Pull the ``memory`` field out of the summarizer's JSON; fall back to raw text."""
    candidate = _CODE_FENCE.sub("", summary.strip())
    try:
        parsed = json.loads(candidate)
    except ValueError:
        return summary.strip()
    if isinstance(parsed, dict) and isinstance(parsed.get("memory"), str):
        return parsed["memory"].strip()
    return ""


async def run_memory_flush(
    llm: BaseLLM,
    records: list[HistoryRecord],
    memory: SessionMemory,
    config: ContextConfig,
) -> bool:
    """Distill durable facts from the transcript into session memory.

    Returns:
        True if a memory entry was appended
    """
    if not memory.enabled:
        return False

    transcript = format_transcript(records)
    if not transcript.strip():
        return False

    summary = await summarize_in_stages(
        llm,
        truncate_transcript(transcript, config),
        MEMORY_INSTRUCTIONS,
        MEMORY_MERGE_INSTRUCTIONS,
        max_chunk_tokens=config.max_chunk_tokens,
        max_output_tokens=config.max_memory_tokens,
        max_target_tokens=config.max_memory_tokens,
    )
    if not summary:
        return False

    memory_text = parse_memory_text(summary)
    if not memory_text:
        return False

    written = await memory.append(memory_text)
    logger.info("Memory flush complete", chars=len(memory_text), written=written)
    return written


async def summarize_for_compaction(
    llm: BaseLLM,
    records: list[HistoryRecord],
    config: ContextConfig,
) -> str:
    """Factual summary of ``records``; empty string on any failure."""
    transcript = format_transcript(records)
    if not transcript.strip():
        return ""

    try:
        return await summarize_in_stages(
            llm,
            truncate_transcript(transcript, config),
            COMPACTION_INSTRUCTIONS,
            COMPACTION_MERGE_INSTRUCTIONS,
            max_chunk_tokens=config.max_chunk_tokens,
            max_output_tokens=config.max_summary_tokens,
            max_target_tokens=config.max_summary_tokens,
        )
    except Exception as e:
        logger.error("Compaction summarization failed", error=str(e))
        return ""


def get_compaction_cutoff_index(records: list[HistoryRecord], keep_last_turns: int) -> int:
    """Index of the last record to replace, or -1 when nothing should be compacted.

    Everything up to and including the returned index is replaced by a summary;
    the last ``keep_last_turns`` user prompts and what follows them are kept.
    """
    if keep_last_turns <= 0:
        return len(records) - 1
    prompt_indexes = [i for i, r in enumerate(records) if r.type == "user_prompt"]
    if len(prompt_indexes) <= keep_last_turns:
        return -1
    return prompt_indexes[-keep_last_turns] - 1
