"""
Tests for compaction and memory flush.
"""

import pytest

from desk_agent.agent.compaction import (
    format_record,
    get_compaction_cutoff_index,
    parse_memory_text,
    run_memory_flush,
    split_text_by_tokens,
    summarize_for_compaction,
    summarize_in_stages,
    trim_long_text,
    truncate_transcript,
)
from desk_agent.config import ContextConfig
from desk_agent.llm.errors import ProviderError
from desk_agent.memory import SessionMemory
from desk_agent.storage.base import Attachment, HistoryRecord

from .fakes import ScriptedLLM


def _turns(count: int) -> list[HistoryRecord]:
    records = []
    for i in range(count):
        records.append(HistoryRecord.user_prompt(f"prompt {i}"))
        records.append(HistoryRecord.assistant_text(f"answer {i}"))
    return records


def test_cutoff_keeps_last_turns():
    """Test that the last N prompts and their replies are kept."""
    records = _turns(10)

    cutoff = get_compaction_cutoff_index(records, 6)

    # prompts at 0,2,...,18; the 6th from last is at index 8
    assert cutoff == 7
    kept = records[cutoff + 1:]
    assert sum(1 for r in kept if r.type == "user_prompt") == 6
    assert kept[0].text == "prompt 4"


def test_cutoff_with_too_few_prompts():
    """Test that nothing is compacted with N or fewer prompts."""
    assert get_compaction_cutoff_index(_turns(6), 6) == -1
    assert get_compaction_cutoff_index(_turns(2), 6) == -1
    assert get_compaction_cutoff_index([], 6) == -1


def test_cutoff_zero_keep_compacts_everything():
    """Test keep_last_turns of zero."""
    records = _turns(3)

    assert get_compaction_cutoff_index(records, 0) == len(records) - 1


def test_format_record_variants():
    """Test transcript lines for each record type."""
    attachment = Attachment(id="a1", type="image", name="shot.png")
    assert format_record(HistoryRecord.user_prompt("hi", [attachment])) == "USER: hi\n[Attachments: shot.png (image)]"
    assert format_record(HistoryRecord.assistant_text("ok")) == "ASSISTANT: ok"
    assert format_record(HistoryRecord.tool_use("c1", "read_file", {"path": "a"})) == (
        'ASSISTANT TOOL_CALL: read_file {"path": "a"}'
    )
    assert format_record(HistoryRecord.tool_result("c1", "boom", is_error=True)) == "TOOL_ERROR: boom"
    assert format_record(HistoryRecord.system_summary("s")) == "SYSTEM_SUMMARY: s"


def test_trim_long_text():
    """Test head and tail retention."""
    text = "a" * 600 + "b" * 400

    trimmed = trim_long_text(text, 100)

    assert trimmed.startswith("a" * 60)
    assert trimmed.endswith("b" * 30)
    assert "omitted 910 chars" in trimmed
    assert trim_long_text("short", 100) == "short"


def test_truncate_transcript_keeps_head_and_tail():
    """Test transcript bounding to half the window."""
    config = ContextConfig(context_window_tokens=100)
    transcript = "h" * 500 + "t" * 500

    truncated = truncate_transcript(transcript, config)

    assert truncated.startswith("h" * 60)
    assert truncated.endswith("t" * 140)
    assert "[middle omitted]" in truncated


def test_split_text_by_tokens():
    """Test chunking by estimated tokens."""
    assert split_text_by_tokens("x" * 100, 10) == ["x" * 100]
    chunks = split_text_by_tokens("x" * 1000, 100)
    assert [len(c) for c in chunks] == [400, 400, 200]


@pytest.mark.asyncio
async def test_summarize_in_stages_merges_partials():
    """Test that multiple chunk summaries are merged when over target."""
    llm = ScriptedLLM(responses=["part one " * 20, "part two " * 20, "merged"])

    summary = await summarize_in_stages(
        llm,
        "x" * 800,
        "summarize",
        "merge",
        max_chunk_tokens=100,
        max_output_tokens=500,
        max_target_tokens=10,
    )

    assert summary == "merged"
    assert len(llm.generate_calls) == 3
    assert llm.generate_calls[2]["system_prompt"] == "merge"


@pytest.mark.asyncio
async def test_summarize_in_stages_single_chunk():
    """Test that a single partial is returned unmerged."""
    llm = ScriptedLLM(responses=["only"])

    summary = await summarize_in_stages(llm, "short", "s", "m", 100, 500, 10)

    assert summary == "only"
    assert len(llm.generate_calls) == 1


@pytest.mark.asyncio
async def test_summarizer_halves_input_on_context_limit():
    """Test the context-limit retry with halved input."""
    error = ProviderError("max_tokens exceeded", status=400)
    llm = ScriptedLLM(responses=[error, "fits now"])

    summary = await summarize_in_stages(llm, "y" * 300, "s", "m", 1000, 500, 1000)

    assert summary == "fits now"
    first, second = llm.generate_calls
    assert len(second["messages"][0].content) == len(first["messages"][0].content) // 2


@pytest.mark.asyncio
async def test_summarize_for_compaction_failure_is_empty():
    """Test that summarization errors yield an empty summary."""
    llm = ScriptedLLM(responses=[RuntimeError("down")])

    summary = await summarize_for_compaction(llm, _turns(2), ContextConfig())

    assert summary == ""


@pytest.mark.asyncio
async def test_summarize_for_compaction_uses_summary_budget():
    """Test that the summary budget caps the output tokens."""
    llm = ScriptedLLM(responses=["summary"])
    config = ContextConfig(max_summary_tokens=300)

    summary = await summarize_for_compaction(llm, _turns(2), config)

    assert summary == "summary"
    assert llm.generate_calls[0]["max_tokens"] == 300
    assert "USER: prompt 0" in llm.generate_calls[0]["messages"][0].content


def test_parse_memory_text():
    """Test JSON extraction from summarizer output."""
    assert parse_memory_text('{"memory": "- uses pytest"}') == "- uses pytest"
    assert parse_memory_text('```json\n{"memory": "- a"}\n```') == "- a"
    assert parse_memory_text('{"memory": ""}') == ""
    assert parse_memory_text("- plain note") == "- plain note"


@pytest.mark.asyncio
async def test_memory_flush_appends_to_memory(tmp_path):
    """Test that a flush writes a timestamped section."""
    llm = ScriptedLLM(responses=['{"memory": "- build with make"}'])
    memory = SessionMemory(str(tmp_path))

    written = await run_memory_flush(llm, _turns(2), memory, ContextConfig())

    assert written is True
    content = memory.path.read_text(encoding="utf-8")
    assert "## " in content
    assert "- build with make" in content


@pytest.mark.asyncio
async def test_memory_flush_skips_empty_memory(tmp_path):
    """Test that an empty memory field writes nothing."""
    llm = ScriptedLLM(responses=['{"memory": ""}'])
    memory = SessionMemory(str(tmp_path))

    written = await run_memory_flush(llm, _turns(2), memory, ContextConfig())

    assert written is False
    assert not memory.path.exists()


@pytest.mark.asyncio
async def test_memory_flush_disabled_without_cwd():
    """Test that memory without a working directory is a no-op."""
    llm = ScriptedLLM(responses=['{"memory": "- x"}'])

    written = await run_memory_flush(llm, _turns(2), SessionMemory(None), ContextConfig())

    assert written is False
    assert llm.generate_calls == []
