"""
Tests for rebuilding model messages from session history.
"""

from desk_agent.agent.history import (
    SUMMARY_PREFIX,
    build_messages_from_history,
    last_user_prompt,
)
from desk_agent.storage.base import Attachment, HistoryRecord


def test_folds_text_and_tool_calls_into_one_assistant_message():
    """Test that text plus calls become one assistant message and paired results."""
    records = [
        HistoryRecord.user_prompt("list and read"),
        HistoryRecord.assistant_text("Looking around."),
        HistoryRecord.tool_use("c1", "list_files", {"path": "."}),
        HistoryRecord.tool_use("c2", "read_file", {"path": "a.txt"}),
        HistoryRecord.tool_result("c1", "a.txt"),
        HistoryRecord.tool_result("c2", "hello"),
        HistoryRecord.assistant_text("Done."),
    ]

    messages = build_messages_from_history(records, "SYSTEM")

    assert [m.role for m in messages] == ["system", "user", "assistant", "tool", "tool", "assistant"]
    assistant = messages[2]
    assert assistant.content == "Looking around."
    assert [c.id for c in assistant.tool_calls] == ["c1", "c2"]
    assert assistant.tool_calls[1].arguments == '{"path": "a.txt"}'
    assert [m.tool_call_id for m in messages[3:5]] == ["c1", "c2"]
    assert messages[4].content == "hello"
    assert messages[5].content == "Done."


def test_drops_unpaired_calls_and_results():
    """Test that every tool message stays paired with its call."""
    records = [
        HistoryRecord.user_prompt("go"),
        HistoryRecord.tool_use("c1", "run_command", {"command": "ls"}),
        HistoryRecord.tool_use("c2", "run_command", {"command": "pwd"}),
        HistoryRecord.tool_result("c1", "files"),
        HistoryRecord.tool_result("orphan", "nobody asked"),
    ]

    messages = build_messages_from_history(records, "SYSTEM")

    assert [m.role for m in messages] == ["system", "user", "assistant", "tool"]
    assert [c.id for c in messages[2].tool_calls] == ["c1"]


def test_summary_becomes_system_message():
    """Test that a compaction summary is replayed as a system message."""
    records = [
        HistoryRecord.system_summary("Earlier: fixed the parser."),
        HistoryRecord.user_prompt("next"),
    ]

    messages = build_messages_from_history(records, "SYSTEM")

    assert messages[1].role == "system"
    assert messages[1].content == f"{SUMMARY_PREFIX}Earlier: fixed the parser."
    assert messages[2].content == "next"


def test_first_prompt_prefix_only_on_first_prompt():
    """Test that the memory prefix goes on the first user prompt only."""
    records = [HistoryRecord.user_prompt("one"), HistoryRecord.user_prompt("two")]

    messages = build_messages_from_history(records, "SYSTEM", first_prompt_prefix="MEMORY\n")

    assert messages[1].content == "MEMORY\none"
    assert messages[2].content == "two"


def test_attachments_become_content_parts():
    """Test images as image parts and other files as text markers."""
    record = HistoryRecord.user_prompt("see these", [
        Attachment(id="a1", type="image", name="shot.png", data_url="data:image/png;base64,AA"),
        Attachment(id="a2", type="file", name="notes.txt", path="/tmp/notes.txt"),
    ])

    messages = build_messages_from_history([record], "SYSTEM")
    parts = messages[1].content

    assert parts[0].text == "see these"
    assert parts[1].type == "image_url"
    assert parts[1].image_url == "data:image/png;base64,AA"
    assert parts[2].text == "[Attached file: notes.txt at /tmp/notes.txt]"


def test_last_user_prompt():
    """Test finding the most recent prompt."""
    records = [HistoryRecord.user_prompt("first"), HistoryRecord.assistant_text("x"), HistoryRecord.user_prompt("second")]

    assert last_user_prompt(records) == "second"
    assert last_user_prompt([]) is None
