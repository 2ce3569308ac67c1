"""
Tests for the agent execution loop.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from desk_agent.agent.context import estimate_messages_tokens
from desk_agent.agent.history import SUMMARY_PREFIX
from desk_agent.agent.loop_detector import LOOP_HINT
from desk_agent.agent.runner import REMEDIATION_HINT, AgentRunner, RunState
from desk_agent.config import ContextConfig
from desk_agent.memory import SessionMemory
from desk_agent.preview import BatchApproval
from desk_agent.llm.base import StreamChunk
from desk_agent.storage import MemorySessionStore
from desk_agent.storage.base import HistoryRecord
from desk_agent.tools import BaseTool, ToolRegistry, ToolResult

from .fakes import ScriptedLLM, make_settings, text_turn, tool_turn


def _runner(store, session, llm, tmp_path, prompt="hello", on_event=None, runner_options=None, **settings):
    config = make_settings(tmp_path, **settings)
    events = []
    runner = AgentRunner(
        session,
        prompt,
        store,
        on_event or events.append,
        settings_loader=lambda: config,
        llm_factory=lambda llm_config, s: llm,
        sleep=AsyncMock(),
        **(runner_options or {}),
    )
    return runner, events


def _messages(events, message_type=None):
    messages = [e.message for e in events if e.type == "stream.message"]
    if message_type is None:
        return messages
    return [m for m in messages if m.get("type") == message_type]


def _notices(events):
    return [m["text"] for m in _messages(events, "system") if "text" in m]


def _statuses(events):
    return [e.payload["status"] for e in events if e.type == "session.status"]


async def _wait_for(events, event_type):
    for _ in range(200):
        found = [e for e in events if e.type == event_type]
        if found:
            return found[0]
        await asyncio.sleep(0.01)
    raise AssertionError(f"no {event_type} event was emitted")


async def _wait_until(condition):
    for _ in range(200):
        if condition():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition was never met")


class StallingLLM(ScriptedLLM):
    """Streams one text delta and then never finishes the turn."""

    async def stream_chat(self, messages, tools=None):
        self.stream_calls.append(list(messages))
        yield StreamChunk(content="partial ")
        await asyncio.Event().wait()


class BlockingTool(BaseTool):
    """A tool that runs until it is cancelled."""

    def __init__(self):
        self.started = asyncio.Event()
        self.cancelled = False

    @property
    def name(self) -> str:
        return "wait_forever"

    @property
    def description(self) -> str:
        return "Wait until cancelled"

    @property
    def parameters(self) -> dict:
        return {"type": "object", "properties": {}}

    async def execute(self, context, **kwargs) -> ToolResult:
        self.started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return ToolResult(success=True, output="unreachable")


class BrokenStore(MemorySessionStore):
    """A store whose writes fail like a lost database connection."""

    def __init__(self, fail_records: bool = False):
        super().__init__()
        self.fail_records = fail_records

    async def update_session(self, session_id, **updates):
        if "status" in updates:
            raise OperationalError("UPDATE sessions", {}, Exception("database is locked"))
        await super().update_session(session_id, **updates)

    async def record_message(self, session_id, record):
        if self.fail_records:
            raise OperationalError("INSERT INTO history", {}, Exception("database is locked"))
        await super().record_message(session_id, record)


async def _seed_turns(store, session_id, count):
    for i in range(count):
        await store.record_message(session_id, HistoryRecord.user_prompt(f"prompt {i}"))
        await store.record_message(session_id, HistoryRecord.assistant_text(f"answer {i}"))


@pytest.mark.asyncio
async def test_text_answer_completes(store, workspace, tmp_path):
    """Test a single turn that answers with text."""
    session = await store.create_session(cwd=str(workspace))
    llm = ScriptedLLM([text_turn("Hello there")])
    runner, events = _runner(store, session, llm, tmp_path)

    state = await runner.run()

    assert state == RunState.COMPLETED
    result = _messages(events, "result")[-1]
    assert result["subtype"] == "success"
    assert result["is_error"] is False
    assert result["result"] == "Hello there"
    assert result["num_turns"] == 1
    assert result["usage"] == {"input_tokens": 10, "output_tokens": 5}

    partials = [m["event"]["type"] for m in _messages(events, "stream_event")]
    assert partials == ["content_block_start", "content_block_delta", "content_block_delta", "content_block_stop"]
    assert _statuses(events)[0] == "running"
    assert _statuses(events)[-1] == "completed"

    assert [m.role for m in llm.stream_calls[0]] == ["system", "user"]
    assert llm.stream_calls[0][1].content == "hello"

    history = await store.get_session_history(session.id)
    assert [(r.type, r.text) for r in history.records] == [("user_prompt", "hello"), ("text", "Hello there")]
    stored = await store.get_session(session.id)
    assert stored.status == "completed"
    assert (stored.input_tokens, stored.output_tokens) == (10, 5)


@pytest.mark.asyncio
async def test_usage_accumulates_on_stored_session(store, workspace, tmp_path):
    """Test that token usage is added to what the session already had."""
    session = await store.create_session(cwd=str(workspace))
    await store.update_session(session.id, input_tokens=100, output_tokens=50)
    runner, _ = _runner(store, session, ScriptedLLM([text_turn("ok")]), tmp_path)

    await runner.run()

    stored = await store.get_session(session.id)
    assert (stored.input_tokens, stored.output_tokens) == (110, 55)


@pytest.mark.asyncio
async def test_resumed_prompt_is_not_recorded_twice(store, workspace, tmp_path):
    """Test that re-running the last recorded prompt does not duplicate it."""
    session = await store.create_session(cwd=str(workspace))
    await store.record_message(session.id, HistoryRecord.user_prompt("hello"))
    runner, events = _runner(store, session, ScriptedLLM([text_turn("ok")]), tmp_path)

    await runner.run()

    history = await store.get_session_history(session.id)
    assert [r.type for r in history.records] == ["user_prompt", "text"]
    assert [e for e in events if e.type == "stream.user_prompt"] == []


@pytest.mark.asyncio
async def test_tool_call_then_answer(store, workspace, tmp_path):
    """Test one tool round trip followed by a final answer."""
    (workspace / "a.txt").write_text("hello")
    session = await store.create_session(cwd=str(workspace))
    llm = ScriptedLLM([
        tool_turn(("call_1", "read_file", '{"path": "a.txt"}')),
        text_turn("The file says hello."),
    ])
    runner, events = _runner(store, session, llm, tmp_path)

    state = await runner.run()

    assert state == RunState.COMPLETED
    second = llm.stream_calls[1]
    assert [m.role for m in second] == ["system", "user", "assistant", "tool"]
    assert second[2].tool_calls[0].name == "read_file"
    assert second[2].tool_calls[0].arguments == '{"path": "a.txt"}'
    assert second[3].tool_call_id == "call_1"
    assert second[3].content == "hello"

    tool_results = [
        block
        for m in _messages(events, "user")
        for block in m["message"]["content"]
        if block["type"] == "tool_result"
    ]
    assert tool_results == [{"type": "tool_result", "tool_use_id": "call_1", "content": "hello", "is_error": False}]

    history = await store.get_session_history(session.id)
    assert [r.type for r in history.records] == ["user_prompt", "tool_use", "tool_result", "text"]
    assert history.records[1].tool_input == {"path": "a.txt"}
    assert _messages(events, "result")[-1]["usage"] == {"input_tokens": 20, "output_tokens": 10}


@pytest.mark.asyncio
async def test_unparseable_arguments_still_get_a_result(store, workspace, tmp_path):
    """Test that every tool call is paired with a result, even on parse errors."""
    session = await store.create_session(cwd=str(workspace))
    llm = ScriptedLLM([tool_turn(("call_1", "read_file", "not json at all")), text_turn("sorry")])
    runner, _ = _runner(store, session, llm, tmp_path)

    await runner.run()

    tool_message = llm.stream_calls[1][-1]
    assert tool_message.role == "tool"
    assert tool_message.tool_call_id == "call_1"
    assert tool_message.content.startswith("Error: Failed to parse tool arguments.")
    history = await store.get_session_history(session.id)
    assert history.records[2].is_error is True


@pytest.mark.asyncio
async def test_todos_are_saved_and_shown_in_prompt(store, workspace, tmp_path):
    """Test that todo changes persist and reach the next system prompt."""
    session = await store.create_session(cwd=str(workspace))
    arguments = json.dumps({"action": "write", "todos": [{"id": "1", "content": "add tests", "status": "pending"}]})
    llm = ScriptedLLM([tool_turn(("call_1", "manage_todos", arguments)), text_turn("planned")])
    runner, events = _runner(store, session, llm, tmp_path)

    await runner.run()

    history = await store.get_session_history(session.id)
    assert [t.content for t in history.todos] == ["add tests"]
    assert [e.type for e in events].count("todos.updated") == 1
    assert "- [pending] add tests" in llm.stream_calls[1][0].content


@pytest.mark.asyncio
async def test_ask_mode_waits_for_permission(store, workspace, tmp_path):
    """Test that a tool call in ask mode runs after the caller approves it."""
    (workspace / "a.txt").write_text("hello")
    session = await store.create_session(cwd=str(workspace))
    llm = ScriptedLLM([tool_turn(("call_1", "read_file", '{"path": "a.txt"}')), text_turn("done")])
    runner, events = _runner(store, session, llm, tmp_path, permission_mode="ask")

    handle = runner.start()
    request = await _wait_for(events, "permission.request")
    assert request.payload["tool_use_id"] == "call_1"
    assert handle.resolve_permission("call_1", True) is True
    state = await handle.wait()

    assert state == RunState.COMPLETED
    assert llm.stream_calls[1][-1].content == "hello"


@pytest.mark.asyncio
async def test_abort_while_waiting_for_permission(store, workspace, tmp_path):
    """Test that abort ends the run as idle without a result message."""
    session = await store.create_session(cwd=str(workspace))
    llm = ScriptedLLM([tool_turn(("call_1", "list_files", "{}"))])
    runner, events = _runner(store, session, llm, tmp_path, permission_mode="ask")

    handle = runner.start()
    await _wait_for(events, "permission.request")
    handle.abort()
    state = await handle.wait()

    assert state == RunState.ABORTED
    assert runner.aborted is True
    assert _messages(events, "result") == []
    assert _statuses(events)[-1] == "idle"
    assert (await store.get_session(session.id)).status == "idle"
    # the pending request was dropped
    assert runner.resolve_permission("call_1", True) is False


@pytest.mark.asyncio
async def test_abort_before_first_iteration(store, workspace, tmp_path):
    """Test that an abort requested up front never calls the model."""
    session = await store.create_session(cwd=str(workspace))
    llm = ScriptedLLM([text_turn("unused")])
    runner, _ = _runner(store, session, llm, tmp_path)

    runner.abort()
    state = await runner.run()

    assert state == RunState.ABORTED
    assert llm.stream_calls == []


@pytest.mark.asyncio
async def test_abort_while_streaming(store, workspace, tmp_path):
    """Test that abort mid-stream closes the text block and emits no result."""
    session = await store.create_session(cwd=str(workspace))
    llm = StallingLLM()
    runner, events = _runner(store, session, llm, tmp_path)

    handle = runner.start()
    await _wait_until(lambda: _messages(events, "stream_event"))
    await asyncio.sleep(0.05)
    handle.abort()
    state = await handle.wait()

    assert state == RunState.ABORTED
    partials = [m["event"] for m in _messages(events, "stream_event")]
    assert [p["type"] for p in partials] == ["content_block_start", "content_block_delta", "content_block_stop"]
    assert partials[1]["delta"]["text"] == "partial "
    assert _messages(events, "result") == []
    assert _statuses(events)[-1] == "idle"
    history = await store.get_session_history(session.id)
    assert [r.type for r in history.records] == ["user_prompt"]


@pytest.mark.asyncio
async def test_abort_while_waiting_for_preview(store, workspace, tmp_path):
    """Test that abort during a preview wait leaves the file untouched."""
    session = await store.create_session(cwd=str(workspace))
    arguments = json.dumps({"path": "notes.txt", "content": "draft\n"})
    llm = ScriptedLLM([tool_turn(("call_1", "write_file", arguments))])
    runner, events = _runner(store, session, llm, tmp_path, enable_preview=True)

    handle = runner.start()
    await _wait_for(events, "preview.request")
    handle.abort()
    state = await handle.wait()

    assert state == RunState.ABORTED
    assert not (workspace / "notes.txt").exists()
    assert runner.previews.has_pending_batches(session.id) is False
    assert _messages(events, "result") == []
    assert _statuses(events)[-1] == "idle"


@pytest.mark.asyncio
async def test_abort_during_tool_execution(store, workspace, tmp_path):
    """Test that abort cancels a running tool and records no result for it."""
    tool = BlockingTool()
    registry = ToolRegistry()
    registry.register(tool)
    session = await store.create_session(cwd=str(workspace))
    llm = ScriptedLLM([tool_turn(("call_1", "wait_forever", "{}"))])
    runner, events = _runner(
        store, session, llm, tmp_path, runner_options={"registry_factory": lambda s: registry}
    )

    handle = runner.start()
    await asyncio.wait_for(tool.started.wait(), timeout=2)
    handle.abort()
    state = await handle.wait()

    assert state == RunState.ABORTED
    assert tool.cancelled is True
    assert _messages(events, "result") == []
    history = await store.get_session_history(session.id)
    assert [r.type for r in history.records] == ["user_prompt", "tool_use"]


@pytest.mark.asyncio
async def test_preview_batch_approval_writes_file(store, workspace, tmp_path):
    """Test that approving a preview batch lets the write go through."""
    session = await store.create_session(cwd=str(workspace))
    arguments = json.dumps({"path": "notes.txt", "content": "draft\n"})
    llm = ScriptedLLM([tool_turn(("call_1", "write_file", arguments)), text_turn("written")])
    runner, events = _runner(store, session, llm, tmp_path, enable_preview=True)

    handle = runner.start()
    request = await _wait_for(events, "preview.request")
    batch = request.payload["batch"]
    assert handle.resolve_preview_batch_approval(BatchApproval(batch.id, "approve_all")) is True
    state = await handle.wait()

    assert state == RunState.COMPLETED
    assert (workspace / "notes.txt").read_text() == "draft\n"
    changes = await store.get_file_changes(session.id)
    assert [c.path for c in changes] == ["notes.txt"]


@pytest.mark.asyncio
async def test_retry_after_network_error(store, workspace, tmp_path):
    """Test that a transient failure is retried with a notice."""
    session = await store.create_session(cwd=str(workspace))
    llm = ScriptedLLM([ConnectionError("connection reset"), text_turn("ok")])
    runner, events = _runner(store, session, llm, tmp_path)

    state = await runner.run()

    assert state == RunState.COMPLETED
    assert "Network error detected. Retrying (1/3)..." in _notices(events)
    runner._sleep.assert_awaited_once_with(0.5)
    assert len(llm.stream_calls) == 2


@pytest.mark.asyncio
async def test_retries_exhausted(store, workspace, tmp_path):
    """Test the error result after the last retry fails."""
    session = await store.create_session(cwd=str(workspace))
    llm = ScriptedLLM([ConnectionError("connection reset") for _ in range(4)])
    runner, events = _runner(store, session, llm, tmp_path)

    state = await runner.run()

    assert state == RunState.ERRORED
    assert [c.args[0] for c in runner._sleep.await_args_list] == [0.5, 1.0, 2.0]
    result = _messages(events, "result")[-1]
    assert result["subtype"] == "error"
    assert result["is_error"] is True
    assert result["retryable"] is True
    assert result["retry_attempts"] == 3
    assert result["retry_prompt"] == "hello"
    assert _statuses(events)[-1] == "error"
    assert (await store.get_session(session.id)).status == "error"


@pytest.mark.asyncio
async def test_non_retryable_error_shows_remediation(store, workspace, tmp_path):
    """Test that a non-transient failure ends the run with a readable message."""
    session = await store.create_session(cwd=str(workspace))
    llm = ScriptedLLM([ValueError("model not found")])
    runner, events = _runner(store, session, llm, tmp_path)

    state = await runner.run()

    assert state == RunState.ERRORED
    runner._sleep.assert_not_awaited()
    result = _messages(events, "result")[-1]
    assert result["result"] == "model not found"
    assert result["retryable"] is False
    assert result["retry_attempts"] == 0
    text = _messages(events, "text")[-1]["text"]
    assert "❌ **Error:** model not found" in text
    assert text.endswith(REMEDIATION_HINT)
    history = await store.get_session_history(session.id)
    assert history.records[-1].text == text


@pytest.mark.asyncio
async def test_missing_api_key_is_reported(store, workspace, tmp_path):
    """Test that configuration errors end the run before any model call."""
    session = await store.create_session(cwd=str(workspace))
    llm = ScriptedLLM()
    runner, events = _runner(store, session, llm, tmp_path, api_key="")

    state = await runner.run()

    assert state == RunState.ERRORED
    assert "API key is not configured" in _messages(events, "result")[-1]["result"]
    assert llm.stream_calls == []


@pytest.mark.asyncio
async def test_max_iterations(store, workspace, tmp_path):
    """Test the hard iteration cap."""
    session = await store.create_session(cwd=str(workspace))
    llm = ScriptedLLM([
        tool_turn(("call_1", "list_files", "{}")),
        tool_turn(("call_2", "search_files", '{"pattern": "*.py"}')),
    ])
    runner, events = _runner(store, session, llm, tmp_path, max_iterations=2)

    state = await runner.run()

    assert state == RunState.MAX_ITERATIONS_EXCEEDED
    assert _messages(events, "result")[-1]["result"] == "Max iterations reached (2)"
    assert runner.iteration == 2


@pytest.mark.asyncio
async def test_loop_hint_after_repeated_calls(store, workspace, tmp_path):
    """Test that a run of the same tool gets a corrective hint."""
    session = await store.create_session(cwd=str(workspace))
    llm = ScriptedLLM([
        tool_turn(("call_1", "list_files", "{}")),
        tool_turn(("call_2", "list_files", "{}")),
        tool_turn(("call_3", "list_files", "{}")),
        text_turn("Nothing here."),
    ])
    runner, events = _runner(store, session, llm, tmp_path, loop_window=3, max_loop_retries=2)

    state = await runner.run()

    assert state == RunState.COMPLETED
    assert LOOP_HINT not in [m.content for m in llm.stream_calls[2]]
    last_request = llm.stream_calls[3]
    assert last_request[-1].role == "user"
    assert last_request[-1].content == LOOP_HINT
    assert last_request[-2].tool_call_id == "call_3"
    assert any(n.startswith("Loop detected: `list_files`") for n in _notices(events))
    assert runner.loop_detector.retry_count == 1


@pytest.mark.asyncio
async def test_loop_exhausted(store, workspace, tmp_path):
    """Test that the run stops once loop retries are used up."""
    session = await store.create_session(cwd=str(workspace))
    llm = ScriptedLLM([tool_turn((f"call_{i}", "list_files", "{}")) for i in range(4)])
    runner, events = _runner(store, session, llm, tmp_path, loop_window=2, max_loop_retries=2)

    state = await runner.run()

    assert state == RunState.LOOP_EXHAUSTED
    assert len(llm.stream_calls) == 4
    result = _messages(events, "result")[-1]
    assert result["subtype"] == "error"
    assert result["result"] == "Loop not resolved: list_files called repeatedly"
    assert "**Loop detected**" in _messages(events, "text")[-1]["text"]

    history = await store.get_session_history(session.id)
    assert history.records[-1].text.startswith("[LOOP] Model stuck calling list_files")
    # the exhausting call is never executed
    assert "call_3" not in [r.tool_use_id for r in history.records]
    assert (await store.get_session(session.id)).status == "error"


@pytest.mark.asyncio
async def test_compaction_replaces_old_history(store, workspace, tmp_path):
    """Test that an over-full context is compacted into a summary record."""
    session = await store.create_session(cwd=str(workspace))
    await _seed_turns(store, session.id, 10)
    llm = ScriptedLLM([text_turn("ok")], responses=["Summary of earlier work."])
    context = ContextConfig(context_window_tokens=200, reserve_output_tokens=0, safety_margin=1.0)
    runner, events = _runner(store, session, llm, tmp_path, context=context)

    state = await runner.run()

    assert state == RunState.COMPLETED
    assert len(llm.generate_calls) == 1
    assert "Context compacted: 10 earlier messages replaced by a summary." in _notices(events)

    request = llm.stream_calls[0]
    assert request[1].role == "system"
    assert request[1].content == f"{SUMMARY_PREFIX}Summary of earlier work."
    assert request[2].content == "prompt 5"
    assert request[-1].content == "hello"

    history = await store.get_session_history(session.id)
    assert history.records[0].type == "system_summary"
    assert sum(1 for r in history.records if r.type == "user_prompt") == 6
    assert history.records[-1].text == "ok"


@pytest.mark.asyncio
async def test_compaction_lowers_estimated_tokens(store, workspace, tmp_path):
    """Test that the compacted request is smaller than the one it replaced."""
    session = await store.create_session(cwd=str(workspace))
    await _seed_turns(store, session.id, 10)
    llm = ScriptedLLM([text_turn("ok")], responses=["Summary of earlier work."])
    execution_log = MagicMock()
    context = ContextConfig(context_window_tokens=200, reserve_output_tokens=0, safety_margin=1.0)
    runner, _ = _runner(
        store, session, llm, tmp_path, context=context, runner_options={"execution_log": execution_log}
    )

    await runner.run()

    decisions = [c.args for c in execution_log.log_decision.call_args_list if c.args[0] == "compaction"]
    assert len(decisions) == 1
    details = decisions[0][2]
    assert details["replaced_records"] == 10
    assert details["tokens_after"] < details["tokens_before"]
    assert estimate_messages_tokens(llm.stream_calls[0]) < details["tokens_before"]


@pytest.mark.asyncio
async def test_failed_compaction_keeps_history(store, workspace, tmp_path):
    """Test that an empty summary leaves the history alone."""
    session = await store.create_session(cwd=str(workspace))
    await _seed_turns(store, session.id, 10)
    llm = ScriptedLLM([text_turn("ok")], responses=[ValueError("summarizer down")])
    context = ContextConfig(context_window_tokens=200, reserve_output_tokens=0, safety_margin=1.0)
    runner, events = _runner(store, session, llm, tmp_path, context=context)

    state = await runner.run()

    assert state == RunState.COMPLETED
    assert not any(n.startswith("Context compacted") for n in _notices(events))
    history = await store.get_session_history(session.id)
    assert sum(1 for r in history.records if r.type == "user_prompt") == 11


@pytest.mark.asyncio
async def test_memory_flush_runs_once(store, workspace, tmp_path):
    """Test that durable facts are flushed to session memory once per run."""
    session = await store.create_session(cwd=str(workspace))
    await _seed_turns(store, session.id, 10)
    llm = ScriptedLLM(
        [tool_turn(("call_1", "list_files", "{}")), text_turn("ok")],
        responses=['{"memory": "- uses pytest"}', "Summary of earlier work."],
    )
    context = ContextConfig(context_window_tokens=200, reserve_output_tokens=0, safety_margin=1.0)
    runner, _ = _runner(store, session, llm, tmp_path, context=context, enable_memory=True)

    state = await runner.run()

    assert state == RunState.COMPLETED
    assert len(llm.generate_calls) == 2
    assert "- uses pytest" in SessionMemory(str(workspace)).load()
    assert "SESSION MEMORY:" in llm.stream_calls[1][0].content


@pytest.mark.asyncio
async def test_global_memory_prefixes_first_prompt(store, workspace, tmp_path):
    """Test that user-level memory is placed before the first prompt."""
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    (data_dir / "memory.md").write_text("prefers tabs")
    session = await store.create_session(cwd=str(workspace))
    llm = ScriptedLLM([text_turn("ok")])
    runner, _ = _runner(store, session, llm, tmp_path, enable_memory=True)

    await runner.run()

    first_prompt = llm.stream_calls[0][1].content
    assert first_prompt.startswith("MEMORY FROM PREVIOUS SESSIONS:\nprefers tabs")
    assert first_prompt.endswith("hello")


@pytest.mark.asyncio
async def test_failing_event_sink_does_not_stop_the_run(store, workspace, tmp_path):
    """Test that exceptions from the caller's sink are contained."""
    session = await store.create_session(cwd=str(workspace))

    def broken_sink(event):
        raise RuntimeError("ui went away")

    runner, _ = _runner(store, session, ScriptedLLM([text_turn("ok")]), tmp_path, on_event=broken_sink)

    assert await runner.run() == RunState.COMPLETED


@pytest.mark.asyncio
async def test_database_error_on_final_status_is_contained(workspace, tmp_path):
    """Test that a failing status update does not turn a completed run into a crash."""
    store = BrokenStore()
    session = await store.create_session(cwd=str(workspace))
    runner, events = _runner(store, session, ScriptedLLM([text_turn("ok")]), tmp_path)

    state = await runner.run()

    assert state == RunState.COMPLETED
    assert _messages(events, "result")[-1]["subtype"] == "success"
    assert _statuses(events)[-1] == "completed"


@pytest.mark.asyncio
async def test_database_error_while_recording_is_reported(workspace, tmp_path):
    """Test that history write failures end the run as an error with a final status."""
    store = BrokenStore(fail_records=True)
    session = await store.create_session(cwd=str(workspace))
    llm = ScriptedLLM([text_turn("ok")])
    runner, events = _runner(store, session, llm, tmp_path)

    state = await runner.run()

    assert state == RunState.ERRORED
    assert llm.stream_calls == []
    assert _messages(events, "result")[-1]["is_error"] is True
    assert _statuses(events)[-1] == "error"
