"""
Agent Execution Loop.

One ``AgentRunner`` drives one prompt of one session to a terminal state:

    Initializing -> Iterating -> (StreamPending | ToolPending) -> Iterating ...
        -> Completed | Errored | Aborted | LoopExhausted | MaxIterationsExceeded

Each iteration reloads settings, rebuilds the system prompt, manages the
context window (memory flush, compaction, pruning), streams one model turn
with retries, and either finishes with the assistant's text or runs the
requested tools through the dispatch gate and loops.

Everything the loop waits on (the stream, retry delays, permission and
preview decisions, tool execution, summarizer calls) is raced against the
abort event, so ``abort()`` takes effect at the next suspension point.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

import structlog

from ..config import ContextConfig, LLMConfig, Settings, load_settings
from ..errors import DeskAgentError, LoopExhausted, MaxIterationsExceeded, RunAborted
from ..events import AgentEvent, EventSink, session_status, stream_event, stream_message, system_notice
from ..governance import check_action_compliance, format_validation_result, validate_session
from ..llm import BaseLLM, LLMMessage, ToolCall, ToolDefinition, create_llm, extract_error_message
from ..llm.base import StreamTurn
from ..llm.retry import MAX_STREAM_RETRIES, RETRY_BASE_DELAY, retry_with_backoff
from ..memory import SessionMemory, load_global_memory
from ..preview import BatchApproval, PreviewApproval, PreviewManager
from ..storage.base import Attachment, HistoryRecord, SessionInfo, SessionStore, TodoItem
from ..tools.base import ToolExecutionContext
from ..tools.registry import ToolRegistry, build_tool_registry
from ..vcs import VersionControl
from .approvals import PermissionBroker
from .compaction import get_compaction_cutoff_index, run_memory_flush, summarize_for_compaction
from .context import estimate_messages_tokens, prune_messages, usage_ratio
from .execution_log import ExecutionLogger, redact_messages_for_log
from .gate import ComplianceChecker, GateOutcome, ToolDispatchGate, parse_tool_arguments
from .history import build_messages_from_history, last_user_prompt
from .loop_detector import LOOP_HINT, LoopDetector
from .prompts import generate_tools_summary, get_system_prompt, memory_prefix

logger = structlog.get_logger()

T = TypeVar("T")

REMEDIATION_HINT = "Please check your API settings (Base URL, Model Name, API Key) and try again."


class RunState(str, Enum):
    INITIALIZING = "initializing"
    ITERATING = "iterating"
    STREAM_PENDING = "stream_pending"
    TOOL_PENDING = "tool_pending"
    COMPLETED = "completed"
    ERRORED = "errored"
    ABORTED = "aborted"
    LOOP_EXHAUSTED = "loop_exhausted"
    MAX_ITERATIONS_EXCEEDED = "max_iterations_exceeded"


@dataclass
class TurnOutput:
    """What one streamed model turn produced."""

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    meta: StreamTurn = field(default_factory=StreamTurn)


class AgentRunner:
    """Runs the agent loop for one prompt of one session."""

    def __init__(
        self,
        session: SessionInfo,
        prompt: str,
        store: SessionStore,
        on_event: EventSink,
        *,
        attachments: list[Attachment] | None = None,
        settings_loader: Callable[[], Settings] = load_settings,
        llm_factory: Callable[[LLMConfig, Settings], BaseLLM] = create_llm,
        registry_factory: Callable[[Settings], ToolRegistry] = build_tool_registry,
        compliance_checker: ComplianceChecker = check_action_compliance,
        vcs: VersionControl | None = None,
        execution_log: ExecutionLogger | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.session = session
        self.prompt = prompt
        self.store = store
        self.on_event = on_event
        self.attachments = list(attachments or [])
        self.settings_loader = settings_loader
        self.llm_factory = llm_factory
        self.registry_factory = registry_factory
        self.vcs = vcs
        self.execution_log = execution_log
        self._sleep = sleep

        self.state = RunState.INITIALIZING
        self.iteration = 0
        self.total_input_tokens = 0
        self.total_output_tokens = 0
        self.messages: list[LLMMessage] = []
        self.todos: list[TodoItem] = []

        self.permissions = PermissionBroker()
        self.previews = PreviewManager(emit=self.emit)
        self.gate = ToolDispatchGate(
            session.id,
            store,
            self.emit,
            self.permissions,
            self.previews,
            compliance_checker=compliance_checker,
            vcs=vcs,
            wait=self._until_aborted,
        )

        self._aborted = asyncio.Event()
        self._started_at = time.monotonic()
        self._memory_flushed = False

        # set up in _initialize
        self.settings: Settings | None = None
        self.llm: BaseLLM | None = None
        self.registry: ToolRegistry | None = None
        self.context_config: ContextConfig | None = None
        self.memory = SessionMemory(session.cwd)
        self.global_memory = ""
        self.max_iterations = 0
        self.loop_detector = LoopDetector()

    # -- caller side ---------------------------------------------------------

    @property
    def aborted(self) -> bool:
        return self._aborted.is_set()

    def abort(self) -> None:
        """Stop the run at its next suspension point."""
        if self._aborted.is_set():
            return
        logger.info("Abort requested", session_id=self.session.id)
        self._aborted.set()

    def resolve_permission(self, tool_use_id: str, approved: bool) -> bool:
        return self.permissions.resolve(tool_use_id, approved)

    def resolve_preview_approval(self, approval: PreviewApproval) -> bool:
        return self.previews.handle_preview_approval(approval)

    def resolve_preview_batch_approval(self, approval: BatchApproval) -> bool:
        return self.previews.handle_batch_approval(approval)

    def start(self) -> "RunnerHandle":
        """Schedule ``run()`` on the running loop."""
        return RunnerHandle(self, asyncio.create_task(self.run()))

    # -- plumbing ------------------------------------------------------------

    def emit(self, event: AgentEvent) -> None:
        try:
            self.on_event(event)
        except Exception as e:
            logger.error("Event sink failed", event_type=event.type, error=str(e))

    def _send(self, message: dict[str, Any]) -> None:
        self.emit(stream_message(self.session.id, message))

    def _elapsed_ms(self) -> int:
        return int((time.monotonic() - self._started_at) * 1000)

    def _usage(self) -> dict[str, int]:
        return {"input_tokens": self.total_input_tokens, "output_tokens": self.total_output_tokens}

    def _check_abort(self) -> None:
        if self._aborted.is_set():
            raise RunAborted()

    async def _until_aborted(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the run is aborted first.

        Raises:
            RunAborted: if the abort event fires before ``awaitable`` finishes
        """
        if self._aborted.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise RunAborted()

        task = asyncio.ensure_future(awaitable)
        aborted = asyncio.ensure_future(self._aborted.wait())
        try:
            await asyncio.wait({task, aborted}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            aborted.cancel()
            if not task.done():
                task.cancel()
                # let the task run its cleanup (e.g. closing the stream)
                await asyncio.wait({task})

        if task.done() and not task.cancelled():
            return task.result()
        raise RunAborted()

    def _record(self, record: HistoryRecord) -> Awaitable[None]:
        return self.store.record_message(self.session.id, record)

    # -- entry point ---------------------------------------------------------

    async def run(self) -> RunState:
        """Drive the loop to a terminal state. Only task cancellation propagates."""
        self._started_at = time.monotonic()
        self.emit(session_status(self.session.id, "running", title=self.session.title))

        try:
            await self._initialize()
            while self.iteration < self.max_iterations:
                self._check_abort()
                self.iteration += 1
                self.state = RunState.ITERATING
                if await self._iterate():
                    return self.state
            raise MaxIterationsExceeded(self.iteration)
        except RunAborted:
            await self._finish_aborted()
        except LoopExhausted as e:
            await self._finish_loop_exhausted(e)
        except Exception as e:
            await self._finish_error(e)
        finally:
            self.permissions.cancel_all()
            self.previews.cancel_session_batches(self.session.id)

        return self.state

    # -- initialization ------------------------------------------------------

    async def _initialize(self) -> None:
        settings = self.settings_loader()
        self.settings = settings
        self.max_iterations = settings.max_iterations
        self.loop_detector = LoopDetector(settings.loop_window, settings.max_loop_retries)

        llm_config = settings.get_llm_config(self.session.model or None)
        if self.session.temperature is not None:
            llm_config = llm_config.model_copy(update={"temperature": self.session.temperature})
        self.context_config = settings.context_config_for(llm_config)
        self.llm = self.llm_factory(llm_config, settings)
        self.registry = self.registry_factory(settings)

        if self.execution_log is None:
            self.execution_log = ExecutionLogger(settings.logs_dir, self.session.id, settings.enable_execution_log)
        self.gate.execution_log = self.execution_log

        await self._validate_session()

        if settings.enable_memory:
            self.global_memory = load_global_memory(settings.data_dir)

        history = await self.store.get_session_history(self.session.id)
        self.todos = list(history.todos)
        records = history.records
        if self.prompt != last_user_prompt(records) or self.attachments:
            record = HistoryRecord.user_prompt(self.prompt, self.attachments)
            await self._record(record)
            records = [*records, record]
            self.emit(AgentEvent("stream.user_prompt", {
                "session_id": self.session.id,
                "prompt": self.prompt,
                "attachments": self.attachments,
            }))

        self.messages = build_messages_from_history(
            records,
            self._system_prompt(),
            first_prompt_prefix=memory_prefix(self.global_memory),
        )

        tool_names = self.registry.list_tools()
        logger.info(
            "Agent run starting",
            session_id=self.session.id,
            model=llm_config.model,
            tools=len(tool_names),
            messages=len(self.messages),
        )
        self._send({
            "type": "system",
            "subtype": "init",
            "cwd": self.session.cwd or "No workspace folder",
            "session_id": self.session.id,
            "tools": tool_names,
            "model": llm_config.model,
            "permission_mode": settings.permission_mode,
            "memory_enabled": settings.enable_memory,
        })

    async def _validate_session(self) -> None:
        """Charter and ADR integrity check. Problems are reported, never fatal."""
        current = await self.store.get_session(self.session.id)
        if current is None:
            return
        result = validate_session(current.charter, current.charter_hash, current.adrs)
        if not result.valid:
            logger.warning("Session validation failed", session_id=self.session.id, errors=len(result.errors))
            self.emit(system_notice(self.session.id, format_validation_result(result), subtype="warning"))
        elif result.warnings:
            logger.info("Session validation warnings", session_id=self.session.id, warnings=len(result.warnings))

    def _system_prompt(self) -> str:
        definitions: list[ToolDefinition] = self.registry.get_definitions() if self.registry else []
        return get_system_prompt(
            self.session.cwd,
            generate_tools_summary(definitions),
            self.todos,
            self.memory.load(),
        )

    # -- one iteration -------------------------------------------------------

    async def _iterate(self) -> bool:
        """Run one iteration. Returns True when the run completed."""
        self._reload_settings()
        self.messages[0] = LLMMessage(role="system", content=self._system_prompt())
        await self._manage_context()

        definitions = self.registry.get_definitions()
        request_messages = prune_messages(self.messages, self.context_config)

        self.execution_log.log_iteration(
            self.iteration, "start", self.total_input_tokens, self.total_output_tokens, self._elapsed_ms()
        )
        self.execution_log.log_llm_request(
            self.llm.model,
            len(request_messages),
            len(definitions),
            any(isinstance(m.content, list) for m in request_messages),
        )
        self.execution_log.log_turn(self.iteration, "request", {
            "model": self.llm.model,
            "messages": redact_messages_for_log(request_messages),
            "tools": definitions,
            "temperature": self.llm.temperature,
        })

        self.state = RunState.STREAM_PENDING
        turn_started = time.monotonic()
        turn = await self._until_aborted(retry_with_backoff(
            lambda attempt: self._stream_once(request_messages, definitions),
            max_retries=MAX_STREAM_RETRIES,
            base_delay=RETRY_BASE_DELAY,
            on_retry=self._on_stream_retry,
            sleep=self._sleep,
        ))

        usage = turn.meta.usage
        if usage is not None:
            self.total_input_tokens += usage.prompt_tokens
            self.total_output_tokens += usage.completion_tokens

        self.execution_log.log_turn(self.iteration, "response", {
            "id": turn.meta.response_id,
            "model": turn.meta.model,
            "finish_reason": turn.meta.finish_reason,
            "usage": usage,
            "message": {"role": "assistant", "content": turn.text, "tool_calls": turn.tool_calls or None},
        })
        self.execution_log.log_llm_response(
            turn.meta.finish_reason,
            len(turn.text),
            len(turn.tool_calls),
            usage.prompt_tokens if usage else 0,
            usage.completion_tokens if usage else 0,
            int((time.monotonic() - turn_started) * 1000),
        )

        if not turn.tool_calls:
            await self._complete(turn.text)
            return True

        await self._handle_tool_calls(turn)
        self.execution_log.log_iteration(
            self.iteration, "complete", self.total_input_tokens, self.total_output_tokens, self._elapsed_ms()
        )
        return False

    def _reload_settings(self) -> None:
        """Pick up settings changes between iterations."""
        settings = self.settings_loader()
        registry = self.registry_factory(settings)
        if sorted(registry.list_tools()) != sorted(self.registry.list_tools()):
            logger.info("Tool set changed", tools=registry.list_tools())
        self.settings = settings
        self.registry = registry

    async def _manage_context(self) -> None:
        """Memory flush and compaction, triggered by the estimated usage ratio."""
        config = self.context_config
        ratio = usage_ratio(estimate_messages_tokens(self.messages), config)

        if ratio >= config.memory_flush_ratio and self.settings.enable_memory and not self._memory_flushed:
            self._memory_flushed = True
            history = await self.store.get_session_history(self.session.id)
            try:
                await self._until_aborted(run_memory_flush(self.llm, history.records, self.memory, config))
            except RunAborted:
                raise
            except Exception as e:
                logger.warning("Memory flush failed", session_id=self.session.id, error=str(e))

        if ratio < config.compaction_ratio:
            return

        history = await self.store.get_session_history(self.session.id)
        cutoff = get_compaction_cutoff_index(history.records, config.keep_last_turns)
        if cutoff < 0:
            return

        try:
            summary = await self._until_aborted(
                summarize_for_compaction(self.llm, history.records[:cutoff + 1], config)
            )
            if not summary:
                return
            await self.store.replace_messages_before_index_with_summary(self.session.id, cutoff, summary)
        except RunAborted:
            raise
        except Exception as e:
            logger.warning("Compaction failed", session_id=self.session.id, error=str(e))
            return

        before = estimate_messages_tokens(self.messages)
        history = await self.store.get_session_history(self.session.id)
        self.messages = build_messages_from_history(
            history.records,
            self._system_prompt(),
            first_prompt_prefix=memory_prefix(self.global_memory),
        )
        after = estimate_messages_tokens(self.messages)
        logger.info(
            "Conversation compacted",
            session_id=self.session.id,
            replaced_records=cutoff + 1,
            tokens_before=before,
            tokens_after=after,
        )
        self.execution_log.log_decision(
            "compaction",
            f"usage ratio {ratio:.2f} >= {config.compaction_ratio}",
            {"replaced_records": cutoff + 1, "tokens_before": before, "tokens_after": after},
        )
        self.emit(system_notice(
            self.session.id,
            f"Context compacted: {cutoff + 1} earlier messages replaced by a summary.",
        ))

    # -- streaming -----------------------------------------------------------

    async def _on_stream_retry(self, attempt: int, delay: float, error: BaseException) -> None:
        self.emit(system_notice(
            self.session.id,
            f"Network error detected. Retrying ({attempt}/{MAX_STREAM_RETRIES})...",
        ))

    async def _stream_once(self, messages: list[LLMMessage], tools: list[ToolDefinition]) -> TurnOutput:
        """One streamed model call; text deltas are forwarded as they arrive."""
        output = TurnOutput()
        text_parts: list[str] = []
        calls: dict[int, ToolCall] = {}
        content_started = False

        try:
            async for chunk in self.llm.stream_chat(messages, tools or None):
                output.meta.update(chunk)

                if chunk.content:
                    if not content_started:
                        content_started = True
                        self.emit(stream_event(self.session.id, {
                            "type": "content_block_start",
                            "content_block": {"type": "text", "text": ""},
                            "index": 0,
                        }))
                    text_parts.append(chunk.content)
                    self.emit(stream_event(self.session.id, {
                        "type": "content_block_delta",
                        "delta": {"type": "text_delta", "text": chunk.content},
                        "index": 0,
                    }))

                for delta in chunk.tool_calls:
                    call = calls.get(delta.index)
                    if call is None:
                        calls[delta.index] = ToolCall(
                            id=delta.id or f"call_{int(time.time() * 1000)}_{delta.index}",
                            name=delta.name or "",
                            arguments=delta.arguments or "",
                        )
                        continue
                    if delta.name and not call.name:
                        call.name = delta.name
                    if delta.arguments:
                        call.arguments += delta.arguments
        finally:
            if content_started:
                self.emit(stream_event(self.session.id, {"type": "content_block_stop", "index": 0}))

        output.text = "".join(text_parts)
        output.tool_calls = [calls[index] for index in sorted(calls)]
        return output

    # -- tool calls ----------------------------------------------------------

    def _tool_context(self) -> ToolExecutionContext:
        async def on_todos_changed(todos: list[TodoItem]) -> None:
            self.todos = list(todos)
            await self.store.save_todos(self.session.id, self.todos)
            self.emit(AgentEvent("todos.updated", {"session_id": self.session.id, "todos": self.todos}))

        async def on_charter_changed(charter: Any, charter_hash: str) -> None:
            await self.store.update_session(self.session.id, charter=charter, charter_hash=charter_hash)
            await self._emit_session_snapshot()

        async def on_adrs_changed(adrs: list[Any]) -> None:
            await self.store.update_session(self.session.id, adrs=adrs)
            await self._emit_session_snapshot()

        return ToolExecutionContext(
            cwd=self.session.cwd or ".",
            session_id=self.session.id,
            todos=list(self.todos),
            on_todos_changed=on_todos_changed,
            on_charter_changed=on_charter_changed,
            on_adrs_changed=on_adrs_changed,
        )

    async def _emit_session_snapshot(self) -> None:
        current = await self.store.get_session(self.session.id)
        if current is None:
            return
        self.emit(session_status(
            self.session.id,
            "running",
            title=current.title,
            cwd=current.cwd,
            model=current.model,
            temperature=current.temperature,
            charter=current.charter,
            charter_hash=current.charter_hash,
            adrs=current.adrs,
        ))

    async def _handle_tool_calls(self, turn: TurnOutput) -> None:
        verdict = self.loop_detector.observe(turn.tool_calls)
        if verdict.flagged:
            logger.warning(
                "Loop detected",
                tool_name=verdict.tool_name,
                retry=verdict.retry_count,
                max_retries=self.loop_detector.max_retries,
            )
            self.execution_log.log_decision(
                "loop_detected",
                f"{verdict.tool_name} called {self.loop_detector.window} times in a row",
                {"retry_count": verdict.retry_count, "exhausted": verdict.exhausted},
            )
            if verdict.exhausted:
                raise LoopExhausted(verdict.tool_name or "", verdict.retry_count)

        self.state = RunState.TOOL_PENDING
        self.messages.append(LLMMessage(role="assistant", content=turn.text, tool_calls=turn.tool_calls))
        if turn.text.strip():
            await self._record(HistoryRecord.assistant_text(turn.text))

        for call in turn.tool_calls:
            tool_input = parse_tool_arguments(call.arguments)
            self._send({
                "type": "assistant",
                "message": {
                    "id": f"msg_{call.id}",
                    "content": [{"type": "tool_use", "id": call.id, "name": call.name, "input": tool_input}],
                },
            })
            await self._record(HistoryRecord.tool_use(call.id, call.name, tool_input))

        context = self._tool_context()
        for call in turn.tool_calls:
            self._check_abort()
            outcome = await self.gate.dispatch(call, self.registry, self.settings, context)
            await self._add_tool_result(outcome)

        if verdict.flagged:
            self.messages.append(LLMMessage(role="user", content=LOOP_HINT))
            self.emit(system_notice(
                self.session.id,
                f"Loop detected: `{verdict.tool_name}` was called repeatedly "
                f"(retry {verdict.retry_count}/{self.loop_detector.max_retries}).",
                subtype="warning",
            ))

    async def _add_tool_result(self, outcome: GateOutcome) -> None:
        self.messages.append(LLMMessage(
            role="tool",
            content=outcome.content,
            tool_call_id=outcome.tool_call_id,
            name=outcome.tool_name,
        ))
        self._send({
            "type": "user",
            "message": {
                "content": [{
                    "type": "tool_result",
                    "tool_use_id": outcome.tool_call_id,
                    "content": outcome.content,
                    "is_error": outcome.is_error,
                }],
            },
        })
        await self._record(HistoryRecord.tool_result(outcome.tool_call_id, outcome.content, outcome.is_error))

    # -- terminal states -----------------------------------------------------

    async def _persist_usage(self, status: str) -> None:
        try:
            current = await self.store.get_session(self.session.id)
            base_in = current.input_tokens if current else 0
            base_out = current.output_tokens if current else 0
            await self.store.update_session(
                self.session.id,
                status=status,
                input_tokens=base_in + self.total_input_tokens,
                output_tokens=base_out + self.total_output_tokens,
            )
        except Exception as e:
            logger.error("Failed to persist session usage", session_id=self.session.id, error=str(e), exc_info=True)

    def _result(self, subtype: str, result: str, **extra: Any) -> None:
        self._send({
            "type": "result",
            "subtype": subtype,
            "is_error": subtype != "success",
            "duration_ms": self._elapsed_ms(),
            "num_turns": self.iteration,
            "result": result,
            "session_id": self.session.id,
            "usage": self._usage(),
            **extra,
        })

    async def _complete(self, text: str) -> None:
        self._send({
            "type": "assistant",
            "message": {"id": f"msg_{int(time.time() * 1000)}", "content": [{"type": "text", "text": text}]},
        })
        await self._record(HistoryRecord.assistant_text(text))
        self._result("success", text)
        await self._persist_usage("completed")
        self.state = RunState.COMPLETED
        logger.info(
            "Agent run completed",
            session_id=self.session.id,
            iterations=self.iteration,
            **self._usage(),
        )
        self.emit(session_status(self.session.id, "completed", title=self.session.title, usage=self._usage()))

    async def _finish_aborted(self) -> None:
        self.state = RunState.ABORTED
        logger.info("Agent run aborted", session_id=self.session.id, iteration=self.iteration)
        await self._persist_usage("idle")
        self.emit(session_status(self.session.id, "idle", title=self.session.title, usage=self._usage()))

    async def _finish_loop_exhausted(self, error: LoopExhausted) -> None:
        self.state = RunState.LOOP_EXHAUSTED
        text = (
            f"⚠️ **Loop detected**: The model is stuck calling `{error.tool_name}` repeatedly "
            f"({error.retries} retries exhausted).\n\n"
            "Please try:\n"
            "- Rephrasing your request\n"
            "- Using a larger/smarter model\n"
            "- Breaking down your task into smaller steps"
        )
        self._send({"type": "text", "text": text})
        await self._record(HistoryRecord.assistant_text(
            f"[LOOP] Model stuck calling {error.tool_name} repeatedly. Stopped after {error.retries} retries."
        ))
        self._result("error", f"Loop not resolved: {error.tool_name} called repeatedly")
        await self._persist_usage("error")
        self.emit(session_status(self.session.id, "error", title=self.session.title, error=str(error)))

    async def _finish_error(self, error: Exception) -> None:
        self.state = (
            RunState.MAX_ITERATIONS_EXCEEDED if isinstance(error, MaxIterationsExceeded) else RunState.ERRORED
        )
        message = extract_error_message(error)
        logger.error(
            "Agent run failed",
            session_id=self.session.id,
            iteration=self.iteration,
            error=message,
            exc_info=not isinstance(error, DeskAgentError),
        )

        self._result(
            "error",
            message,
            retryable=bool(getattr(error, "retryable", False)),
            retry_attempts=int(getattr(error, "retry_attempts", 0) or 0),
            retry_prompt=self.prompt,
        )
        text = f"\n\n❌ **Error:** {message}\n\n{REMEDIATION_HINT}"
        self._send({"type": "text", "text": text})
        try:
            await self._record(HistoryRecord.assistant_text(text))
        except Exception as e:
            logger.error("Failed to record error message", session_id=self.session.id, error=str(e), exc_info=True)
        await self._persist_usage("error")
        self.emit(session_status(self.session.id, "error", title=self.session.title, error=message))


@dataclass
class RunnerHandle:
    """A started run: the runner plus the task executing it."""

    runner: AgentRunner
    task: asyncio.Task

    def abort(self) -> None:
        self.runner.abort()

    def resolve_permission(self, tool_use_id: str, approved: bool) -> bool:
        return self.runner.resolve_permission(tool_use_id, approved)

    def resolve_preview_approval(self, approval: PreviewApproval) -> bool:
        return self.runner.resolve_preview_approval(approval)

    def resolve_preview_batch_approval(self, approval: BatchApproval) -> bool:
        return self.runner.resolve_preview_batch_approval(approval)

    async def wait(self) -> RunState:
        return await self.task


async def run_agent(
    session: SessionInfo,
    prompt: str,
    store: SessionStore,
    on_event: EventSink,
    **kwargs: Any,
) -> RunState:
    """Run one prompt to completion."""
    return await AgentRunner(session, prompt, store, on_event, **kwargs).run()
