"""
Tests for loop detection.
"""

from desk_agent.agent.loop_detector import LoopDetector
from desk_agent.llm.base import ToolCall


def _call(name: str, arguments: str = "{}", call_id: str = "c") -> ToolCall:
    return ToolCall(id=call_id, name=name, arguments=arguments)


def test_flags_after_window_of_same_tool():
    """Test that N consecutive single calls to one tool are flagged."""
    detector = LoopDetector(window=5, max_retries=5)

    verdicts = [detector.observe([_call("read_file", f'{{"path": "{i}"}}')]) for i in range(5)]

    assert [v.flagged for v in verdicts] == [False, False, False, False, True]
    assert verdicts[-1].tool_name == "read_file"
    assert verdicts[-1].retry_count == 1
    assert verdicts[-1].exhausted is False
    # window is cleared after a flag
    assert detector.recent == []


def test_different_tool_breaks_the_run():
    """Test that an interleaved different tool prevents a flag."""
    detector = LoopDetector(window=3)

    detector.observe([_call("read_file")])
    detector.observe([_call("read_file")])
    detector.observe([_call("list_files")])
    verdict = detector.observe([_call("read_file")])

    assert verdict.flagged is False


def test_parallel_batch_resets_window():
    """Test that a multi-call turn is not a loop and clears history."""
    detector = LoopDetector(window=3)

    detector.observe([_call("read_file")])
    detector.observe([_call("read_file")])
    verdict = detector.observe([_call("read_file", call_id="a"), _call("read_file", call_id="b")])

    assert verdict.flagged is False
    assert detector.recent == []


def test_empty_turn_keeps_window():
    """Test that a turn without tool calls leaves the window alone."""
    detector = LoopDetector(window=3)

    detector.observe([_call("read_file")])
    detector.observe([])

    assert detector.recent == [("read_file", "{}")]


def test_exhausted_after_max_retries():
    """Test that the Nth flag exhausts the retries."""
    detector = LoopDetector(window=2, max_retries=3)

    flags = []
    for _ in range(6):
        verdict = detector.observe([_call("run_command")])
        if verdict.flagged:
            flags.append(verdict)

    assert [v.retry_count for v in flags] == [1, 2, 3]
    assert [v.exhausted for v in flags] == [False, False, True]


def test_window_and_retries_are_independent():
    """Test that window size does not change the retry budget."""
    detector = LoopDetector(window=4, max_retries=1)

    verdicts = [detector.observe([_call("search_files")]) for _ in range(4)]

    assert verdicts[-1].flagged is True
    assert verdicts[-1].exhausted is True
