from __future__ import annotations

import pytest

from credscope.trace import SEPARATOR_TEXT, TraceLog


def test_trace_keeps_insertion_order_and_unique_ids() -> None:
    trace = TraceLog()
    first = trace.append("one")
    second = trace.append("two", "warning")
    assert trace.texts() == ["one", "two"]
    assert first.id != second.id
    assert trace.to_list()[1]["severity"] == "warning"


def test_trace_drops_oldest_beyond_capacity() -> None:
    trace = TraceLog(capacity=3)
    for index in range(5):
        trace.append(f"line {index}")
    assert trace.texts() == ["line 2", "line 3", "line 4"]


def test_separator_and_clear() -> None:
    trace = TraceLog()
    trace.append("one")
    trace.separator()
    assert trace.texts() == ["one", SEPARATOR_TEXT]
    trace.clear()
    assert len(trace) == 0


def test_trace_rejects_unknown_severity_and_capacity() -> None:
    with pytest.raises(ValueError):
        TraceLog().append("bad", "critical")
    with pytest.raises(ValueError):
        TraceLog(capacity=0)
