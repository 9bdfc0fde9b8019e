from __future__ import annotations

import asyncio

import pytest

from credscope.errors import EmptyInputError, EvaluationError
from credscope.pipeline import (
    NARRATIVE_STEPS,
    AnalysisPipeline,
    AnalysisStatus,
)
from credscope.trace import SEPARATOR_TEXT, TraceLog

from fakes import ScriptedAdvisor, report


def _pipeline(advisor: ScriptedAdvisor, **kwargs) -> AnalysisPipeline:  # type: ignore[no-untyped-def]
    kwargs.setdefault("delay_scale", 0)
    return AnalysisPipeline(advisor, **kwargs)


def test_successful_run_appends_vectors_in_order_then_closing_lines() -> None:
    advisor = ScriptedAdvisor(default_report=report(37, ["Mask Attack", "Dictionary Attack", "Brute Force"]))
    pipeline = _pipeline(advisor)

    run = asyncio.run(pipeline.run_analysis("hunter2"))

    assert run.status is AnalysisStatus.COMPLETE
    assert run.score == 37
    assert run.sequence == 1
    texts = pipeline.trace.texts()
    assert texts[:7] == [step.message for step in NARRATIVE_STEPS]
    assert texts[7:] == [
        ">> VULNERABILITY CONFIRMED: Mask Attack",
        ">> VULNERABILITY CONFIRMED: Dictionary Attack",
        ">> VULNERABILITY CONFIRMED: Brute Force",
        "Analysis complete. Rendering dashboard.",
        "Generating Security Health Report...",
    ]
    severities = [line.severity for line in pipeline.trace.lines()]
    assert severities[7:10] == ["error", "error", "error"]
    assert severities[10:] == ["success", "success"]


def test_evaluator_failure_after_narrative_yields_eight_lines_and_error() -> None:
    advisor = ScriptedAdvisor(default_report=EvaluationError("boom"), delays={"hunter2": 0.01})
    pipeline = _pipeline(advisor)

    run = asyncio.run(pipeline.run_analysis("hunter2"))

    assert run.status is AnalysisStatus.ERROR
    assert pipeline.status is AnalysisStatus.ERROR
    assert len(pipeline.trace) == 8
    last = pipeline.trace.lines()[-1]
    assert last.text == "Connection to AI Core failed."
    assert last.severity == "error"


def test_unexpected_collaborator_exception_is_contained() -> None:
    advisor = ScriptedAdvisor(default_report=RuntimeError("socket closed"))
    pipeline = _pipeline(advisor)

    run = asyncio.run(pipeline.run_analysis("hunter2"))

    assert run.status is AnalysisStatus.ERROR
    assert pipeline.trace.texts()[-1] == "Connection to AI Core failed."


def test_malformed_payload_is_treated_as_evaluation_failure() -> None:
    advisor = ScriptedAdvisor(default_report={"score": "not-a-number"})
    pipeline = _pipeline(advisor)

    run = asyncio.run(pipeline.run_analysis("hunter2"))

    assert run.status is AnalysisStatus.ERROR


def test_empty_input_appends_one_error_line_and_keeps_status() -> None:
    pipeline = _pipeline(ScriptedAdvisor())
    asyncio.run(pipeline.run_analysis("first"))
    before_lines = len(pipeline.trace)

    with pytest.raises(EmptyInputError) as excinfo:
        asyncio.run(pipeline.run_analysis(""))

    assert excinfo.value.code == "EMPTY_INPUT"
    assert pipeline.status is AnalysisStatus.COMPLETE
    assert pipeline.sequence == 1
    assert len(pipeline.trace) == before_lines + 1
    assert pipeline.trace.lines()[-1].text == "Input empty. Aborting."
    assert pipeline.trace.lines()[-1].severity == "error"


def test_empty_input_from_idle_stays_idle() -> None:
    pipeline = _pipeline(ScriptedAdvisor())

    with pytest.raises(EmptyInputError):
        asyncio.run(pipeline.run_analysis(""))

    assert pipeline.status is AnalysisStatus.IDLE
    assert pipeline.trace.texts() == ["Input empty. Aborting."]


def test_keep_trace_appends_separator_instead_of_clearing() -> None:
    pipeline = _pipeline(ScriptedAdvisor())
    asyncio.run(pipeline.run_analysis("first"))
    first_count = len(pipeline.trace)

    asyncio.run(pipeline.run_analysis("second", keep_trace=True))

    texts = pipeline.trace.texts()
    assert texts[first_count] == SEPARATOR_TEXT
    assert len(texts) == first_count * 2 + 1

    asyncio.run(pipeline.run_analysis("third"))
    assert len(pipeline.trace) == first_count


def test_narrative_uses_fixed_delays_scaled() -> None:
    delays: list[float] = []

    async def recording_sleep(seconds: float) -> None:
        delays.append(seconds)

    pipeline = AnalysisPipeline(ScriptedAdvisor(), delay_scale=0.5, sleep=recording_sleep)
    asyncio.run(pipeline.run_analysis("hunter2"))

    assert delays == [step.delay_seconds * 0.5 for step in NARRATIVE_STEPS]
    assert [step.delay_seconds for step in NARRATIVE_STEPS] == [0.2, 0.3, 0.3, 0.3, 0.4, 0.3, 0.3]


def test_stale_slow_result_never_overwrites_newer_run() -> None:
    advisor = ScriptedAdvisor(
        reports={"slow": report(10, ["Brute Force"]), "fast": report(88, ["Keyboard Walk"])},
        delays={"slow": 0.05},
    )
    events: list[tuple[str, dict]] = []
    pipeline = _pipeline(advisor, observer=lambda event_type, data: events.append((event_type, data)))

    async def scenario():  # type: ignore[no-untyped-def]
        slow_task = asyncio.create_task(pipeline.run_analysis("slow"))
        await asyncio.sleep(0)
        fast_run = await pipeline.run_analysis("fast")
        slow_result = await slow_task
        return fast_run, slow_result

    fast_run, slow_result = asyncio.run(scenario())

    assert fast_run.status is AnalysisStatus.COMPLETE
    assert pipeline.current.target_text == "fast"
    assert pipeline.current.score == 88
    assert slow_result.sequence == 2
    assert slow_result.target_text == "fast"
    texts = pipeline.trace.texts()
    assert ">> VULNERABILITY CONFIRMED: Brute Force" not in texts
    assert texts.count(NARRATIVE_STEPS[0].message) == 1
    stale = [data for event_type, data in events if event_type == "analysis.stale_discarded"]
    assert stale == [{"sequence": 1, "latest_sequence": 2}]


def test_reset_returns_to_idle_with_single_line() -> None:
    pipeline = _pipeline(ScriptedAdvisor())
    asyncio.run(pipeline.run_analysis("hunter2"))

    run = pipeline.reset()

    assert run.status is AnalysisStatus.IDLE
    assert pipeline.trace.texts() == ["System reset. Ready."]
    assert pipeline.boost_available() is False


def test_boost_gate_requires_complete_and_low_score() -> None:
    pipeline = _pipeline(ScriptedAdvisor(reports={"weak": report(40), "strong": report(97)}))
    assert pipeline.boost_available() is False

    asyncio.run(pipeline.run_analysis("weak"))
    assert pipeline.boost_available() is True
    assert pipeline.boost_available(ceiling=30) is False

    asyncio.run(pipeline.run_analysis("strong"))
    assert pipeline.boost_available() is False


def test_observer_never_receives_credential_text() -> None:
    events: list[tuple[str, dict]] = []
    pipeline = _pipeline(ScriptedAdvisor(), observer=lambda event_type, data: events.append((event_type, data)))
    asyncio.run(pipeline.run_analysis("correct horse battery"))

    assert [event_type for event_type, _ in events] == ["analysis.started", "analysis.completed"]
    assert "correct horse battery" not in repr(events)


def test_trace_capacity_is_respected() -> None:
    pipeline = _pipeline(ScriptedAdvisor(), trace=TraceLog(capacity=5))
    asyncio.run(pipeline.run_analysis("hunter2"))
    assert len(pipeline.trace) == 5
    assert pipeline.trace.texts()[-1] == "Generating Security Health Report..."


def test_negative_delay_scale_rejected() -> None:
    with pytest.raises(ValueError):
        AnalysisPipeline(ScriptedAdvisor(), delay_scale=-1)
