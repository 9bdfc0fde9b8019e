from __future__ import annotations

"""Analysis pipeline: a timed progress narrative joined with one risk evaluation per run."""

import asyncio
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from .advisor import RiskAdvisor, RiskReport
from .errors import AnalysisStateError, EmptyInputError, EvaluationError, StaleResultDiscarded
from .trace import TraceLog


DEFAULT_BOOST_SCORE_CEILING = 95.0
EMPTY_INPUT_TEXT = "Input empty. Aborting."
FAILURE_TEXT = "Connection to AI Core failed."
VECTOR_TEXT = ">> VULNERABILITY CONFIRMED: {vector}"
CLOSING_LINES = (
    ("Analysis complete. Rendering dashboard.", "success"),
    ("Generating Security Health Report...", "success"),
)
RESET_TEXT = "System reset. Ready."

Observer = Callable[[str, dict[str, Any]], None]
Sleep = Callable[[float], Awaitable[Any]]


class AnalysisStatus(StrEnum):
    IDLE = "idle"
    SCANNING = "scanning"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class NarrativeStep:
    message: str
    delay_seconds: float
    severity: str = "info"


NARRATIVE_STEPS = (
    NarrativeStep("Connecting to neural analysis engine...", 0.2),
    NarrativeStep("Simulating: DICTIONARY ATTACK Vectors...", 0.3),
    NarrativeStep("Simulating: RAINBOW TABLE Lookups...", 0.3),
    NarrativeStep("Simulating: SOCIAL ENGINEERING Patterns...", 0.3, "warning"),
    NarrativeStep("Simulating: BRUTE FORCE Permutations...", 0.4),
    NarrativeStep("Simulating: MASK ATTACK Combinations...", 0.3),
    NarrativeStep("Aggregating vulnerability data...", 0.3, "success"),
)


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


@dataclass(frozen=True)
class AnalysisRun:
    """One evaluation cycle. Runs are replaced, never mutated."""

    status: AnalysisStatus
    target_text: str = ""
    sequence: int = 0
    result: RiskReport | None = None
    started_at: str | None = None
    finished_at: str | None = None

    @property
    def score(self) -> float | None:
        if self.result is None:
            return None
        return self.result.score

    def to_dict(self, *, include_target: bool = False) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "status": self.status.value,
            "sequence": self.sequence,
            "target_length": len(self.target_text),
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "result": None,
        }
        if include_target:
            payload["target_text"] = self.target_text
        if self.result is not None:
            result = self.result.model_dump()
            result["extras"] = self.result.extras
            payload["result"] = result
        return payload


def _coerce_report(outcome: Any) -> RiskReport:
    if isinstance(outcome, RiskReport):
        return outcome
    try:
        return RiskReport.model_validate(outcome)
    except ValidationError as exc:
        raise EvaluationError("Evaluator payload is missing a numeric score or attack vector list.") from exc


class AnalysisPipeline:
    """Owns the current run and its trace log; the only writer of analysis state."""

    def __init__(
        self,
        advisor: RiskAdvisor,
        *,
        trace: TraceLog | None = None,
        delay_scale: float = 1.0,
        sleep: Sleep | None = None,
        observer: Observer | None = None,
        steps: tuple[NarrativeStep, ...] = NARRATIVE_STEPS,
    ) -> None:
        if delay_scale < 0:
            raise ValueError("delay_scale must be >= 0.")
        self._advisor = advisor
        self.trace = trace if trace is not None else TraceLog()
        self._delay_scale = delay_scale
        self._sleep = sleep or asyncio.sleep
        self._observer = observer
        self._steps = steps
        self._sequence = 0
        self._current = AnalysisRun(status=AnalysisStatus.IDLE)

    @property
    def current(self) -> AnalysisRun:
        return self._current

    @property
    def status(self) -> AnalysisStatus:
        return self._current.status

    @property
    def sequence(self) -> int:
        return self._sequence

    def boost_available(self, ceiling: float = DEFAULT_BOOST_SCORE_CEILING) -> bool:
        score = self._current.score
        return self._current.status is AnalysisStatus.COMPLETE and score is not None and score < ceiling

    def _notify(self, event_type: str, data: dict[str, Any]) -> None:
        if self._observer is not None:
            self._observer(event_type, data)

    async def run_analysis(
        self,
        target_text: str,
        *,
        keep_trace: bool = False,
        lead: tuple[str, str] | None = None,
    ) -> AnalysisRun:
        """Scan `target_text`; returns the authoritative run once both activities have joined.

        `lead` is a `(text, severity)` line written first, after the trace is cleared.
        """

        if not target_text:
            self.trace.append(EMPTY_INPUT_TEXT, "error")
            raise EmptyInputError(EMPTY_INPUT_TEXT, hint="Type a credential or capture a fingerprint first.")

        self._sequence += 1
        sequence = self._sequence
        if keep_trace:
            self.trace.separator()
        else:
            self.trace.clear()
        if lead is not None:
            self.trace.append(*lead)
        run = AnalysisRun(
            status=AnalysisStatus.SCANNING,
            target_text=target_text,
            sequence=sequence,
            started_at=_now_iso(),
        )
        self._current = run
        self._notify(
            "analysis.started",
            {"sequence": sequence, "target_length": len(target_text), "keep_trace": keep_trace},
        )

        narrated, outcome = await asyncio.gather(
            self._play_narrative(sequence),
            self._advisor.evaluate_risk(target_text),
            return_exceptions=True,
        )
        for value in (narrated, outcome):
            if isinstance(value, BaseException) and not isinstance(value, Exception):
                raise value
        if isinstance(narrated, Exception):
            raise narrated

        try:
            return self._settle(run, outcome)
        except StaleResultDiscarded as exc:
            self._notify("analysis.stale_discarded", exc.context)
            return self._current

    async def _play_narrative(self, sequence: int) -> None:
        for step in self._steps:
            await self._sleep(step.delay_seconds * self._delay_scale)
            if sequence != self._sequence:
                return
            self.trace.append(step.message, step.severity)

    def _settle(self, run: AnalysisRun, outcome: Any) -> AnalysisRun:
        if run.sequence != self._sequence:
            raise StaleResultDiscarded(
                "Superseded analysis result discarded.",
                sequence=run.sequence,
                latest_sequence=self._sequence,
            )

        report: RiskReport | None = None
        failure: Exception | None = outcome if isinstance(outcome, Exception) else None
        if failure is None:
            try:
                report = _coerce_report(outcome)
            except EvaluationError as exc:
                failure = exc

        if report is None:
            self.trace.append(FAILURE_TEXT, "error")
            self._current = replace(run, status=AnalysisStatus.ERROR, finished_at=_now_iso())
            self._notify(
                "analysis.failed",
                {"sequence": run.sequence, "error_type": failure.__class__.__name__ if failure else "unknown"},
            )
            return self._current

        for vector in report.attack_vectors:
            self.trace.append(VECTOR_TEXT.format(vector=vector), "error")
        for text, severity in CLOSING_LINES:
            self.trace.append(text, severity)
        self._current = replace(run, status=AnalysisStatus.COMPLETE, result=report, finished_at=_now_iso())
        self._notify(
            "analysis.completed",
            {
                "sequence": run.sequence,
                "score": report.score,
                "attack_vector_count": len(report.attack_vectors),
            },
        )
        return self._current

    def reset(self) -> AnalysisRun:
        """Return to Idle from any terminal state, clearing the trace."""

        if self._current.status is AnalysisStatus.SCANNING:
            raise AnalysisStateError(
                "Cannot reset while a scan is in flight.",
                sequence=self._current.sequence,
            )
        self.trace.clear()
        self._current = AnalysisRun(status=AnalysisStatus.IDLE)
        self.trace.append(RESET_TEXT, "info")
        self._notify("analysis.reset", {"sequence": self._sequence})
        return self._current
