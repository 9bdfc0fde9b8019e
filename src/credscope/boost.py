from __future__ import annotations

"""Boost coordinator: auto-strengthen and manual mutation strategies gated on a completed run."""

import asyncio
from typing import Any

from .advisor import RiskAdvisor
from .errors import BoostUnavailableError, StrengthenError, SuggestError
from .mutation import MutationSession
from .pipeline import DEFAULT_BOOST_SCORE_CEILING, AnalysisPipeline, AnalysisRun, Observer, Sleep

DEFAULT_WARMUP_SECONDS = 2.5
AUTO_START_TEXT = "Initiating AUTO-BOOST protocol..."
AUTO_ANALYZE_TEXT = "Analyzing base patterns for fortification..."
AUTO_SUCCESS_TEXT = "Optimization Success: {explanation}"
AUTO_APPLY_TEXT = "Applying fortified credentials..."
AUTO_FAILURE_TEXT = "Enhancement algorithm failed. Try again."
MANUAL_FAILURE_TEXT = "Failed to initialize tactical module."
COMMIT_TEXT = "Manual configuration committed."


class BoostCoordinator:
    """Runs at most one boost strategy at a time on top of an `AnalysisPipeline`."""

    def __init__(
        self,
        pipeline: AnalysisPipeline,
        advisor: RiskAdvisor,
        *,
        score_ceiling: float = DEFAULT_BOOST_SCORE_CEILING,
        warmup_seconds: float = DEFAULT_WARMUP_SECONDS,
        sleep: Sleep | None = None,
        observer: Observer | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._advisor = advisor
        self.score_ceiling = score_ceiling
        self.warmup_seconds = warmup_seconds
        self._sleep = sleep or asyncio.sleep
        self._observer = observer
        self._busy = False
        self._session: MutationSession | None = None

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def session(self) -> MutationSession | None:
        return self._session

    @property
    def available(self) -> bool:
        return not self._busy and self._session is None and self._pipeline.boost_available(self.score_ceiling)

    def _notify(self, event_type: str, data: dict[str, Any]) -> None:
        if self._observer is not None:
            self._observer(event_type, data)

    def _superseded(self, prior: AnalysisRun, strategy: str) -> bool:
        """True when another run or a reset replaced `prior` while a fetch was outstanding."""

        if self._pipeline.current is prior:
            return False
        self._notify(
            "boost.stale_discarded",
            {"strategy": strategy, "sequence": prior.sequence, "latest_sequence": self._pipeline.sequence},
        )
        return True

    def _require_available(self, strategy: str) -> None:
        if self._busy:
            raise BoostUnavailableError("A boost strategy is already in progress.", strategy=strategy)
        if self._session is not None:
            raise BoostUnavailableError(
                "A manual session is open; commit or cancel it first.",
                strategy=strategy,
            )
        if not self._pipeline.boost_available(self.score_ceiling):
            run = self._pipeline.current
            raise BoostUnavailableError(
                "Boost requires a completed analysis scoring below the ceiling.",
                hint=f"Current status is {run.status.value}.",
                strategy=strategy,
                score=run.score,
                ceiling=self.score_ceiling,
            )

    async def boost_auto(self) -> AnalysisRun:
        """Strengthen the current target remotely and re-analyse it with the trace kept."""

        self._require_available("auto")
        trace = self._pipeline.trace
        prior = self._pipeline.current
        self._busy = True
        self._notify("boost.started", {"strategy": "auto", "sequence": prior.sequence})
        try:
            trace.append(AUTO_START_TEXT, "info")
            await self._sleep(self.warmup_seconds)
            trace.append(AUTO_ANALYZE_TEXT, "info")
            try:
                result = await self._advisor.strengthen(prior.target_text)
            except Exception as exc:
                if self._superseded(prior, "auto"):
                    return self._pipeline.current
                trace.append(AUTO_FAILURE_TEXT, "error")
                self._notify(
                    "boost.failed",
                    {"strategy": "auto", "error_type": exc.__class__.__name__, "operation": StrengthenError.operation},
                )
                return prior
            if self._superseded(prior, "auto"):
                return self._pipeline.current
            trace.append(AUTO_SUCCESS_TEXT.format(explanation=result.explanation), "success")
            trace.append(AUTO_APPLY_TEXT, "success")
        finally:
            self._busy = False

        self._notify("boost.applied", {"strategy": "auto", "target_length": len(result.strengthened_text)})
        return await self._pipeline.run_analysis(result.strengthened_text, keep_trace=True)

    async def boost_manual(self) -> MutationSession | None:
        """Fetch suggestions and open a mutation session over the current target."""

        self._require_available("manual")
        prior = self._pipeline.current
        self._busy = True
        self._notify("boost.started", {"strategy": "manual", "sequence": prior.sequence})
        try:
            suggestions = await self._advisor.suggest(prior.target_text)
        except Exception as exc:
            if self._superseded(prior, "manual"):
                return None
            self._pipeline.trace.append(MANUAL_FAILURE_TEXT, "error")
            self._notify(
                "boost.failed",
                {"strategy": "manual", "error_type": exc.__class__.__name__, "operation": SuggestError.operation},
            )
            return None
        finally:
            self._busy = False

        if self._superseded(prior, "manual"):
            return None
        self._session = MutationSession(prior.target_text, suggestions)
        self._notify(
            "session.opened",
            {
                "sequence": prior.sequence,
                "symbol_count": len(suggestions.symbols),
                "suffix_count": len(suggestions.suffixes),
                "substitution_count": len(suggestions.substitutions),
            },
        )
        return self._session

    def require_session(self) -> MutationSession:
        if self._session is None:
            raise BoostUnavailableError("No manual session is open.", hint="Start one with a manual boost.")
        return self._session

    async def commit(self, buffer: str | None = None) -> AnalysisRun:
        """Close the session and analyse its buffer (or `buffer`) with the trace kept."""

        session = self.require_session()
        committed = session.close()
        if buffer is not None:
            committed = buffer
        self._session = None
        self._pipeline.trace.append(COMMIT_TEXT, "success")
        self._notify("session.committed", {"target_length": len(committed)})
        return await self._pipeline.run_analysis(committed, keep_trace=True)

    def cancel(self) -> None:
        session = self.require_session()
        session.close()
        self._session = None
        self._notify("session.cancelled", {"sequence": self._pipeline.sequence})

    def to_dict(self) -> dict[str, Any]:
        return {
            "available": self.available,
            "busy": self._busy,
            "score_ceiling": self.score_ceiling,
            "session_open": self._session is not None,
        }
