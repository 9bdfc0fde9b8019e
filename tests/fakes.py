from __future__ import annotations

import asyncio
from typing import Any

from credscope.advisor import RiskAdvisor, RiskReport, StrengthenResult, SuggestionSet, Substitution
from credscope.errors import EvaluationError, StrengthenError, SuggestError


def report(score: float = 42, vectors: list[str] | None = None, **extra: Any) -> RiskReport:
    return RiskReport(score=score, attack_vectors=vectors if vectors is not None else ["Dictionary Attack"], **extra)


class ScriptedAdvisor(RiskAdvisor):
    """Advisor double returning canned payloads, optionally after a delay or a gate."""

    def __init__(
        self,
        *,
        reports: dict[str, Any] | None = None,
        default_report: Any = None,
        delays: dict[str, float] | None = None,
        strengthened: StrengthenResult | Exception | None = None,
        suggestions: SuggestionSet | Exception | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.reports = reports or {}
        self.default_report = default_report if default_report is not None else report()
        self.delays = delays or {}
        self.strengthened = strengthened or StrengthenResult(
            strengthened_text="P@ssw0rd!Strong#42",
            explanation="Added symbols and casing.",
        )
        self.suggestions = suggestions or SuggestionSet(
            symbols=["!", "#"],
            suffixes=["2024", "99"],
            substitutions=[Substitution(source="a", replacement="@"), Substitution(source="z", replacement="2")],
        )
        self.gate = gate
        self.evaluated: list[str] = []
        self.closed = False

    async def evaluate_risk(self, text: str) -> RiskReport:
        self.evaluated.append(text)
        delay = self.delays.get(text, 0)
        if delay:
            await asyncio.sleep(delay)
        outcome = self.reports.get(text, self.default_report)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def strengthen(self, text: str) -> StrengthenResult:
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(self.strengthened, Exception):
            raise self.strengthened
        return self.strengthened

    async def suggest(self, text: str) -> SuggestionSet:
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(self.suggestions, Exception):
            raise self.suggestions
        return self.suggestions

    async def close(self) -> None:
        self.closed = True


def failing_advisor() -> ScriptedAdvisor:
    return ScriptedAdvisor(
        default_report=EvaluationError("upstream unavailable"),
        strengthened=StrengthenError("upstream unavailable"),
        suggestions=SuggestError("upstream unavailable"),
    )


async def no_sleep(_seconds: float) -> None:
    await asyncio.sleep(0)
