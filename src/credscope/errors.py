from __future__ import annotations

"""Engine error taxonomy with stable codes for API and CLI responses."""

from typing import Any


class CredscopeError(ValueError):
    """Structured engine error for stable API responses."""

    default_code = "CREDSCOPE_ERROR"

    def __init__(self, message: str, *, code: str | None = None, hint: str | None = None, **context: Any) -> None:
        super().__init__(message)
        self.code = code or self.default_code
        self.message = message
        self.hint = hint
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.hint:
            payload["hint"] = self.hint
        for key, value in self.context.items():
            if value is not None:
                payload[key] = value
        return payload


class EmptyInputError(CredscopeError):
    default_code = "EMPTY_INPUT"


class AnalysisStateError(CredscopeError):
    default_code = "INVALID_ANALYSIS_STATE"


class BoostUnavailableError(CredscopeError):
    default_code = "BOOST_UNAVAILABLE"


class SessionClosedError(CredscopeError):
    default_code = "SESSION_CLOSED"


class StaleResultDiscarded(CredscopeError):
    """Raised internally when a superseded analysis tries to settle."""

    default_code = "STALE_RESULT_DISCARDED"


class AdvisorError(RuntimeError):
    """A risk-advisor collaborator call failed (transport, status or payload)."""

    operation = "advisor"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class EvaluationError(AdvisorError):
    operation = "evaluate"


class StrengthenError(AdvisorError):
    operation = "strengthen"


class SuggestError(AdvisorError):
    operation = "suggest"
