from __future__ import annotations

"""Risk-advisor port: typed payloads, an HTTP client, and an offline heuristic advisor."""

import hashlib
import math
import re
from abc import ABC, abstractmethod
from typing import Any

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from .errors import AdvisorError, EvaluationError, StrengthenError, SuggestError


DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_SYMBOLS = ["!", "#", "@", "$", "%", "&"]
DEFAULT_SUFFIXES = ["2024", "99", "!X", "Secure"]
DEFAULT_SUBSTITUTIONS = [("a", "@"), ("e", "3")]
LEET_TABLE = {"a": "@", "e": "3", "i": "1", "o": "0", "s": "$", "t": "7"}
MAX_SUGGESTED_SUBSTITUTIONS = 4
GUESSES_PER_SECOND = 1e10
MAX_CRACK_BITS = 1000.0
COMMON_WORDS = (
    "password",
    "admin",
    "welcome",
    "dragon",
    "monkey",
    "letmein",
    "login",
    "master",
    "sunshine",
    "secret",
    "shadow",
    "football",
    "iloveyou",
    "princess",
    "qwerty",
)
KEYBOARD_WALKS = ("qwerty", "asdf", "zxcv", "qazwsx", "1234", "4321", "0987", "abcd")
DATE_PATTERN = re.compile(r"(19|20)\d{2}|\b\d{1,2}[/.-]\d{1,2}[/.-]\d{2,4}\b")
REPEAT_PATTERN = re.compile(r"(.)\1{2,}")
TRAILING_DIGITS_PATTERN = re.compile(r"[A-Za-z]+\d{1,4}$")


class RiskReport(BaseModel):
    """Evaluator payload: `score` and `attack_vectors` are the only fields the engine reads."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    score: float = Field(ge=0, le=100)
    attack_vectors: list[str] = Field(validation_alias=AliasChoices("attack_vectors", "attackVectors"))
    crack_time: str | None = Field(default=None, validation_alias=AliasChoices("crack_time", "crackTime"))
    weaknesses: list[str] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)
    ai_insight: str | None = Field(default=None, validation_alias=AliasChoices("ai_insight", "aiInsight"))
    breach_probability: str | None = Field(
        default=None, validation_alias=AliasChoices("breach_probability", "breachProbability")
    )
    similar_patterns: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("similar_patterns", "similarPatterns")
    )

    @property
    def extras(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class StrengthenResult(BaseModel):
    strengthened_text: str = Field(
        min_length=1,
        validation_alias=AliasChoices("strengthened_text", "strengthenedText", "boostedPassword"),
    )
    explanation: str = ""


class Substitution(BaseModel):
    source: str = Field(min_length=1, validation_alias=AliasChoices("source", "from", "original"))
    replacement: str = Field(validation_alias=AliasChoices("replacement", "to"))


class SuggestionSet(BaseModel):
    symbols: list[str] = Field(default_factory=list, validation_alias=AliasChoices("symbols", "suggestedSymbols"))
    suffixes: list[str] = Field(default_factory=list, validation_alias=AliasChoices("suffixes", "suggestedSuffixes"))
    substitutions: list[Substitution] = Field(
        default_factory=list, validation_alias=AliasChoices("substitutions", "leetspeak")
    )


class RiskAdvisor(ABC):
    """Abstract interface for the three external advisor calls."""

    @abstractmethod
    async def evaluate_risk(self, text: str) -> RiskReport:
        ...

    @abstractmethod
    async def strengthen(self, text: str) -> StrengthenResult:
        ...

    @abstractmethod
    async def suggest(self, text: str) -> SuggestionSet:
        ...

    async def close(self) -> None:
        return None


class HttpRiskAdvisor(RiskAdvisor):
    """JSON-over-HTTP advisor; every failure surfaces as the call's own error type."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"content-type": "application/json"}
        if api_key and api_key.strip():
            headers["authorization"] = f"Bearer {api_key.strip()}"
        self._client = client or httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout_seconds)

    async def _post(self, path: str, text: str, error_cls: type[AdvisorError]) -> dict[str, Any]:
        try:
            response = await self._client.post(path, json={"text": text})
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise error_cls(f"Advisor {error_cls.operation} returned HTTP {exc.response.status_code}.") from exc
        except httpx.HTTPError as exc:
            raise error_cls(f"Advisor {error_cls.operation} unreachable: {exc.__class__.__name__}.") from exc
        except ValueError as exc:
            raise error_cls(f"Advisor {error_cls.operation} returned invalid JSON.") from exc
        if not isinstance(payload, dict):
            raise error_cls(f"Advisor {error_cls.operation} payload must be a JSON object.")
        return payload

    async def evaluate_risk(self, text: str) -> RiskReport:
        payload = await self._post("/v1/evaluate", text, EvaluationError)
        try:
            return RiskReport.model_validate(payload)
        except ValidationError as exc:
            raise EvaluationError(f"Advisor evaluate payload rejected: {exc.error_count()} error(s).") from exc

    async def strengthen(self, text: str) -> StrengthenResult:
        payload = await self._post("/v1/strengthen", text, StrengthenError)
        try:
            return StrengthenResult.model_validate(payload)
        except ValidationError as exc:
            raise StrengthenError(f"Advisor strengthen payload rejected: {exc.error_count()} error(s).") from exc

    async def suggest(self, text: str) -> SuggestionSet:
        payload = await self._post("/v1/suggest", text, SuggestError)
        try:
            return SuggestionSet.model_validate(payload)
        except ValidationError as exc:
            raise SuggestError(f"Advisor suggest payload rejected: {exc.error_count()} error(s).") from exc

    async def close(self) -> None:
        await self._client.aclose()


def _digest_int(text: str) -> int:
    return int(hashlib.sha256(text.encode("utf-8")).hexdigest()[:8], 16)


def _character_pool(text: str) -> int:
    pool = 0
    if any(ch.islower() for ch in text):
        pool += 26
    if any(ch.isupper() for ch in text):
        pool += 26
    if any(ch.isdigit() for ch in text):
        pool += 10
    if any(not ch.isalnum() for ch in text):
        pool += 33
    return pool


def _format_crack_time(seconds: float) -> str:
    units = [
        ("centuries", 100 * 365 * 24 * 3600),
        ("years", 365 * 24 * 3600),
        ("days", 24 * 3600),
        ("hours", 3600),
        ("minutes", 60),
    ]
    for label, size in units:
        if seconds >= size:
            amount = seconds / size
            if amount >= 1e6:
                return f"{amount:.1e} {label}"
            return f"{int(amount)} {label}"
    return "Instant"


class OfflineRiskAdvisor(RiskAdvisor):
    """Deterministic heuristic advisor used when no remote advisor is configured."""

    def _evaluate(self, text: str) -> RiskReport:
        lowered = text.lower()
        pool = _character_pool(text)
        bits = len(text) * math.log2(pool) if pool else 0.0

        weaknesses: list[str] = []
        strengths: list[str] = []
        vectors: list[str] = []
        patterns: list[str] = []
        penalty = 0

        if any(word in lowered for word in COMMON_WORDS):
            weaknesses.append("Contains a common dictionary word")
            vectors.append("Dictionary Attack")
            patterns.append("Dictionary words")
            penalty += 25
        if any(walk in lowered for walk in KEYBOARD_WALKS):
            weaknesses.append("Contains a keyboard walk sequence")
            vectors.append("Keyboard Walk")
            patterns.append("Keyboard sequences")
            penalty += 20
        if DATE_PATTERN.search(text) or TRAILING_DIGITS_PATTERN.search(text):
            weaknesses.append("Predictable word-plus-number or date structure")
            vectors.append("Mask Attack")
            patterns.append("Dates")
            penalty += 15
        if REPEAT_PATTERN.search(text):
            weaknesses.append("Repeated characters reduce entropy")
            patterns.append("Repetition")
            penalty += 10
        if len(text) <= 8:
            weaknesses.append("Short length")
            vectors.append("Rainbow Table")
        if bits < 60:
            vectors.append("Brute Force")

        if len(text) >= 12:
            strengths.append("Good length")
        if pool >= 62:
            strengths.append("Mixed character classes")
        if any(not ch.isalnum() for ch in text):
            strengths.append("Uses special characters")

        score = max(0.0, min(100.0, round(bits * 100 / 128) - penalty))
        if score < 40:
            breach = "Critical"
        elif score < 60:
            breach = "High"
        elif score < 80:
            breach = "Medium"
        else:
            breach = "Low"

        return RiskReport(
            score=score,
            attack_vectors=vectors,
            crack_time=_format_crack_time((2 ** min(bits, MAX_CRACK_BITS)) / GUESSES_PER_SECOND / 2),
            weaknesses=weaknesses,
            strengths=strengths,
            ai_insight=(
                f"Estimated {bits:.0f} bits of search space"
                + (f"; {len(weaknesses)} structural weakness(es) shrink it further." if weaknesses else ".")
            ),
            breach_probability=breach,
            similar_patterns=patterns,
        )

    async def evaluate_risk(self, text: str) -> RiskReport:
        if not text:
            raise EvaluationError("Password is required for analysis.")
        return self._evaluate(text)

    async def strengthen(self, text: str) -> StrengthenResult:
        if not text:
            raise StrengthenError("Nothing to strengthen.")
        seed = _digest_int(text)
        core = text if any(ch.isalpha() for ch in text) else f"Vault{text}"
        converted = "".join(LEET_TABLE.get(ch, ch) if ch in "aeo" else ch for ch in core)
        for index, ch in enumerate(converted):
            if ch.isalpha():
                converted = converted[:index] + ch.upper() + converted[index + 1 :]
                break
        middle = len(converted) // 2
        symbol = DEFAULT_SYMBOLS[seed % len(DEFAULT_SYMBOLS)]
        tail_symbol = DEFAULT_SYMBOLS[(seed // 7) % len(DEFAULT_SYMBOLS)]
        strengthened = f"{converted[:middle]}{symbol}{converted[middle:]}{tail_symbol}{seed % 90 + 10}"
        return StrengthenResult(
            strengthened_text=strengthened,
            explanation="Leet substitutions, casing, an inner symbol and a numeric tail added.",
        )

    async def suggest(self, text: str) -> SuggestionSet:
        lowered = text.lower()
        pairs = [(source, target) for source, target in LEET_TABLE.items() if source in lowered]
        if not pairs:
            pairs = list(DEFAULT_SUBSTITUTIONS)
        tail = f"{_digest_int(text) % 90 + 10}"
        suffixes = list(DEFAULT_SUFFIXES)
        if tail not in suffixes:
            suffixes.append(tail)
        return SuggestionSet(
            symbols=list(DEFAULT_SYMBOLS),
            suffixes=suffixes,
            substitutions=[
                Substitution(source=source, replacement=target) for source, target in pairs[:MAX_SUGGESTED_SUBSTITUTIONS]
            ],
        )


def build_advisor(
    url: str | None,
    *,
    api_key: str | None = None,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> RiskAdvisor:
    if url:
        return HttpRiskAdvisor(url, api_key=api_key, timeout_seconds=timeout_seconds)
    return OfflineRiskAdvisor()
