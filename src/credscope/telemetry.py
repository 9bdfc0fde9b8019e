from __future__ import annotations

"""Telemetry event sanitization, persistence, retention, and local summary export helpers."""

import hashlib
import json
import platform
import re
import sys
import unicodedata
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from importlib.metadata import PackageNotFoundError, version as package_version
from pathlib import Path
from typing import Any

from .security import payload_contains_pii, payload_contains_secrets


SCHEMA_VERSION = "0.1"
VALID_EVENT_TYPES = {
    "engine.started",
    "analysis.started",
    "analysis.completed",
    "analysis.failed",
    "analysis.rejected",
    "analysis.stale_discarded",
    "analysis.reset",
    "capture.encoded",
    "boost.started",
    "boost.applied",
    "boost.failed",
    "boost.stale_discarded",
    "session.opened",
    "session.updated",
    "session.committed",
    "session.cancelled",
    "vault.saved",
    "vault.duplicate",
    "vault.deleted",
    "vault.restored",
    "vault.purged",
    "vault.updated",
    "vault.revealed",
    "telemetry.purged",
    "risk.flagged",
}
VALID_ACTOR_KINDS = {"human", "agent", "system"}
VALID_SOURCES = {"cli", "api"}
MAX_STRING_LENGTH = 200
RANGE_PATTERN = re.compile(r"^(\d+)([dh])$")


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _format_ts(value: datetime) -> str:
    return value.replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _parse_ts(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    normalized = value.replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _safe_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def _strip_control_chars(value: str) -> str:
    return "".join(ch for ch in value if not unicodedata.category(ch).startswith("C"))


@dataclass(frozen=True)
class BuildInfo:
    """Static build/runtime metadata attached to every telemetry event."""

    engine_version: str
    python_version: str
    platform: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "engine_version": self.engine_version,
            "python_version": self.python_version,
            "platform": self.platform,
        }


@dataclass(frozen=True)
class SanitizeStats:
    redacted_fields: int = 0
    truncated_fields: int = 0


def _combine_stats(a: SanitizeStats, b: SanitizeStats) -> SanitizeStats:
    return SanitizeStats(
        redacted_fields=a.redacted_fields + b.redacted_fields,
        truncated_fields=a.truncated_fields + b.truncated_fields,
    )


def _sanitize_text(value: str, *, empty_fallback: str | None = None) -> tuple[str, SanitizeStats]:
    cleaned = _strip_control_chars(value).strip()
    if not cleaned and empty_fallback is not None:
        cleaned = empty_fallback
    if payload_contains_secrets(cleaned) or payload_contains_pii(cleaned):
        return "[redacted]", SanitizeStats(redacted_fields=1)
    if len(cleaned) > MAX_STRING_LENGTH:
        return f"{cleaned[:MAX_STRING_LENGTH]}...[truncated]", SanitizeStats(truncated_fields=1)
    return cleaned, SanitizeStats()


def sanitize_actor_id(value: Any) -> str:
    """Normalize actor identity to a safe string and redact risky payloads."""

    text = "unknown" if value is None else str(value)
    sanitized, _ = _sanitize_text(text, empty_fallback="unknown")
    return sanitized or "unknown"


def normalize_actor_model(actor: Any, *, actor_id: Any | None = None) -> dict[str, str]:
    """Return canonical actor model `{kind, id}` for events and exports."""

    kind = "system"
    if isinstance(actor, dict):
        kind = str(actor.get("kind", "system")).strip().lower()
        if actor_id is None:
            actor_id = actor.get("id")
    elif isinstance(actor, str):
        lowered = actor.strip().lower()
        if lowered in VALID_ACTOR_KINDS:
            kind = lowered
        elif ":" in lowered and lowered.split(":", 1)[0] in VALID_ACTOR_KINDS:
            kind = lowered.split(":", 1)[0]
            if actor_id is None:
                actor_id = actor
    if kind not in VALID_ACTOR_KINDS:
        kind = "system"
    return {"kind": kind, "id": sanitize_actor_id(actor_id)}


def _sanitize_scalar(value: Any) -> tuple[Any, SanitizeStats]:
    if value is None or isinstance(value, (int, float, bool)):
        return value, SanitizeStats()
    return _sanitize_text(str(value), empty_fallback="")


def sanitize_event_data(data: Any) -> tuple[Any, SanitizeStats]:
    """Recursively sanitize telemetry payloads for secrets, PII, and controls."""

    if isinstance(data, dict):
        sanitized: dict[str, Any] = {}
        stats = SanitizeStats()
        for key, value in data.items():
            key_text, key_stats = _sanitize_scalar(key)
            value_sanitized, value_stats = sanitize_event_data(value)
            sanitized[str(key_text)] = value_sanitized
            stats = _combine_stats(_combine_stats(stats, key_stats), value_stats)
        return sanitized, stats
    if isinstance(data, (list, tuple)):
        sanitized_items: list[Any] = []
        stats = SanitizeStats()
        for item in data:
            item_sanitized, item_stats = sanitize_event_data(item)
            sanitized_items.append(item_sanitized)
            stats = _combine_stats(stats, item_stats)
        return sanitized_items, stats
    return _sanitize_scalar(data)


def parse_range(range_value: str) -> timedelta:
    """Parse compact duration windows such as `7d` or `24h`."""

    match = RANGE_PATTERN.match(range_value.strip().lower())
    if not match:
        raise ValueError("range must be like 7d or 24h")
    amount = int(match.group(1))
    if amount <= 0:
        raise ValueError("range amount must be > 0")
    if match.group(2) == "d":
        return timedelta(days=amount)
    return timedelta(hours=amount)


def detect_engine_version() -> str:
    try:
        return package_version("credscope")
    except PackageNotFoundError:
        return "0.1.0"


def hashlib_sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


class TelemetryLogger:
    """Append-only JSONL event log; a failed write never interrupts the engine."""

    def __init__(self, events_path: Path) -> None:
        self.events_path = events_path
        self.events_path.parent.mkdir(parents=True, exist_ok=True)
        self.build = BuildInfo(
            engine_version=detect_engine_version(),
            python_version=sys.version.split()[0],
            platform=platform.platform(),
        )

    def _normalize_source(self, source: str) -> str:
        if source in VALID_SOURCES:
            return source
        return "cli"

    def _append_jsonl(self, payload: dict[str, Any]) -> None:
        self.events_path.parent.mkdir(parents=True, exist_ok=True)
        with self.events_path.open("a", encoding="utf-8", newline="\n") as handle:
            handle.write(_safe_json(payload))
            handle.write("\n")

    def _base_event(
        self,
        *,
        event_type: str,
        actor: str,
        actor_id: str | None,
        source: str,
        data: dict[str, Any],
        trace_id: str | None,
    ) -> dict[str, Any]:
        requested_event_type = event_type
        if requested_event_type not in VALID_EVENT_TYPES:
            event_type = "risk.flagged"
            data = {
                "reason": "invalid_event_type",
                "invalid_event_type_hash": hashlib_sha256_hex(requested_event_type),
            }
        trace_value, _ = _sanitize_text(trace_id or "", empty_fallback="")
        return {
            "schema_version": SCHEMA_VERSION,
            "event_id": str(uuid.uuid4()),
            "ts": _format_ts(_utc_now()),
            "event_type": event_type,
            "actor": normalize_actor_model(actor, actor_id=actor_id),
            "source": self._normalize_source(source),
            "trace_id": trace_value or None,
            "build": self.build.to_dict(),
            "data": data,
        }

    def log_event(
        self,
        event_type: str,
        *,
        actor: str,
        source: str,
        data: dict[str, Any],
        actor_id: str | None = None,
        trace_id: str | None = None,
        _emit_sanitize_flag: bool = True,
    ) -> None:
        """Write one sanitized event and optional sanitization risk flag."""

        try:
            sanitized_data, stats = sanitize_event_data(data)
            event_payload = self._base_event(
                event_type=event_type,
                actor=actor,
                actor_id=actor_id,
                source=source,
                data=sanitized_data if isinstance(sanitized_data, dict) else {"value": sanitized_data},
                trace_id=trace_id,
            )
            self._append_jsonl(event_payload)
            if _emit_sanitize_flag and (stats.redacted_fields or stats.truncated_fields):
                self.log_event(
                    "risk.flagged",
                    actor="system",
                    actor_id=actor_id,
                    source=source,
                    data={
                        "reason": "telemetry_sanitized",
                        "trigger_event_type": event_type,
                        "fields_redacted_count": stats.redacted_fields,
                        "fields_truncated_count": stats.truncated_fields,
                    },
                    trace_id=trace_id,
                    _emit_sanitize_flag=False,
                )
        except Exception as exc:  # noqa: BLE001
            print(f"[telemetry] failed to append event: {exc}", file=sys.stderr)

    def iter_events(self) -> list[dict[str, Any]]:
        if not self.events_path.exists():
            return []
        events: list[dict[str, Any]] = []
        with self.events_path.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line:
                    continue
                try:
                    payload = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(payload, dict):
                    events.append(payload)
        return events

    def count_events(self) -> int:
        if not self.events_path.exists():
            return 0
        with self.events_path.open("r", encoding="utf-8") as handle:
            return sum(1 for line in handle if line.strip())

    def purge_older_than(self, range_value: str) -> dict[str, int]:
        """Drop events older than the window; unparseable timestamps are dropped too."""

        cutoff = _utc_now() - parse_range(range_value)
        events = self.iter_events()
        kept: list[dict[str, Any]] = []
        for event in events:
            parsed_ts = _parse_ts(event.get("ts"))
            if parsed_ts is not None and parsed_ts >= cutoff:
                kept.append(event)
        if kept:
            temp_path = self.events_path.parent / f".{self.events_path.name}.tmp"
            temp_path.write_text("".join(_safe_json(event) + "\n" for event in kept), encoding="utf-8")
            temp_path.replace(self.events_path)
        elif self.events_path.exists():
            self.events_path.unlink()
        return {"removed": len(events) - len(kept), "kept": len(kept)}

    def export_summary(self, *, range_value: str, out_path: Path | None = None) -> dict[str, Any]:
        """Aggregate windowed engine metrics; no credential material is ever included."""

        window = parse_range(range_value)
        end = _utc_now()
        start = end - window
        in_window: list[dict[str, Any]] = []
        for event in self.iter_events():
            parsed_ts = _parse_ts(event.get("ts"))
            if parsed_ts is None or not (start <= parsed_ts <= end):
                continue
            in_window.append(event)

        def _of(event_type: str) -> list[dict[str, Any]]:
            return [event for event in in_window if event.get("event_type") == event_type]

        completed = _of("analysis.completed")
        failed = _of("analysis.failed")
        boosts = _of("boost.started")
        boost_failures = _of("boost.failed")
        scores = [
            float(event["data"]["score"])
            for event in completed
            if isinstance(event.get("data"), dict) and isinstance(event["data"].get("score"), (int, float))
        ]
        attempts = len(completed) + len(failed)
        events_by_type = Counter(str(event.get("event_type", "unknown")) for event in in_window)
        events_by_source = Counter(str(event.get("source", "cli")) for event in in_window)
        boosts_by_strategy = Counter(str(event.get("data", {}).get("strategy", "unknown")) for event in boosts)

        summary = {
            "schema_version": SCHEMA_VERSION,
            "generated_at": _format_ts(end),
            "range": range_value,
            "window_start": _format_ts(start),
            "window_end": _format_ts(end),
            "events_considered": len(in_window),
            "events_by_type": dict(sorted(events_by_type.items())),
            "events_by_source": dict(sorted(events_by_source.items())),
            "analyses_completed": len(completed),
            "analyses_failed": len(failed),
            "analysis_success_rate": round(len(completed) / attempts, 4) if attempts else 0.0,
            "avg_score": round(sum(scores) / len(scores), 2) if scores else None,
            "stale_results_discarded": len(_of("analysis.stale_discarded")),
            "boosts_started": len(boosts),
            "boosts_by_strategy": dict(sorted(boosts_by_strategy.items())),
            "boost_failures": len(boost_failures),
            "boosts_discarded": len(_of("boost.stale_discarded")),
            "vault_saved": len(_of("vault.saved")),
            "vault_duplicates": len(_of("vault.duplicate")),
            "vault_purged": len(_of("vault.purged")),
            "risk_flags_count": len(_of("risk.flagged")),
        }
        if out_path is not None:
            out_path.parent.mkdir(parents=True, exist_ok=True)
            out_path.write_text(json.dumps(summary, indent=2), encoding="utf-8")
        return summary
