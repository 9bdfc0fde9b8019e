from __future__ import annotations

"""Bounded, append-only progress log shown alongside each analysis run."""

import uuid
from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Deque

DEFAULT_TRACE_CAPACITY = 50
VALID_SEVERITIES = {"info", "warning", "error", "success"}
SEPARATOR_TEXT = "--- RE-EVALUATING NEW TARGET ---"


def _clock_stamp() -> str:
    return datetime.now(tz=UTC).strftime("%H:%M:%S.%f")[:12]


@dataclass(frozen=True)
class TraceLine:
    id: str
    text: str
    severity: str
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "text": self.text, "severity": self.severity, "timestamp": self.timestamp}


class TraceLog:
    """Keeps the most recent `capacity` lines in insertion order."""

    def __init__(self, capacity: int = DEFAULT_TRACE_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("trace capacity must be positive.")
        self.capacity = capacity
        self._lines: Deque[TraceLine] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._lines)

    def append(self, text: str, severity: str = "info") -> TraceLine:
        if severity not in VALID_SEVERITIES:
            raise ValueError(f"Unknown trace severity: {severity}")
        line = TraceLine(id=uuid.uuid4().hex[:8], text=text, severity=severity, timestamp=_clock_stamp())
        self._lines.append(line)
        return line

    def separator(self) -> TraceLine:
        return self.append(SEPARATOR_TEXT, "info")

    def clear(self) -> None:
        self._lines.clear()

    def lines(self) -> list[TraceLine]:
        return list(self._lines)

    def texts(self) -> list[str]:
        return [line.text for line in self._lines]

    def to_list(self) -> list[dict[str, Any]]:
        return [line.to_dict() for line in self._lines]
