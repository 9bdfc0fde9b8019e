from __future__ import annotations

"""Credential mutation engine: cursor insertion, literal substitution, and previewable edit sessions."""

import re
from dataclasses import dataclass
from typing import Any

from .advisor import SuggestionSet
from .errors import SessionClosedError


def insert_at(buffer: str, start: int, end: int, text: str) -> tuple[str, int]:
    """Replace `buffer[start:end]` with `text`; returns the new buffer and cursor."""

    if not 0 <= start <= end <= len(buffer):
        raise ValueError(f"Selection {start}..{end} is outside a buffer of length {len(buffer)}.")
    return buffer[:start] + text + buffer[end:], start + len(text)


def _literal_pattern(source: str) -> re.Pattern[str]:
    return re.compile(re.escape(source), re.IGNORECASE)


def is_applicable(buffer: str, source: str) -> bool:
    if not source:
        return False
    return _literal_pattern(source).search(buffer) is not None


def substitute_all(buffer: str, source: str, replacement: str) -> str:
    """Replace every case-insensitive occurrence of the literal `source`."""

    if not is_applicable(buffer, source):
        return buffer
    return _literal_pattern(source).sub(lambda _match: replacement, buffer)


@dataclass(frozen=True)
class Cursor:
    start: int
    end: int

    def clamp(self, length: int) -> "Cursor":
        start = min(max(self.start, 0), length)
        end = min(max(self.end, start), length)
        return Cursor(start, end)

    def to_dict(self) -> dict[str, int]:
        return {"start": self.start, "end": self.end}


@dataclass(frozen=True)
class InsertText:
    text: str
    selection: Cursor | None = None

    def apply(self, buffer: str, cursor: Cursor) -> tuple[str, Cursor]:
        target = (self.selection or cursor).clamp(len(buffer))
        updated, position = insert_at(buffer, target.start, target.end, self.text)
        return updated, Cursor(position, position)

    def describe(self) -> dict[str, Any]:
        return {"kind": "insert", "text": self.text}


@dataclass(frozen=True)
class SubstituteAll:
    source: str
    replacement: str

    def applicable(self, buffer: str) -> bool:
        return is_applicable(buffer, self.source)

    def apply(self, buffer: str, cursor: Cursor) -> tuple[str, Cursor]:
        if not self.applicable(buffer):
            return buffer, cursor
        updated = substitute_all(buffer, self.source, self.replacement)
        return updated, Cursor(len(updated), len(updated))

    def describe(self) -> dict[str, Any]:
        return {"kind": "substitute", "source": self.source, "replacement": self.replacement}


Operation = InsertText | SubstituteAll


class MutationSession:
    """Interactive edit transaction over a credential buffer.

    `preview` holds the hypothetical buffer for the operation under focus.
    It is always recomputable from `buffer` and is dropped by every commit.
    """

    def __init__(self, buffer: str, suggestions: SuggestionSet | None = None) -> None:
        self.buffer = buffer
        self.suggestions = suggestions or SuggestionSet()
        self._last_cursor: Cursor | None = None
        self._pending: Operation | None = None
        self.preview: str | None = None
        self.closed = False

    def _ensure_open(self) -> None:
        if self.closed:
            raise SessionClosedError("Mutation session is closed.")

    @property
    def cursor(self) -> Cursor:
        if self._last_cursor is None:
            return Cursor(len(self.buffer), len(self.buffer))
        return self._last_cursor.clamp(len(self.buffer))

    @property
    def display(self) -> str:
        return self.preview if self.preview is not None else self.buffer

    @property
    def pending(self) -> Operation | None:
        return self._pending

    def select(self, start: int, end: int | None = None) -> Cursor:
        self._ensure_open()
        end = start if end is None else end
        if not 0 <= start <= end <= len(self.buffer):
            raise ValueError(f"Selection {start}..{end} is outside a buffer of length {len(self.buffer)}.")
        self._last_cursor = Cursor(start, end)
        return self._last_cursor

    def begin_preview(self, operation: Operation) -> str | None:
        self._ensure_open()
        if isinstance(operation, SubstituteAll) and not operation.applicable(self.buffer):
            self.end_preview()
            return None
        self.preview, _ = operation.apply(self.buffer, self.cursor)
        self._pending = operation
        return self.preview

    def end_preview(self) -> None:
        self.preview = None
        self._pending = None

    def apply(self, operation: Operation) -> str:
        self._ensure_open()
        self.buffer, self._last_cursor = operation.apply(self.buffer, self.cursor)
        self.end_preview()
        return self.buffer

    def insert(self, text: str, *, selection: Cursor | None = None) -> str:
        return self.apply(InsertText(text, selection))

    def substitute(self, source: str, replacement: str) -> str:
        return self.apply(SubstituteAll(source, replacement))

    def edit(self, text: str) -> str:
        """Free typing: the whole buffer is replaced and the cursor moves to its end."""

        self._ensure_open()
        self.buffer = text
        self._last_cursor = Cursor(len(text), len(text))
        self.end_preview()
        return self.buffer

    def affordances(self) -> dict[str, Any]:
        return {
            "symbols": [{"text": symbol, "applicable": True} for symbol in self.suggestions.symbols],
            "suffixes": [{"text": suffix, "applicable": True} for suffix in self.suggestions.suffixes],
            "substitutions": [
                {
                    "source": item.source,
                    "replacement": item.replacement,
                    "applicable": is_applicable(self.buffer, item.source),
                }
                for item in self.suggestions.substitutions
            ],
        }

    def close(self) -> str:
        self._ensure_open()
        self.end_preview()
        self.closed = True
        return self.buffer

    def to_dict(self) -> dict[str, Any]:
        return {
            "buffer": self.buffer,
            "cursor": self.cursor.to_dict(),
            "preview": self.preview,
            "pending": self._pending.describe() if self._pending is not None else None,
            "affordances": self.affordances(),
            "closed": self.closed,
        }
