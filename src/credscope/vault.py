from __future__ import annotations

"""Credential vault: active and trashed collections, expiry classification, and persistence ports."""

import json
import tempfile
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, replace
from datetime import UTC, date, datetime, timedelta
from enum import StrEnum
from pathlib import Path
from typing import Any, Callable

STATE_SCHEMA_VERSION = "0.1"
DEFAULT_TTL_DAYS = 90
EXPIRY_WARNING_DAYS = 7

Clock = Callable[[], datetime]


class CaptureKind(StrEnum):
    TEXT = "text"
    VOICE = "voice"
    RETINA = "retina"
    BIO = "bio"


class ExpiryState(StrEnum):
    NO_EXPIRY = "no_expiry"
    EXPIRED = "expired"
    EXPIRING_SOON = "expiring_soon"
    VALID = "valid"


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _parse_date(value: str) -> date:
    return datetime.strptime(value, "%Y-%m-%d").date()


@dataclass
class CredentialEntry:
    id: str
    secret_value: str
    created_at: str
    capture_kind: CaptureKind
    score: float | None = None
    description: str | None = None
    expires_at: date | None = None
    last_accessed_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["capture_kind"] = self.capture_kind.value
        payload["expires_at"] = self.expires_at.isoformat() if self.expires_at else None
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CredentialEntry":
        expires_at = data.get("expires_at")
        score = data.get("score")
        return cls(
            id=str(data["id"]),
            secret_value=str(data["secret_value"]),
            created_at=str(data["created_at"]),
            capture_kind=CaptureKind(data.get("capture_kind", CaptureKind.TEXT.value)),
            score=float(score) if score is not None else None,
            description=data.get("description"),
            expires_at=_parse_date(expires_at) if expires_at else None,
            last_accessed_at=data.get("last_accessed_at"),
        )


@dataclass(frozen=True)
class ExpiryStatus:
    state: ExpiryState
    days_remaining: int | None = None
    expires_at: date | None = None

    @property
    def label(self) -> str:
        if self.state is ExpiryState.NO_EXPIRY:
            return "SET EXPIRY"
        if self.state is ExpiryState.EXPIRED:
            return "EXPIRED"
        if self.state is ExpiryState.EXPIRING_SOON:
            return f"EXPIRING: {self.days_remaining} DAYS"
        return f"VALID UNTIL: {self.expires_at.isoformat() if self.expires_at else ''}"

    def to_dict(self) -> dict[str, Any]:
        return {"state": self.state.value, "days_remaining": self.days_remaining, "label": self.label}


def classify_expiry(
    expires_at: date | None,
    today: date,
    *,
    warning_days: int = EXPIRY_WARNING_DAYS,
) -> ExpiryStatus:
    """Classify an expiry date against `today`; an entry expiring today is still usable."""

    if expires_at is None:
        return ExpiryStatus(ExpiryState.NO_EXPIRY)
    days_remaining = (expires_at - today).days
    if days_remaining < 0:
        state = ExpiryState.EXPIRED
    elif days_remaining <= warning_days:
        state = ExpiryState.EXPIRING_SOON
    else:
        state = ExpiryState.VALID
    return ExpiryStatus(state, days_remaining, expires_at)


@dataclass(frozen=True)
class SaveOutcome:
    entry: CredentialEntry
    created: bool


class VaultStore(ABC):
    """Persistence port holding one vault snapshot."""

    @abstractmethod
    def load(self) -> dict[str, Any] | None:
        ...

    @abstractmethod
    def save(self, snapshot: dict[str, Any]) -> None:
        ...


class MemoryVaultStore(VaultStore):
    def __init__(self, snapshot: dict[str, Any] | None = None) -> None:
        self.snapshot = snapshot
        self.saves = 0

    def load(self) -> dict[str, Any] | None:
        if self.snapshot is None:
            return None
        return json.loads(json.dumps(self.snapshot))

    def save(self, snapshot: dict[str, Any]) -> None:
        self.snapshot = json.loads(json.dumps(snapshot))
        self.saves += 1


class JsonFileVaultStore(VaultStore):
    """Snapshot stored as one JSON document, replaced atomically on every save."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return None
        payload = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError(f"Vault state must be a JSON object: {self.path}")
        version = payload.get("state_schema_version")
        if version != STATE_SCHEMA_VERSION:
            raise ValueError(f"Unsupported vault state_schema_version: {version}; expected {STATE_SCHEMA_VERSION}.")
        return payload

    def save(self, snapshot: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps({"state_schema_version": STATE_SCHEMA_VERSION, **snapshot}, indent=2)
        # One temp file per save; concurrent writers never share a staging path.
        with tempfile.NamedTemporaryFile(
            "w",
            dir=self.path.parent,
            prefix=f".{self.path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        ) as handle:
            handle.write(payload)
        temp_path = Path(handle.name)
        try:
            for attempt in range(5):
                try:
                    temp_path.replace(self.path)
                    return
                except PermissionError:
                    if attempt == 4:
                        raise
                    time.sleep(0.02 * (attempt + 1))
        finally:
            if temp_path.exists():
                temp_path.unlink()


class CredentialVault:
    """Two disjoint ordered collections; an entry lives in exactly one of them.

    Both lists are newest-first. Entries only leave the vault through `purge`,
    which is allowed from Trashed alone.
    """

    def __init__(
        self,
        store: VaultStore | None = None,
        *,
        clock: Clock | None = None,
        default_ttl_days: int = DEFAULT_TTL_DAYS,
    ) -> None:
        if default_ttl_days <= 0:
            raise ValueError("default_ttl_days must be positive.")
        self._store = store or MemoryVaultStore()
        self._clock = clock or _utc_now
        self.default_ttl_days = default_ttl_days
        self._active: list[CredentialEntry] = []
        self._trashed: list[CredentialEntry] = []
        self._load()

    def _load(self) -> None:
        snapshot = self._store.load()
        if not snapshot:
            return
        self._active = [CredentialEntry.from_dict(item) for item in snapshot.get("active", [])]
        self._trashed = [CredentialEntry.from_dict(item) for item in snapshot.get("trashed", [])]

    def _persist(self) -> None:
        self._store.save(self.snapshot())

    def snapshot(self) -> dict[str, Any]:
        return {
            "active": [entry.to_dict() for entry in self._active],
            "trashed": [entry.to_dict() for entry in self._trashed],
        }

    def today(self) -> date:
        return self._clock().date()

    @staticmethod
    def _find(collection: list[CredentialEntry], entry_id: str) -> int | None:
        for index, entry in enumerate(collection):
            if entry.id == entry_id:
                return index
        return None

    def save(self, secret_value: str, score: float | None, capture_kind: CaptureKind | str) -> SaveOutcome:
        """Add a credential unless an Active entry already holds the same value."""

        if not secret_value:
            raise ValueError("secret_value must be non-empty.")
        for entry in self._active:
            if entry.secret_value == secret_value:
                return SaveOutcome(entry=replace(entry), created=False)
        now = self._clock()
        entry = CredentialEntry(
            id=uuid.uuid4().hex,
            secret_value=secret_value,
            created_at=now.isoformat(),
            capture_kind=CaptureKind(capture_kind),
            score=score,
            expires_at=now.date() + timedelta(days=self.default_ttl_days),
        )
        self._active.insert(0, entry)
        self._persist()
        return SaveOutcome(entry=replace(entry), created=True)

    def delete(self, entry_id: str) -> bool:
        index = self._find(self._active, entry_id)
        if index is None:
            return False
        self._trashed.insert(0, self._active.pop(index))
        self._persist()
        return True

    def restore(self, entry_id: str) -> bool:
        # Uniqueness against Active is not re-checked here.
        index = self._find(self._trashed, entry_id)
        if index is None:
            return False
        self._active.insert(0, self._trashed.pop(index))
        self._persist()
        return True

    def purge(self, entry_id: str) -> bool:
        index = self._find(self._trashed, entry_id)
        if index is None:
            return False
        del self._trashed[index]
        self._persist()
        return True

    def _locate(self, entry_id: str) -> CredentialEntry | None:
        for collection in (self._active, self._trashed):
            index = self._find(collection, entry_id)
            if index is not None:
                return collection[index]
        return None

    def update_description(self, entry_id: str, text: str | None) -> bool:
        entry = self._locate(entry_id)
        if entry is None:
            return False
        entry.description = text.strip() if text and text.strip() else None
        self._persist()
        return True

    def update_expiry(self, entry_id: str, expires_at: date | str | None) -> bool:
        entry = self._locate(entry_id)
        if entry is None:
            return False
        if isinstance(expires_at, str):
            expires_at = _parse_date(expires_at)
        entry.expires_at = expires_at
        self._persist()
        return True

    def reveal(self, entry_id: str) -> CredentialEntry | None:
        index = self._find(self._active, entry_id)
        if index is None:
            return None
        entry = self._active[index]
        entry.last_accessed_at = self._clock().isoformat()
        self._persist()
        return replace(entry)

    def get(self, entry_id: str) -> CredentialEntry | None:
        entry = self._locate(entry_id)
        return replace(entry) if entry is not None else None

    def active(self, kind: CaptureKind | str | None = None) -> list[CredentialEntry]:
        return self._filtered(self._active, kind)

    def trashed(self, kind: CaptureKind | str | None = None) -> list[CredentialEntry]:
        return self._filtered(self._trashed, kind)

    @staticmethod
    def _filtered(collection: list[CredentialEntry], kind: CaptureKind | str | None) -> list[CredentialEntry]:
        if kind is None:
            return [replace(entry) for entry in collection]
        wanted = CaptureKind(kind)
        return [replace(entry) for entry in collection if entry.capture_kind is wanted]

    def expiry_of(self, entry_id: str) -> ExpiryStatus | None:
        entry = self._locate(entry_id)
        if entry is None:
            return None
        return classify_expiry(entry.expires_at, self.today())
