from __future__ import annotations

"""Engine service: the single mutator of analysis, boost, session and vault state."""

import hashlib
import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any

from .advisor import RiskAdvisor, build_advisor
from .boost import BoostCoordinator
from .config import Settings, load_settings
from .errors import AnalysisStateError, CredscopeError, EmptyInputError
from .fingerprint import bio_fingerprint, retina_fingerprint, voice_fingerprint
from .mutation import Cursor, InsertText, MutationSession, Operation, SubstituteAll
from .paths import credscope_home, ensure_home_dirs
from .pipeline import AnalysisPipeline, AnalysisRun, AnalysisStatus
from .security import mask_secret, secret_digest
from .telemetry import TelemetryLogger, sanitize_actor_id
from .trace import TraceLog
from .vault import CaptureKind, CredentialEntry, CredentialVault, JsonFileVaultStore, classify_expiry

DEFAULT_TRACE_ID_PREFIX = "cli"
VAULT_FILENAME = "vault.json"
STARTUP_TEXT = "System initialized."
CAPTURE_TEXT = {
    CaptureKind.VOICE: "Audio frequency encoded to hash.",
    CaptureKind.RETINA: "Retina scan validated & hashed.",
    CaptureKind.BIO: "Biometric fingerprint tokenized.",
}
DUPLICATE_TEXT = "Credential already exists in vault."
ENCRYPTING_TEXT = "Encrypting data packet [AES-256]..."
ARCHIVED_TEXT = "Credential securely archived to vault [TYPE: {kind}]."
DELETED_TEXT = "Credential moved to recycle bin."
RESTORED_TEXT = "Credential restored from recycle bin."
PURGED_TEXT = "Credential permanently shredded from system."
EXPIRY_TEXT = "Expiration policy updated for credential."
REVEALED_TEXT = "Credential [{prefix}...] copied to clipboard."


class EntryNotFoundError(CredscopeError):
    default_code = "ENTRY_NOT_FOUND"


@dataclass(frozen=True)
class CallContext:
    source: str
    actor: str
    actor_id: str
    trace_id: str


_CALL_CONTEXT: ContextVar[CallContext | None] = ContextVar("credscope_call_context", default=None)


def _new_trace_id(prefix: str = DEFAULT_TRACE_ID_PREFIX) -> str:
    return f"{prefix}:{uuid.uuid4()}"


class CredscopeService:
    """Wires settings, telemetry, advisor, pipeline, boost coordinator and vault."""

    def __init__(
        self,
        *,
        home: Path,
        dirs: dict[str, Path],
        settings: Settings,
        telemetry: TelemetryLogger,
        advisor: RiskAdvisor,
        vault: CredentialVault,
    ) -> None:
        self.home = home
        self.dirs = dirs
        self.settings = settings
        self.telemetry = telemetry
        self.advisor = advisor
        self.vault = vault
        self.pipeline = AnalysisPipeline(
            advisor,
            trace=TraceLog(settings.trace_capacity),
            delay_scale=settings.trace_delay_scale,
            observer=self._observe,
        )
        self.boost = BoostCoordinator(
            self.pipeline,
            advisor,
            score_ceiling=settings.boost_score_ceiling,
            warmup_seconds=settings.boost_warmup_seconds * settings.trace_delay_scale,
            observer=self._observe,
        )
        self.capture_kind = CaptureKind.TEXT

    @classmethod
    def create(
        cls,
        home: Path | None = None,
        *,
        settings: Settings | None = None,
        advisor: RiskAdvisor | None = None,
    ) -> "CredscopeService":
        """Instantiate a service, initialize local state, and record startup telemetry."""

        home = home or credscope_home()
        dirs = ensure_home_dirs(home)
        settings = settings or load_settings(home)
        telemetry = TelemetryLogger(events_path=dirs["telemetry"] / "events.jsonl")
        advisor = advisor or build_advisor(
            settings.advisor_url,
            api_key=settings.advisor_api_key,
            timeout_seconds=settings.advisor_timeout_seconds,
        )
        vault = CredentialVault(
            JsonFileVaultStore(dirs["state"] / VAULT_FILENAME),
            default_ttl_days=settings.vault_default_ttl_days,
        )
        service = cls(home=home, dirs=dirs, settings=settings, telemetry=telemetry, advisor=advisor, vault=vault)
        service.pipeline.trace.append(STARTUP_TEXT, "success")
        service.telemetry.log_event(
            "engine.started",
            actor="system",
            actor_id="system:credscope",
            source="cli",
            data={
                "home_path_hash": hashlib.sha256(str(home).encode("utf-8")).hexdigest(),
                "advisor": advisor.__class__.__name__,
                "active_entries": len(vault.active()),
                "trashed_entries": len(vault.trashed()),
            },
        )
        return service

    async def close(self) -> None:
        await self.advisor.close()

    # -- attribution -----------------------------------------------------

    def _enter(self, source: str, actor_id: str | None, trace_id: str | None, actor: str = "human") -> Any:
        normalized_source = source if source in {"cli", "api"} else "cli"
        context = CallContext(
            source=normalized_source,
            actor=actor if actor in {"human", "agent", "system"} else "human",
            actor_id=sanitize_actor_id(actor_id or f"{normalized_source}:unknown"),
            trace_id=trace_id or _new_trace_id(normalized_source),
        )
        return _CALL_CONTEXT.set(context)

    def _emit(self, event_type: str, data: dict[str, Any]) -> None:
        context = _CALL_CONTEXT.get()
        if context is None:
            context = CallContext("cli", "system", "system:credscope", _new_trace_id())
        self.telemetry.log_event(
            event_type,
            actor=context.actor,
            actor_id=context.actor_id,
            source=context.source,
            data=data,
            trace_id=context.trace_id,
        )

    def _observe(self, event_type: str, data: dict[str, Any]) -> None:
        self._emit(event_type, data)

    # -- analysis --------------------------------------------------------

    async def analyze(
        self,
        text: str,
        *,
        kind: CaptureKind | str = CaptureKind.TEXT,
        source: str = "cli",
        actor_id: str | None = None,
        trace_id: str | None = None,
    ) -> AnalysisRun:
        token = self._enter(source, actor_id, trace_id)
        try:
            return await self._analyze(text, CaptureKind(kind))
        finally:
            _CALL_CONTEXT.reset(token)

    async def _analyze(self, text: str, kind: CaptureKind, lead: tuple[str, str] | None = None) -> AnalysisRun:
        # Empty input is rejected by the pipeline and leaves any open session alone.
        if text and self.boost.session is not None:
            self.boost.cancel()
        try:
            run = await self.pipeline.run_analysis(text, lead=lead)
        except EmptyInputError:
            self._emit("analysis.rejected", {"reason": "empty_input"})
            raise
        self.capture_kind = kind
        return run

    async def capture(
        self,
        kind: CaptureKind | str,
        *,
        fingerprint: str | None = None,
        samples: list[float] | None = None,
        pixels: list[int] | None = None,
        device_id: str | None = None,
        source: str = "cli",
        actor_id: str | None = None,
        trace_id: str | None = None,
    ) -> AnalysisRun:
        """Reduce a captured signal (or accept a ready fingerprint) and analyse it."""

        capture_kind = CaptureKind(kind)
        if capture_kind is CaptureKind.TEXT:
            raise ValueError("capture requires a voice, retina or bio modality.")
        token = self._enter(source, actor_id, trace_id)
        try:
            if fingerprint is None:
                if capture_kind is CaptureKind.VOICE:
                    fingerprint = voice_fingerprint(samples or [])
                elif capture_kind is CaptureKind.RETINA:
                    if not pixels:
                        raise ValueError("retina capture requires pixel data.")
                    fingerprint = retina_fingerprint(pixels)
                else:
                    fingerprint = bio_fingerprint(device_id=device_id)
            self._emit(
                "capture.encoded",
                {"kind": capture_kind.value, "fingerprint_length": len(fingerprint)},
            )
            return await self._analyze(fingerprint, capture_kind, lead=(CAPTURE_TEXT[capture_kind], "success"))
        finally:
            _CALL_CONTEXT.reset(token)

    def reset(self, *, source: str = "cli", actor_id: str | None = None, trace_id: str | None = None) -> AnalysisRun:
        token = self._enter(source, actor_id, trace_id)
        try:
            if self.boost.session is not None:
                self.boost.cancel()
            run = self.pipeline.reset()
            self.capture_kind = CaptureKind.TEXT
            return run
        finally:
            _CALL_CONTEXT.reset(token)

    # -- boost and sessions ----------------------------------------------

    async def boost_auto(
        self, *, source: str = "cli", actor_id: str | None = None, trace_id: str | None = None
    ) -> AnalysisRun:
        token = self._enter(source, actor_id, trace_id)
        try:
            return await self.boost.boost_auto()
        finally:
            _CALL_CONTEXT.reset(token)

    async def boost_manual(
        self, *, source: str = "cli", actor_id: str | None = None, trace_id: str | None = None
    ) -> MutationSession | None:
        token = self._enter(source, actor_id, trace_id)
        try:
            return await self.boost.boost_manual()
        finally:
            _CALL_CONTEXT.reset(token)

    def _session_op(self, operation: Operation, *, preview: bool) -> MutationSession:
        session = self.boost.require_session()
        if preview:
            session.begin_preview(operation)
            return session
        before = session.buffer
        session.apply(operation)
        self._emit(
            "session.updated",
            {"operation": operation.describe()["kind"], "length_delta": len(session.buffer) - len(before)},
        )
        return session

    def session_state(self) -> dict[str, Any] | None:
        session = self.boost.session
        return session.to_dict() if session is not None else None

    def preview(self, operation: Operation) -> MutationSession:
        return self._session_op(operation, preview=True)

    def end_preview(self) -> MutationSession:
        session = self.boost.require_session()
        session.end_preview()
        return session

    def select(self, start: int, end: int | None = None) -> MutationSession:
        session = self.boost.require_session()
        session.select(start, end)
        return session

    def insert(
        self,
        text: str,
        *,
        selection: Cursor | None = None,
        source: str = "cli",
        actor_id: str | None = None,
        trace_id: str | None = None,
    ) -> MutationSession:
        token = self._enter(source, actor_id, trace_id)
        try:
            return self._session_op(InsertText(text, selection), preview=False)
        finally:
            _CALL_CONTEXT.reset(token)

    def substitute(
        self,
        source_text: str,
        replacement: str,
        *,
        source: str = "cli",
        actor_id: str | None = None,
        trace_id: str | None = None,
    ) -> MutationSession:
        token = self._enter(source, actor_id, trace_id)
        try:
            return self._session_op(SubstituteAll(source_text, replacement), preview=False)
        finally:
            _CALL_CONTEXT.reset(token)

    def edit(self, text: str) -> MutationSession:
        session = self.boost.require_session()
        session.edit(text)
        return session

    async def commit_session(
        self,
        buffer: str | None = None,
        *,
        source: str = "cli",
        actor_id: str | None = None,
        trace_id: str | None = None,
    ) -> AnalysisRun:
        token = self._enter(source, actor_id, trace_id)
        try:
            return await self.boost.commit(buffer)
        finally:
            _CALL_CONTEXT.reset(token)

    def cancel_session(self, *, source: str = "cli", actor_id: str | None = None, trace_id: str | None = None) -> None:
        token = self._enter(source, actor_id, trace_id)
        try:
            self.boost.cancel()
        finally:
            _CALL_CONTEXT.reset(token)

    # -- vault -----------------------------------------------------------

    def save_current(
        self, *, source: str = "cli", actor_id: str | None = None, trace_id: str | None = None
    ) -> dict[str, Any]:
        """Archive the current target; only a completed run can be saved."""

        run = self.pipeline.current
        if run.status is not AnalysisStatus.COMPLETE or not run.target_text:
            raise AnalysisStateError(
                "Only a completed analysis can be saved.",
                hint="Run an analysis first.",
                status=run.status.value,
            )
        token = self._enter(source, actor_id, trace_id)
        try:
            outcome = self.vault.save(run.target_text, run.score, self.capture_kind)
            trace = self.pipeline.trace
            if not outcome.created:
                trace.append(DUPLICATE_TEXT, "warning")
                self._emit("vault.duplicate", {"entry_id": outcome.entry.id})
            else:
                trace.append(ENCRYPTING_TEXT, "info")
                trace.append(ARCHIVED_TEXT.format(kind=self.capture_kind.value.upper()), "success")
                self._emit(
                    "vault.saved",
                    {
                        "entry_id": outcome.entry.id,
                        "capture_kind": outcome.entry.capture_kind.value,
                        "score": outcome.entry.score,
                        "secret_digest": secret_digest(outcome.entry.secret_value),
                    },
                )
            return {"created": outcome.created, "entry": self._entry_view(outcome.entry)}
        finally:
            _CALL_CONTEXT.reset(token)

    def _entry_view(self, entry: CredentialEntry) -> dict[str, Any]:
        payload = entry.to_dict()
        payload["secret_value"] = mask_secret(entry.secret_value)
        payload["secret_length"] = len(entry.secret_value)
        payload["expiry"] = classify_expiry(entry.expires_at, self.vault.today()).to_dict()
        return payload

    def vault_view(self, kind: CaptureKind | str | None = None, *, trashed: bool = False) -> list[dict[str, Any]]:
        entries = self.vault.trashed(kind) if trashed else self.vault.active(kind)
        return [self._entry_view(entry) for entry in entries]

    def _vault_change(
        self,
        entry_id: str,
        changed: bool,
        *,
        event_type: str,
        text: str | None,
        severity: str,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if not changed:
            raise EntryNotFoundError("No matching credential entry.", entry_id=entry_id)
        if text is not None:
            self.pipeline.trace.append(text, severity)
        self._emit(event_type, {"entry_id": entry_id, **(data or {})})
        entry = self.vault.get(entry_id)
        return {"entry_id": entry_id, "entry": self._entry_view(entry) if entry is not None else None}

    def delete_entry(
        self, entry_id: str, *, source: str = "cli", actor_id: str | None = None, trace_id: str | None = None
    ) -> dict[str, Any]:
        token = self._enter(source, actor_id, trace_id)
        try:
            changed = self.vault.delete(entry_id)
            return self._vault_change(
                entry_id, changed, event_type="vault.deleted", text=DELETED_TEXT, severity="warning"
            )
        finally:
            _CALL_CONTEXT.reset(token)

    def restore_entry(
        self, entry_id: str, *, source: str = "cli", actor_id: str | None = None, trace_id: str | None = None
    ) -> dict[str, Any]:
        token = self._enter(source, actor_id, trace_id)
        try:
            changed = self.vault.restore(entry_id)
            return self._vault_change(
                entry_id, changed, event_type="vault.restored", text=RESTORED_TEXT, severity="success"
            )
        finally:
            _CALL_CONTEXT.reset(token)

    def purge_entry(
        self, entry_id: str, *, source: str = "cli", actor_id: str | None = None, trace_id: str | None = None
    ) -> dict[str, Any]:
        token = self._enter(source, actor_id, trace_id)
        try:
            changed = self.vault.purge(entry_id)
            return self._vault_change(entry_id, changed, event_type="vault.purged", text=PURGED_TEXT, severity="error")
        finally:
            _CALL_CONTEXT.reset(token)

    def describe_entry(
        self,
        entry_id: str,
        description: str | None,
        *,
        source: str = "cli",
        actor_id: str | None = None,
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        token = self._enter(source, actor_id, trace_id)
        try:
            changed = self.vault.update_description(entry_id, description)
            return self._vault_change(
                entry_id,
                changed,
                event_type="vault.updated",
                text=None,
                severity="info",
                data={"field": "description"},
            )
        finally:
            _CALL_CONTEXT.reset(token)

    def set_expiry(
        self,
        entry_id: str,
        expires_at: date | str | None,
        *,
        source: str = "cli",
        actor_id: str | None = None,
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        token = self._enter(source, actor_id, trace_id)
        try:
            changed = self.vault.update_expiry(entry_id, expires_at)
            return self._vault_change(
                entry_id,
                changed,
                event_type="vault.updated",
                text=EXPIRY_TEXT,
                severity="info",
                data={"field": "expires_at"},
            )
        finally:
            _CALL_CONTEXT.reset(token)

    def reveal_entry(
        self, entry_id: str, *, source: str = "cli", actor_id: str | None = None, trace_id: str | None = None
    ) -> dict[str, Any]:
        """Return the plaintext of an Active entry and stamp its last access."""

        token = self._enter(source, actor_id, trace_id)
        try:
            entry = self.vault.reveal(entry_id)
            if entry is None:
                raise EntryNotFoundError(
                    "No matching active credential entry.",
                    hint="Trashed entries must be restored before they can be revealed.",
                    entry_id=entry_id,
                )
            self.pipeline.trace.append(REVEALED_TEXT.format(prefix=entry_id[:4]), "info")
            self._emit("vault.revealed", {"entry_id": entry_id})
            return {
                "entry_id": entry.id,
                "secret_value": entry.secret_value,
                "last_accessed_at": entry.last_accessed_at,
            }
        finally:
            _CALL_CONTEXT.reset(token)

    # -- views and telemetry ---------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        run = self.pipeline.current
        return {
            "run": run.to_dict(),
            "target_masked": mask_secret(run.target_text),
            "capture_kind": self.capture_kind.value,
            "trace": self.pipeline.trace.to_list(),
            "boost": self.boost.to_dict(),
            "session": self.session_state(),
        }

    def telemetry_status(self) -> dict[str, Any]:
        return {
            "events_path": str(self.telemetry.events_path),
            "event_count": self.telemetry.count_events(),
            "retention_days": self.settings.telemetry_retention_days,
        }

    def telemetry_purge(
        self,
        older_than: str | None = None,
        *,
        source: str = "cli",
        actor_id: str | None = None,
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        range_value = older_than or f"{self.settings.telemetry_retention_days}d"
        result = self.telemetry.purge_older_than(range_value)
        token = self._enter(source, actor_id, trace_id, actor="system")
        try:
            self._emit("telemetry.purged", {"older_than": range_value, **result})
        finally:
            _CALL_CONTEXT.reset(token)
        return {"older_than": range_value, **result}

    def telemetry_export(self, range_value: str = "7d", out_path: Path | None = None) -> dict[str, Any]:
        return self.telemetry.export_summary(range_value=range_value, out_path=out_path)
