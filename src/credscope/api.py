from __future__ import annotations

"""HTTP API surface for local-first credential analysis and vault operations."""

from datetime import date
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .errors import AnalysisStateError, BoostUnavailableError, CredscopeError, SessionClosedError
from .mutation import Cursor, InsertText, SubstituteAll
from .service import CredscopeService, EntryNotFoundError
from .telemetry import sanitize_actor_id
from .vault import CaptureKind

CONFLICT_ERRORS = (BoostUnavailableError, AnalysisStateError, SessionClosedError)


class AnalyzeRequest(BaseModel):
    """Payload for `/v1/analysis`; an empty text is rejected with `EMPTY_INPUT`."""

    text: str = ""
    kind: CaptureKind = CaptureKind.TEXT
    actor_id: str | None = Field(default=None, max_length=200)


class CaptureRequest(BaseModel):
    """A ready fingerprint, or the raw samples it is reduced from."""

    kind: CaptureKind
    fingerprint: str | None = Field(default=None, max_length=512)
    samples: list[float] | None = None
    pixels: list[int] | None = None
    device_id: str | None = Field(default=None, max_length=200)
    actor_id: str | None = Field(default=None, max_length=200)


class OperationRequest(BaseModel):
    """One mutation: an insertion (`text`) or a substitution (`source` and `replacement`)."""

    text: str | None = None
    source: str | None = None
    replacement: str | None = None
    start: int | None = Field(default=None, ge=0)
    end: int | None = Field(default=None, ge=0)
    actor_id: str | None = Field(default=None, max_length=200)


class SelectRequest(BaseModel):
    start: int = Field(ge=0)
    end: int | None = Field(default=None, ge=0)


class EditRequest(BaseModel):
    text: str


class CommitRequest(BaseModel):
    buffer: str | None = None
    actor_id: str | None = Field(default=None, max_length=200)


class EntryUpdateRequest(BaseModel):
    """Partial update; only the fields present in the body are applied."""

    description: str | None = Field(default=None, max_length=500)
    expires_at: date | None = None
    actor_id: str | None = Field(default=None, max_length=200)


class ActorRequest(BaseModel):
    actor_id: str | None = Field(default=None, max_length=200)


def _operation(request: OperationRequest) -> InsertText | SubstituteAll:
    if request.source is not None:
        if request.replacement is None:
            raise ValueError("substitution requires a replacement.")
        return SubstituteAll(request.source, request.replacement)
    if request.text is None:
        raise ValueError("operation requires either text or source/replacement.")
    selection = None
    if request.start is not None:
        selection = Cursor(request.start, request.end if request.end is not None else request.start)
    return InsertText(request.text, selection)


def _error_response(exc: Exception) -> JSONResponse:
    if isinstance(exc, EntryNotFoundError):
        return JSONResponse(status_code=404, content=exc.to_dict())
    if isinstance(exc, CONFLICT_ERRORS):
        return JSONResponse(status_code=409, content=exc.to_dict())
    if isinstance(exc, CredscopeError):
        return JSONResponse(status_code=400, content=exc.to_dict())
    raise HTTPException(status_code=400, detail=str(exc)) from exc


def create_app(service: CredscopeService) -> FastAPI:
    """Create API routes backed by `CredscopeService` with actor/source attribution."""

    app = FastAPI(title="credscope API", version="0.1")

    @app.middleware("http")
    async def trace_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
        incoming = (request.headers.get("x-credscope-trace-id") or "").strip()
        trace_id = sanitize_actor_id(incoming) if incoming else f"api:{uuid4()}"
        if not trace_id or trace_id in {"unknown", "[redacted]"}:
            trace_id = f"api:{uuid4()}"
        request.state.trace_id = trace_id
        try:
            response = await call_next(request)
        except Exception as exc:  # noqa: BLE001
            service.telemetry.log_event(
                "risk.flagged",
                actor="system",
                actor_id="api:unknown",
                source="api",
                trace_id=trace_id,
                data={
                    "reason": "api_internal_error",
                    "endpoint": request.url.path,
                    "error_type": exc.__class__.__name__,
                },
            )
            response = JSONResponse(
                status_code=500,
                content={
                    "code": "INTERNAL_SERVER_ERROR",
                    "message": "Internal server error",
                    "trace_id": trace_id,
                },
            )
        response.headers["X-Credscope-Trace-Id"] = trace_id
        return response

    def request_context(request: Request, body_actor_id: str | None = None) -> dict[str, str]:
        """Resolve `source`, `actor_id` and `trace_id` keyword arguments with header precedence."""

        header_actor_id = (request.headers.get("x-credscope-actor-id") or "").strip()
        actor_id = header_actor_id or (body_actor_id or "").strip() or "api:unknown"
        trace_id = getattr(request.state, "trace_id", None)
        if not isinstance(trace_id, str) or not trace_id:
            trace_id = f"api:{uuid4()}"
        return {"source": "api", "actor_id": actor_id, "trace_id": trace_id}

    # Routes are coroutines so service state is only touched from the event loop thread.
    @app.get("/v1/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "version": "0.1",
            "advisor": service.advisor.__class__.__name__,
            "analysis_status": service.pipeline.status.value,
            "settings": service.settings.to_dict(),
        }

    @app.get("/v1/analysis")
    async def get_analysis() -> dict[str, Any]:
        return service.snapshot()

    @app.post("/v1/analysis")
    async def run_analysis(request: AnalyzeRequest, http_request: Request) -> Any:
        try:
            await service.analyze(request.text, kind=request.kind, **request_context(http_request, request.actor_id))
        except ValueError as exc:
            return _error_response(exc)
        return service.snapshot()

    @app.post("/v1/analysis/reset")
    async def reset_analysis(http_request: Request, request: ActorRequest | None = None) -> Any:
        try:
            service.reset(**request_context(http_request, request.actor_id if request else None))
        except ValueError as exc:
            return _error_response(exc)
        return service.snapshot()

    @app.post("/v1/capture")
    async def capture(request: CaptureRequest, http_request: Request) -> Any:
        try:
            await service.capture(
                request.kind,
                fingerprint=request.fingerprint,
                samples=request.samples,
                pixels=request.pixels,
                device_id=request.device_id,
                **request_context(http_request, request.actor_id),
            )
        except ValueError as exc:
            return _error_response(exc)
        return service.snapshot()

    @app.post("/v1/boost/auto")
    async def boost_auto(http_request: Request, request: ActorRequest | None = None) -> Any:
        try:
            await service.boost_auto(**request_context(http_request, request.actor_id if request else None))
        except ValueError as exc:
            return _error_response(exc)
        return service.snapshot()

    @app.post("/v1/boost/manual")
    async def boost_manual(http_request: Request, request: ActorRequest | None = None) -> Any:
        try:
            await service.boost_manual(**request_context(http_request, request.actor_id if request else None))
        except ValueError as exc:
            return _error_response(exc)
        return service.snapshot()

    @app.get("/v1/session")
    async def get_session() -> Any:
        state = service.session_state()
        if state is None:
            raise HTTPException(status_code=404, detail="No manual session is open.")
        return state

    @app.post("/v1/session/preview")
    async def preview(request: OperationRequest) -> Any:
        try:
            return service.preview(_operation(request)).to_dict()
        except ValueError as exc:
            return _error_response(exc)

    @app.post("/v1/session/preview/end")
    async def end_preview() -> Any:
        try:
            return service.end_preview().to_dict()
        except ValueError as exc:
            return _error_response(exc)

    @app.post("/v1/session/select")
    async def select(request: SelectRequest) -> Any:
        try:
            return service.select(request.start, request.end).to_dict()
        except ValueError as exc:
            return _error_response(exc)

    @app.post("/v1/session/insert")
    async def insert(request: OperationRequest, http_request: Request) -> Any:
        try:
            operation = _operation(request)
            if not isinstance(operation, InsertText):
                raise ValueError("insert requires text.")
            return service.insert(
                operation.text,
                selection=operation.selection,
                **request_context(http_request, request.actor_id),
            ).to_dict()
        except ValueError as exc:
            return _error_response(exc)

    @app.post("/v1/session/substitute")
    async def substitute(request: OperationRequest, http_request: Request) -> Any:
        try:
            operation = _operation(request)
            if not isinstance(operation, SubstituteAll):
                raise ValueError("substitute requires source and replacement.")
            return service.substitute(
                operation.source,
                operation.replacement,
                **request_context(http_request, request.actor_id),
            ).to_dict()
        except ValueError as exc:
            return _error_response(exc)

    @app.post("/v1/session/edit")
    async def edit(request: EditRequest) -> Any:
        try:
            return service.edit(request.text).to_dict()
        except ValueError as exc:
            return _error_response(exc)

    @app.post("/v1/session/commit")
    async def commit(http_request: Request, request: CommitRequest | None = None) -> Any:
        body = request or CommitRequest()
        try:
            await service.commit_session(body.buffer, **request_context(http_request, body.actor_id))
        except ValueError as exc:
            return _error_response(exc)
        return service.snapshot()

    @app.post("/v1/session/cancel")
    async def cancel(http_request: Request, request: ActorRequest | None = None) -> Any:
        try:
            service.cancel_session(**request_context(http_request, request.actor_id if request else None))
        except ValueError as exc:
            return _error_response(exc)
        return service.snapshot()

    @app.get("/v1/vault")
    async def list_vault(
        kind: CaptureKind | None = None,
        trashed: bool = Query(default=False),
    ) -> list[dict[str, Any]]:
        return service.vault_view(kind, trashed=trashed)

    @app.post("/v1/vault")
    async def save_current(http_request: Request, request: ActorRequest | None = None) -> Any:
        try:
            return service.save_current(**request_context(http_request, request.actor_id if request else None))
        except ValueError as exc:
            return _error_response(exc)

    @app.post("/v1/vault/{entry_id}/delete")
    async def delete_entry(entry_id: str, http_request: Request) -> Any:
        try:
            return service.delete_entry(entry_id, **request_context(http_request))
        except ValueError as exc:
            return _error_response(exc)

    @app.post("/v1/vault/{entry_id}/restore")
    async def restore_entry(entry_id: str, http_request: Request) -> Any:
        try:
            return service.restore_entry(entry_id, **request_context(http_request))
        except ValueError as exc:
            return _error_response(exc)

    @app.post("/v1/vault/{entry_id}/reveal")
    async def reveal_entry(entry_id: str, http_request: Request) -> Any:
        try:
            return service.reveal_entry(entry_id, **request_context(http_request))
        except ValueError as exc:
            return _error_response(exc)

    @app.delete("/v1/vault/{entry_id}")
    async def purge_entry(entry_id: str, http_request: Request) -> Any:
        try:
            return service.purge_entry(entry_id, **request_context(http_request))
        except ValueError as exc:
            return _error_response(exc)

    @app.patch("/v1/vault/{entry_id}")
    async def update_entry(entry_id: str, request: EntryUpdateRequest, http_request: Request) -> Any:
        context = request_context(http_request, request.actor_id)
        fields = request.model_fields_set - {"actor_id"}
        if not fields:
            raise HTTPException(status_code=400, detail="Provide description and/or expires_at.")
        try:
            result: dict[str, Any] = {}
            if "description" in fields:
                result = service.describe_entry(entry_id, request.description, **context)
            if "expires_at" in fields:
                result = service.set_expiry(entry_id, request.expires_at, **context)
            return result
        except ValueError as exc:
            return _error_response(exc)

    @app.get("/v1/telemetry/status")
    async def telemetry_status() -> dict[str, Any]:
        return service.telemetry_status()

    return app
