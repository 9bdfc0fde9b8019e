from __future__ import annotations

import json
import sys
from pathlib import Path

from credscope import cli
from credscope.config import Settings
from credscope.service import CredscopeService
from fakes import ScriptedAdvisor


class _DummyService:
    def __init__(self) -> None:
        self.trace_id: str | None = None
        self.source: str | None = None

    def delete_entry(self, entry_id: str, *, source: str, actor_id: str, trace_id: str | None) -> dict:
        self.trace_id = trace_id
        self.source = source
        return {"entry_id": entry_id, "entry": None}


def _use_home(monkeypatch, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    def factory() -> CredscopeService:
        return CredscopeService.create(
            tmp_path / "home",
            settings=Settings(trace_delay_scale=0.0, boost_warmup_seconds=0.0),
            advisor=ScriptedAdvisor(),
        )

    monkeypatch.setattr(cli, "_service", factory)


def _run(monkeypatch, capsys, *argv: str) -> tuple[int, object]:  # type: ignore[no-untyped-def]
    monkeypatch.setattr(sys, "argv", ["credscope", *argv])
    result = cli.main()
    return result, json.loads(capsys.readouterr().out)


def test_cli_generates_trace_id_for_vault_changes(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    service = _DummyService()
    monkeypatch.setattr(cli, "_service", lambda: service)
    monkeypatch.setattr(sys, "argv", ["cli.py", "vault", "delete", "abcd-1234"])
    result = cli.main()
    assert result == 0
    assert service.source == "cli"
    assert isinstance(service.trace_id, str)
    assert service.trace_id.startswith("cli:")


def test_cli_analyze_and_save_then_list(monkeypatch, capsys, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    _use_home(monkeypatch, tmp_path)
    code, payload = _run(monkeypatch, capsys, "analyze", "hunter2", "--save")
    assert code == 0
    assert payload["run"]["status"] == "complete"
    assert payload["saved"]["created"] is True
    entry_id = payload["saved"]["entry"]["id"]

    code, listing = _run(monkeypatch, capsys, "vault", "list")
    assert code == 0
    assert [entry["id"] for entry in listing] == [entry_id]
    assert listing[0]["secret_value"] == "•" * 7


def test_cli_manual_boost_applies_mutations(monkeypatch, capsys, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    _use_home(monkeypatch, tmp_path)
    code, payload = _run(monkeypatch, capsys, "boost", "banana", "--manual", "--insert", "!", "--sub", "a=@")
    assert code == 0
    assert payload["run"]["target_length"] == len("b@n@n@!")
    texts = [line["text"] for line in payload["trace"]]
    assert "Manual configuration committed." in texts


def test_cli_fingerprint_voice(monkeypatch, capsys, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    _use_home(monkeypatch, tmp_path)
    code, payload = _run(monkeypatch, capsys, "fingerprint", "voice", "--samples", "3,1,4,1,5", "--save")
    assert code == 0
    assert payload["capture_kind"] == "voice"
    assert payload["saved"]["entry"]["capture_kind"] == "voice"


def test_cli_reports_structured_errors(monkeypatch, capsys, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    _use_home(monkeypatch, tmp_path)
    code, payload = _run(monkeypatch, capsys, "vault", "reveal", "missing")
    assert code == 1
    assert payload["error"]["code"] == "ENTRY_NOT_FOUND"

    code, payload = _run(monkeypatch, capsys, "analyze", "")
    assert code == 1
    assert payload["error"]["code"] == "EMPTY_INPUT"


def test_cli_telemetry_status_and_export(monkeypatch, capsys, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    _use_home(monkeypatch, tmp_path)
    _run(monkeypatch, capsys, "analyze", "hunter2")
    code, status = _run(monkeypatch, capsys, "telemetry", "status")
    assert code == 0
    assert status["event_count"] > 0

    out_path = tmp_path / "summary.json"
    code, summary = _run(monkeypatch, capsys, "telemetry", "export", "--range", "24h", "--out", str(out_path))
    assert code == 0
    assert summary["analyses_completed"] == 1
    assert out_path.exists()
