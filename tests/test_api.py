from __future__ import annotations

import asyncio
import json
from datetime import timedelta
from pathlib import Path

from fastapi.routing import APIRoute
from fastapi.testclient import TestClient

from credscope.api import create_app
from credscope.config import Settings
from credscope.service import CredscopeService
from fakes import ScriptedAdvisor


def _service_and_client(tmp_path: Path) -> tuple[CredscopeService, TestClient]:
    service = CredscopeService.create(
        tmp_path / "home",
        settings=Settings(trace_delay_scale=0.0, boost_warmup_seconds=0.0),
        advisor=ScriptedAdvisor(),
    )
    return service, TestClient(create_app(service))


def _events(tmp_path: Path) -> list[dict]:
    events_path = tmp_path / "home" / "telemetry" / "events.jsonl"
    if not events_path.exists():
        return []
    return [json.loads(line) for line in events_path.read_text(encoding="utf-8").splitlines() if line.strip()]


def test_health_endpoint(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    response = client.get("/v1/health")
    assert response.status_code == 200
    assert response.json()["analysis_status"] == "idle"
    assert response.json()["settings"]["trace_capacity"] == 50
    assert response.json()["settings"]["advisor_api_key"] is None


def test_analysis_returns_snapshot_without_plaintext(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    response = client.post("/v1/analysis", json={"text": "hunter2"})
    assert response.status_code == 200
    payload = response.json()
    assert payload["run"]["status"] == "complete"
    assert payload["run"]["result"]["score"] == 42
    assert ">> VULNERABILITY CONFIRMED: Dictionary Attack" in [line["text"] for line in payload["trace"]]
    assert "hunter2" not in response.text


def test_empty_analysis_is_bad_request(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    response = client.post("/v1/analysis", json={"text": ""})
    assert response.status_code == 400
    assert response.json()["code"] == "EMPTY_INPUT"


def test_boost_without_completed_analysis_conflicts(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    response = client.post("/v1/boost/auto")
    assert response.status_code == 409
    assert response.json()["code"] == "BOOST_UNAVAILABLE"
    assert client.get("/v1/session").status_code == 404


def test_manual_session_routes(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    client.post("/v1/analysis", json={"text": "banana"})

    opened = client.post("/v1/boost/manual")
    assert opened.status_code == 200
    assert opened.json()["session"]["buffer"] == "banana"

    preview = client.post("/v1/session/preview", json={"source": "a", "replacement": "@"})
    assert preview.json()["preview"] == "b@n@n@"
    assert client.post("/v1/session/preview/end").json()["preview"] is None

    assert client.post("/v1/session/select", json={"start": 0, "end": 1}).status_code == 200
    inserted = client.post("/v1/session/insert", json={"text": "B"})
    assert inserted.json()["buffer"] == "Banana"
    substituted = client.post("/v1/session/substitute", json={"source": "a", "replacement": "4"})
    assert substituted.json()["buffer"] == "B4n4n4"
    assert client.post("/v1/session/select", json={"start": 99}).status_code == 400

    committed = client.post("/v1/session/commit", json={})
    assert committed.status_code == 200
    assert committed.json()["session"] is None
    assert committed.json()["run"]["target_length"] == 6
    assert client.post("/v1/session/cancel").status_code == 409


def test_vault_routes(tmp_path: Path) -> None:
    service, client = _service_and_client(tmp_path)
    assert client.post("/v1/vault").status_code == 409

    client.post("/v1/analysis", json={"text": "hunter2"})
    saved = client.post("/v1/vault")
    assert saved.status_code == 200
    entry_id = saved.json()["entry"]["id"]
    assert saved.json()["entry"]["secret_value"] == "•" * 7
    assert client.post("/v1/vault").json()["created"] is False

    listing = client.get("/v1/vault", params={"kind": "text"})
    assert [entry["id"] for entry in listing.json()] == [entry_id]

    expires = (service.vault.today() + timedelta(days=3)).isoformat()
    patched = client.patch(f"/v1/vault/{entry_id}", json={"description": "mail", "expires_at": expires})
    assert patched.status_code == 200
    assert patched.json()["entry"]["description"] == "mail"
    assert patched.json()["entry"]["expiry"]["label"] == "EXPIRING: 3 DAYS"
    assert client.patch(f"/v1/vault/{entry_id}", json={}).status_code == 400

    revealed = client.post(f"/v1/vault/{entry_id}/reveal")
    assert revealed.json()["secret_value"] == "hunter2"

    assert client.post(f"/v1/vault/{entry_id}/delete").status_code == 200
    assert client.get("/v1/vault").json() == []
    assert len(client.get("/v1/vault", params={"trashed": "true"}).json()) == 1
    assert client.post(f"/v1/vault/{entry_id}/reveal").status_code == 404
    assert client.post(f"/v1/vault/{entry_id}/restore").status_code == 200

    client.post(f"/v1/vault/{entry_id}/delete")
    assert client.delete(f"/v1/vault/{entry_id}").status_code == 200
    assert client.delete(f"/v1/vault/{entry_id}").status_code == 404


def test_capture_route_analyses_fingerprint(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    response = client.post("/v1/capture", json={"kind": "voice", "samples": [3, 1, 4, 1, 5]})
    assert response.status_code == 200
    assert response.json()["capture_kind"] == "voice"
    assert response.json()["trace"][0]["text"] == "Audio frequency encoded to hash."
    assert client.post("/v1/capture", json={"kind": "retina"}).status_code == 400


def test_reset_route(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    client.post("/v1/analysis", json={"text": "hunter2"})
    response = client.post("/v1/analysis/reset")
    assert response.status_code == 200
    assert response.json()["run"]["status"] == "idle"
    assert [line["text"] for line in response.json()["trace"]] == ["System reset. Ready."]


def test_trace_id_header_is_echoed_and_attributed(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    response = client.post(
        "/v1/analysis",
        json={"text": "hunter2"},
        headers={"X-Credscope-Trace-Id": "trace-abc", "X-Credscope-Actor-Id": "agent:tester"},
    )
    assert response.headers["X-Credscope-Trace-Id"] == "trace-abc"
    completed = [event for event in _events(tmp_path) if event["event_type"] == "analysis.completed"]
    assert completed[-1]["trace_id"] == "trace-abc"
    assert completed[-1]["source"] == "api"
    assert completed[-1]["actor"]["id"] == "agent:tester"

    generated = client.get("/v1/health")
    assert generated.headers["X-Credscope-Trace-Id"].startswith("api:")


def test_telemetry_status_route(tmp_path: Path) -> None:
    _, client = _service_and_client(tmp_path)
    response = client.get("/v1/telemetry/status")
    assert response.status_code == 200
    assert response.json()["event_count"] >= 1


def test_every_route_runs_on_the_event_loop(tmp_path: Path) -> None:
    service, _ = _service_and_client(tmp_path)
    app = create_app(service)
    routes = [route for route in app.routes if isinstance(route, APIRoute)]
    assert routes
    blocking = [route.path for route in routes if not asyncio.iscoroutinefunction(route.endpoint)]
    assert blocking == []
