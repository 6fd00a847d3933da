"""Tests for the operations API."""
import asyncio
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from leaflet_ingest.api import main as api
from leaflet_ingest.config import config
from leaflet_ingest.jobs.report import ChainReport, RunReport


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(config, "API_KEY", None)
    api.app.state.latest_report = None
    return TestClient(api.app)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_latest_run_404_before_any_run(client):
    assert client.get("/runs/latest").status_code == 404


def test_start_run_schedules_background_task(client, monkeypatch):
    calls = []

    async def fake_execute(run_id, chains, dry_run):
        calls.append((run_id, chains, dry_run))
        report = RunReport(
            run_id=run_id,
            started_at=datetime(2025, 6, 20, tzinfo=timezone.utc),
            chains=[ChainReport(chain=key, found=1, upserted=1) for key in chains],
        )
        api.app.state.latest_report = report

    monkeypatch.setattr(api, "execute_run", fake_execute)
    response = client.post("/runs", json={"chains": ["spar", "lidl"], "dry_run": True})

    assert response.status_code == 202
    body = response.json()
    assert body["chains"] == ["spar", "lidl"]
    assert calls == [(body["run_id"], ["spar", "lidl"], True)]

    latest = client.get("/runs/latest").json()
    assert latest["run_id"] == body["run_id"]
    assert latest["ok"] is True


def test_start_run_unknown_chain(client):
    response = client.post("/runs", json={"chains": ["konzum"], "dry_run": True})
    assert response.status_code == 400
    assert "konzum" in response.json()["detail"]


def test_start_run_requires_supabase_unless_dry_run(client, monkeypatch):
    monkeypatch.setattr(config, "SUPABASE_URL", None)
    response = client.post("/runs", json={"dry_run": False})
    assert response.status_code == 400


def test_api_key_enforced(client, monkeypatch):
    monkeypatch.setattr(config, "API_KEY", "secret")
    assert client.get("/runs/latest").status_code == 403
    assert client.get("/runs/latest", headers={"X-API-KEY": "secret"}).status_code == 404
    assert client.get("/health").status_code == 200


def test_failed_sink_open_is_logged_as_failed_run(client, monkeypatch, caplog):
    """Test a sink that cannot open ends the run with a logged failure."""
    class BrokenSink:
        closed = False

        async def open(self):
            raise ValueError("Supabase configuration missing")

        async def close(self):
            BrokenSink.closed = True

    monkeypatch.setattr(api, "build_sink", lambda kind: BrokenSink())
    caplog.set_level("ERROR")
    asyncio.run(api.execute_run("run-x", ["spar"], dry_run=False))

    assert "Run run-x failed: Supabase configuration missing" in caplog.text
    assert BrokenSink.closed is True
    assert api.app.state.latest_report is None
