"""
tests/test_api.py — Tests for the manual ingestion trigger API.

The pipeline run is replaced with an AsyncMock; the engine dependency is
overridden with the in-memory SQLite engine.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from mgnrega_api.app import create_app
from mgnrega_pipeline.pipelines.ingestion import IngestionRunResult, RunState
from mgnrega_shared.db import get_engine


@pytest.fixture
def client(engine):
    app = create_app()
    app.dependency_overrides[get_engine] = lambda: engine
    with TestClient(app) as c:
        yield c


def _result(state: RunState = RunState.DONE, **kwargs) -> IngestionRunResult:
    return IngestionRunResult(mode=kwargs.pop("mode", "incremental"), state=state, **kwargs)


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_request_id_header(client):
    resp = client.get("/health", headers={"X-Request-ID": "abc123"})
    assert resp.headers["X-Request-ID"] == "abc123"


def test_run_ingestion_success(client, engine):
    run = AsyncMock(return_value=_result(rows_inserted=12))
    with patch("mgnrega_api.routers.ingestion.run_ingestion", run):
        resp = client.post("/api/run-ingestion")

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert "completed" in body["message"]
    assert body["summary"]["rows_inserted"] == 12
    run.assert_awaited_once_with("incremental", engine=engine)


def test_run_ingestion_full_mode(client, engine):
    run = AsyncMock(return_value=_result(mode="full"))
    with patch("mgnrega_api.routers.ingestion.run_ingestion", run):
        resp = client.post("/api/run-ingestion", params={"mode": "full"})

    assert resp.status_code == 200
    run.assert_awaited_once_with("full", engine=engine)


def test_run_ingestion_exception_returns_500(client):
    run = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("db down")))
    with patch("mgnrega_api.routers.ingestion.run_ingestion", run):
        resp = client.post("/api/run-ingestion")

    assert resp.status_code == 500
    body = resp.json()
    assert body["success"] is False
    assert "db down" in body["error"]


def test_run_ingestion_abort_returns_500(client):
    run = AsyncMock(return_value=_result(RunState.ABORT, last_error="ConnectError: refused"))
    with patch("mgnrega_api.routers.ingestion.run_ingestion", run):
        resp = client.post("/api/run-ingestion")

    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "ConnectError: refused"}


def test_invalid_mode_rejected(client):
    resp = client.post("/api/run-ingestion", params={"mode": "weekly"})
    assert resp.status_code == 422
