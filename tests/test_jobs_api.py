from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from app.core.config import get_settings
from app.main import app
from app.services import job_queue

HEADERS = {"x-api-key": "admin-key"}


@pytest.fixture
def client():
    return TestClient(app)


def _failed_job():
    async def handler(payload):
        raise job_queue.PermanentJobError("bad payload")

    async def run():
        job_queue.process("sync", handler)
        job = await job_queue.enqueue("sync", {"value": 1})
        await job_queue.process_pending_jobs()
        return job

    return asyncio.run(run())


@pytest.fixture(autouse=True)
def quiet_failures(monkeypatch):
    monkeypatch.setattr(job_queue, "log_job_failure", lambda *args, **kwargs: None)


def test_missing_api_key_is_unauthorised(client):
    assert client.get("/api/jobs/failed").status_code == 401


def test_wrong_api_key_is_forbidden(client):
    assert client.get("/api/jobs/failed", headers={"x-api-key": "nope"}).status_code == 403


def test_endpoints_hidden_without_configured_key(client, monkeypatch):
    monkeypatch.setattr(get_settings(), "admin_api_key", None)

    assert client.get("/api/jobs/failed", headers=HEADERS).status_code == 404


def test_failed_jobs_are_listed(client):
    job = _failed_job()

    response = client.get("/api/jobs/failed", headers=HEADERS)

    assert response.status_code == 200
    data = response.json()
    assert [item["id"] for item in data] == [job.id]
    assert data[0]["status"] == "failed"
    assert data[0]["last_error"] == "bad payload"


def test_failed_job_can_be_retried(client):
    job = _failed_job()

    response = client.post(f"/api/jobs/{job.id}/retry", headers=HEADERS)

    assert response.status_code == 200
    assert response.json()["status"] == "pending"
    assert client.get("/api/jobs/failed", headers=HEADERS).json() == []


def test_unknown_job_returns_not_found(client):
    assert client.get("/api/jobs/404", headers=HEADERS).status_code == 404
    assert client.post("/api/jobs/404/retry", headers=HEADERS).status_code == 404
