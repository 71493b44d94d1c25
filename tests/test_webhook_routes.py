from __future__ import annotations

import asyncio
import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.schemas.jobs import JobStatus
from app.services import dispatcher, job_queue


@pytest.fixture
def client():
    return TestClient(app)


def _sign(body: bytes, secret: str = "test-secret") -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha1).hexdigest()


def _conversation_created() -> bytes:
    return json.dumps(
        {
            "event": {"type": "conversation.created"},
            "conversation": {"id": "layer:///conversations/C1", "participants": ["U1"]},
        }
    ).encode("utf-8")


def test_signed_layer_event_is_queued(client):
    body = _conversation_created()

    response = client.post(
        "/zendesk-integration-event",
        content=body,
        headers={"layer-webhook-signature": _sign(body), "Content-Type": "application/json"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "queued"
    job = asyncio.run(job_queue.get_job(int(data["job_id"])))
    assert job.queue == "Test Integration"
    assert job.status == JobStatus.PENDING
    assert job.payload["conversation"]["id"] == "layer:///conversations/C1"


def test_layer_event_with_bad_signature_is_rejected(client):
    body = _conversation_created()

    response = client.post(
        "/zendesk-integration-event",
        content=body,
        headers={"layer-webhook-signature": _sign(body, "wrong-secret")},
    )

    assert response.status_code == 403


def test_layer_event_without_signature_is_rejected(client):
    response = client.post("/zendesk-integration-event", content=_conversation_created())

    assert response.status_code == 403


def test_layer_verification_challenge_is_echoed(client):
    response = client.get("/zendesk-integration-event", params={"verification_challenge": "abc123"})

    assert response.status_code == 200
    assert response.text == "abc123"


def test_layer_verification_without_challenge_is_rejected(client):
    response = client.get("/zendesk-integration-event")

    assert response.status_code == 400


def test_layer_message_without_message_body_is_unprocessable(client):
    body = json.dumps({"type": "message.sent"}).encode("utf-8")

    response = client.post(
        "/zendesk-integration-event",
        content=body,
        headers={"layer-webhook-signature": _sign(body)},
    )

    assert response.status_code == 422


def test_zendesk_comment_is_queued(client):
    # Zendesk inserts comment text verbatim, so the body can carry raw newlines.
    body = b'{"id": "42", "external_id": "C1", "sender": "Agent", "comment": "line one\nline two"}'

    response = client.post("/zendesk-server-event", content=body)

    assert response.status_code == 200
    job = asyncio.run(job_queue.get_job(int(response.json()["job_id"])))
    assert job.queue == "Test Integration new zendesk comment"
    assert job.payload == {
        "ticket_id": "42",
        "external_id": "C1",
        "sender": "Agent",
        "comment": "line one\nline two",
    }


def test_malformed_zendesk_body_returns_bad_request(client):
    response = client.post("/zendesk-server-event", content=b"{not json")

    assert response.status_code == 400


def test_enqueue_failure_asks_sender_to_retry(client, monkeypatch):
    async def broken_enqueue(payload):
        raise ConnectionError("redis down")

    monkeypatch.setattr(dispatcher, "on_ticketing_event", broken_enqueue)

    response = client.post(
        "/zendesk-server-event",
        content=json.dumps({"id": 1, "external_id": "C1", "sender": "Agent", "comment": "hi"}),
    )

    assert response.status_code == 503


def test_health_reports_ok(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
