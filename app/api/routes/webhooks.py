"""Inbound webhook receivers for Layer and Zendesk.

Both endpoints decode the delivery, hand it to the job queue and acknowledge
immediately; processing outcome is never reflected back to the sender.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from app.core.config import get_settings
from app.core.logging import log_error, log_info, log_warning
from app.services import dispatcher

SIGNATURE_HEADER = "layer-webhook-signature"

_settings = get_settings()
layer_router = APIRouter(tags=["Layer Webhooks"])
zendesk_router = APIRouter(tags=["Zendesk Webhooks"])


def verify_layer_signature(payload: bytes, signature: str | None, secret: str) -> bool:
    """Layer signs each delivery with a hex HMAC-SHA1 of the raw body."""

    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode("utf-8"), payload, hashlib.sha1).hexdigest()
    return hmac.compare_digest(signature.strip().lower(), expected.lower())


def _decode_json(body: bytes) -> Any:
    try:
        # Zendesk substitutes comment text verbatim, so raw newlines may appear in strings.
        return json.loads(body.decode("utf-8"), strict=False)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid JSON payload: {exc}",
        ) from exc


@layer_router.get(_settings.layer_path, response_class=PlainTextResponse)
async def layer_verification(verification_challenge: str | None = None) -> str:
    """Echo Layer's verification challenge when the webhook is first registered."""

    if not verification_challenge:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing verification_challenge")
    log_info("Answered Layer webhook verification challenge")
    return verification_challenge


@layer_router.post(_settings.layer_path)
async def receive_layer_event(request: Request) -> dict[str, str]:
    body = await request.body()
    secret = get_settings().layer_webhook_secret
    if secret:
        if not verify_layer_signature(body, request.headers.get(SIGNATURE_HEADER), secret):
            log_warning("Rejected Layer webhook with invalid signature")
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid signature")
    else:
        log_warning("LAYER_WEBHOOK_SECRET not set; accepting unsigned Layer webhook")

    payload = _decode_json(body)
    try:
        job = await dispatcher.on_messaging_event(payload)
    except ValidationError as exc:
        log_warning("Rejected malformed webhook payload", path=request.url.path, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Invalid event payload",
        ) from exc
    except Exception as exc:
        log_error("Unable to enqueue Layer event", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Unable to queue event",
        ) from exc
    return {"status": "queued", "job_id": str(job.id)}


@zendesk_router.post(_settings.zendesk_path)
async def receive_zendesk_event(request: Request) -> dict[str, str]:
    payload = _decode_json(await request.body())
    try:
        job = await dispatcher.on_ticketing_event(payload)
    except ValidationError as exc:
        log_warning("Rejected malformed webhook payload", path=request.url.path, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Invalid event payload",
        ) from exc
    except Exception as exc:
        log_error("Unable to enqueue Zendesk comment", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Unable to queue event",
        ) from exc
    return {"status": "queued", "job_id": str(job.id)}
