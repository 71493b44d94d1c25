"""Ensure Zendesk calls back into this service when agents comment on tickets.

Zendesk needs two resources: a URL *target* pointing at the comment
receiver, and a *trigger* that notifies that target whenever a public comment
is added to a ticket carrying the integration tag. Both are discovered before
being created so repeated startups reuse the existing pair.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from app.core.config import get_settings
from app.core.logging import log_error, log_info
from app.schemas.zendesk import Target, Trigger
from app.services import redis as redis_service
from app.services import zendesk

TARGET_TITLE = "Zendesk to Layer Hook"
TRIGGER_TITLE = "Zendesk to Layer Hook"
# Zendesk's via id for updates made through the API; skipping them keeps
# comments this bridge posts from being echoed back into Layer.
API_VIA_ID = 5
_SETUP_LOCK = "zendesk-hooks-setup"

NOTIFICATION_TEMPLATE = json.dumps(
    {
        "id": "{{ticket.id}}",
        "external_id": "{{ticket.external_id}}",
        "sender": "{{current_user.name}}",
        "comment": "{{ticket.latest_public_comment}}",
    },
    indent=4,
)


class ZendeskSetupError(RuntimeError):
    """Raised when the Zendesk target/trigger pair cannot be ensured."""


@dataclass
class Subscription:
    target: Target
    trigger: Trigger


def get_target_url() -> str:
    """Return the URL Zendesk should post comment notifications to.

    When ``ZENDESK_PORT`` is set the callback listener runs without TLS on
    that port, so the scheme becomes ``http`` and the port is swapped in.
    """

    settings = get_settings()
    if not settings.server_url:
        raise ZendeskSetupError("SERVER_URL must be configured to register the Zendesk target")
    url = str(settings.server_url).rstrip("/")
    if settings.zendesk_port:
        parts = urlsplit(url)
        host = re.sub(r":\d+$", "", parts.netloc)
        url = urlunsplit(("http", f"{host}:{settings.zendesk_port}", parts.path.rstrip("/"), "", ""))
    return url + settings.zendesk_path


async def get_target() -> Target | None:
    url = get_target_url()
    for target in await zendesk.list_targets():
        if target.title == TARGET_TITLE and target.target_url == url:
            return target
    return None


async def create_target() -> Target:
    target = await zendesk.create_target(title=TARGET_TITLE, target_url=get_target_url())
    log_info("Created Zendesk target", target_id=target.id, url=target.target_url)
    return target


async def get_trigger(target: Target) -> Trigger | None:
    for trigger in await zendesk.list_triggers():
        if trigger.notifies_target(target.id):
            return trigger
    return None


def build_trigger(target: Target) -> dict[str, Any]:
    return {
        "title": TRIGGER_TITLE,
        "conditions": {
            "all": [
                {"field": "update_type", "operator": "is", "value": "Change"},
                {
                    "field": "current_tags",
                    "operator": "includes",
                    "value": get_settings().zendesk_ticket_tag,
                },
                {"field": "comment_is_public", "operator": "is", "value": "true"},
                {"field": "current_via_id", "operator": "is_not", "value": API_VIA_ID},
            ],
        },
        "actions": [
            {
                "field": "notification_target",
                "value": [target.id, NOTIFICATION_TEMPLATE],
            }
        ],
    }


async def create_trigger(target: Target) -> Trigger:
    trigger = await zendesk.create_trigger(build_trigger(target))
    log_info("Created Zendesk trigger", trigger_id=trigger.id, target_id=target.id)
    return trigger


async def ensure_target() -> Target:
    target = await get_target()
    if target:
        return target
    return await create_target()


async def ensure_trigger(target: Target) -> Trigger:
    trigger = await get_trigger(target)
    if trigger:
        return trigger
    return await create_trigger(target)


async def ensure_subscription() -> Subscription:
    """Discover or create the target and trigger.

    Not transactional on the Zendesk side; a Redis lock keeps replicas that
    start together from creating duplicate pairs.
    """

    token = await redis_service.acquire_lock(_SETUP_LOCK, ttl_seconds=120)
    if not token:
        raise ZendeskSetupError("Zendesk hook setup already running on another worker")
    try:
        target = await ensure_target()
        trigger = await ensure_trigger(target)
    except Exception as exc:
        log_error("Failed to set up Zendesk trigger; please fix and retry", error=str(exc))
        raise
    finally:
        await redis_service.release_lock(_SETUP_LOCK, token)
    log_info("Zendesk target and trigger are ready", target_id=target.id, trigger_id=trigger.id)
    return Subscription(target=target, trigger=trigger)
