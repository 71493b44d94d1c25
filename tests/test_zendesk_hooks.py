from __future__ import annotations

from typing import Any

import pytest

from app.core.config import get_settings
from app.schemas.zendesk import Target, Trigger
from app.services import redis as redis_service
from app.services import zendesk, zendesk_hooks


class FakeZendeskAdmin:
    def __init__(self) -> None:
        self.targets: list[Target] = []
        self.triggers: list[Trigger] = []
        self.created_targets = 0
        self.created_triggers = 0

    async def list_targets(self) -> list[Target]:
        return list(self.targets)

    async def create_target(self, *, title: str, target_url: str) -> Target:
        self.created_targets += 1
        target = Target(id=500 + len(self.targets), title=title, target_url=target_url, type="url_target_v2")
        self.targets.append(target)
        return target

    async def list_triggers(self) -> list[Trigger]:
        return list(self.triggers)

    async def create_trigger(self, trigger: dict[str, Any]) -> Trigger:
        self.created_triggers += 1
        created = Trigger.model_validate({"id": 900 + len(self.triggers), **trigger})
        self.triggers.append(created)
        return created


@pytest.fixture
def admin(monkeypatch):
    fake = FakeZendeskAdmin()
    for name in ("list_targets", "create_target", "list_triggers", "create_trigger"):
        monkeypatch.setattr(zendesk, name, getattr(fake, name))
    return fake


def test_target_url_uses_server_url_and_path():
    assert zendesk_hooks.get_target_url() == "https://bridge.example.com:8443/zendesk-server-event"


def test_target_url_switches_to_plain_http_listener(monkeypatch):
    monkeypatch.setattr(get_settings(), "zendesk_port", 8080)

    assert zendesk_hooks.get_target_url() == "http://bridge.example.com:8080/zendesk-server-event"


def test_trigger_only_fires_for_tagged_public_non_api_comments():
    trigger = zendesk_hooks.build_trigger(Target(id=7, title=zendesk_hooks.TARGET_TITLE))

    conditions = trigger["conditions"]["all"]
    assert {"field": "current_tags", "operator": "includes", "value": "layer-conversation"} in conditions
    assert {"field": "comment_is_public", "operator": "is", "value": "true"} in conditions
    assert {"field": "current_via_id", "operator": "is_not", "value": 5} in conditions
    target_id, template = trigger["actions"][0]["value"]
    assert target_id == 7
    assert "{{ticket.external_id}}" in template
    assert "{{ticket.latest_public_comment}}" in template


@pytest.mark.asyncio
async def test_subscription_is_created_when_missing(admin):
    subscription = await zendesk_hooks.ensure_subscription()

    assert admin.created_targets == 1
    assert admin.created_triggers == 1
    assert subscription.target.target_url == zendesk_hooks.get_target_url()
    assert subscription.trigger.notifies_target(subscription.target.id)


@pytest.mark.asyncio
async def test_existing_target_and_trigger_are_reused(admin):
    await zendesk_hooks.ensure_subscription()

    again = await zendesk_hooks.ensure_subscription()

    assert admin.created_targets == 1
    assert admin.created_triggers == 1
    assert again.target.id == admin.targets[0].id
    assert again.trigger.id == admin.triggers[0].id


@pytest.mark.asyncio
async def test_trigger_is_added_for_existing_target(admin):
    await admin.create_target(title=zendesk_hooks.TARGET_TITLE, target_url=zendesk_hooks.get_target_url())
    admin.created_targets = 0

    await zendesk_hooks.ensure_subscription()

    assert admin.created_targets == 0
    assert admin.created_triggers == 1


@pytest.mark.asyncio
async def test_setup_refuses_to_run_while_locked(admin):
    assert await redis_service.acquire_lock("zendesk-hooks-setup")

    with pytest.raises(zendesk_hooks.ZendeskSetupError):
        await zendesk_hooks.ensure_subscription()

    assert admin.created_targets == 0


@pytest.mark.asyncio
async def test_setup_releases_lock_after_failure(admin, fake_redis, monkeypatch):
    async def broken_list_targets():
        raise zendesk.ZendeskAPIError("Zendesk API responded with 401", status=401)

    monkeypatch.setattr(zendesk, "list_targets", broken_list_targets)

    with pytest.raises(zendesk.ZendeskAPIError):
        await zendesk_hooks.ensure_subscription()

    assert "lock:zendesk-hooks-setup" not in fake_redis.values


@pytest.mark.asyncio
async def test_lock_is_only_released_by_its_owner(fake_redis):
    token = await redis_service.acquire_lock("zendesk-hooks-setup", ttl_seconds=120)
    assert token
    assert await redis_service.acquire_lock("zendesk-hooks-setup") is None

    assert await redis_service.release_lock("zendesk-hooks-setup", "stale-token") is False
    assert fake_redis.values["lock:zendesk-hooks-setup"] == token

    assert await redis_service.release_lock("zendesk-hooks-setup", token) is True
    assert "lock:zendesk-hooks-setup" not in fake_redis.values


@pytest.mark.asyncio
async def test_setup_keeps_lock_taken_over_by_another_replica(admin, fake_redis, monkeypatch):
    async def slow_list_targets():
        # The TTL ran out mid-setup and another replica took the lock.
        fake_redis.values["lock:zendesk-hooks-setup"] = "other-replica"
        return []

    monkeypatch.setattr(zendesk, "list_targets", slow_list_targets)

    await zendesk_hooks.ensure_subscription()

    assert fake_redis.values["lock:zendesk-hooks-setup"] == "other-replica"
