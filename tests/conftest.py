import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("INTEGRATION_NAME", "Test Integration")
os.environ.setdefault("SERVER_URL", "https://bridge.example.com:8443")
os.environ.setdefault("ZENDESK_SUBDOMAIN", "acme")
os.environ.setdefault("ZENDESK_USER", "agent@example.com")
os.environ.setdefault("ZENDESK_TOKEN", "zendesk-token")
os.environ.setdefault("LAYER_APP_ID", "layer:///apps/staging/11111111-2222-3333-4444-555555555555")
os.environ.setdefault("LAYER_BEARER_TOKEN", "layer-token")
os.environ.setdefault("LAYER_WEBHOOK_SECRET", "test-secret")
os.environ.setdefault("ADMIN_API_KEY", "admin-key")
os.environ.setdefault("SETUP_HOOKS_ON_STARTUP", "false")
os.environ.setdefault("RUN_WORKER_IN_APP", "false")

from app.repositories import jobs as jobs_repo  # noqa: E402
from app.services import job_queue  # noqa: E402
from app.services import redis as redis_service  # noqa: E402
from app.services.integration import configure_hooks  # noqa: E402


def _score(value) -> float:
    if value in ("-inf", b"-inf"):
        return float("-inf")
    if value in ("+inf", "inf", b"+inf"):
        return float("inf")
    return float(value)


class InMemoryRedis:
    """Minimal async stand-in for the subset of Redis commands the bridge uses."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.sorted_sets: dict[str, dict[str, float]] = {}

    async def get(self, key):
        return self.values.get(key)

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.values:
            return None
        self.values[key] = value
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.values.pop(key, None) is not None:
                removed += 1
            if self.sorted_sets.pop(key, None) is not None:
                removed += 1
        return removed

    async def incr(self, key):
        value = int(self.values.get(key, 0)) + 1
        self.values[key] = str(value)
        return value

    async def zadd(self, key, mapping):
        members = self.sorted_sets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in members)
        members.update({member: float(score) for member, score in mapping.items()})
        return added

    async def zrem(self, key, *members):
        current = self.sorted_sets.get(key, {})
        removed = 0
        for member in members:
            if current.pop(member, None) is not None:
                removed += 1
        return removed

    async def zrangebyscore(self, key, min, max, start=None, num=None):
        low, high = _score(min), _score(max)
        items = sorted(
            (score, member)
            for member, score in self.sorted_sets.get(key, {}).items()
            if low <= score <= high
        )
        members = [member for _, member in items]
        if start is not None and num is not None:
            members = members[start : start + num]
        return members

    async def eval(self, script, numkeys, *keys_and_args):
        keys = list(keys_and_args[:numkeys])
        args = list(keys_and_args[numkeys:])
        if script == jobs_repo.CLAIM_LUA:
            due, running = keys
            member, score = args
            if not await self.zrem(due, member):
                return 0
            await self.zadd(running, {member: score})
            return 1
        if script == redis_service.RELEASE_LOCK_LUA:
            (key,) = keys
            (token,) = args
            if self.values.get(key) != token:
                return 0
            return await self.delete(key)
        raise NotImplementedError("script not supported by the in-memory double")

    async def aclose(self):
        return None


@pytest.fixture(autouse=True)
def fake_redis():
    client = InMemoryRedis()
    redis_service.set_redis_client(client)
    yield client
    redis_service.set_redis_client(None)


@pytest.fixture(autouse=True)
def reset_integration_state():
    job_queue.clear_handlers()
    configure_hooks()
    yield
    job_queue.clear_handlers()
    configure_hooks()
