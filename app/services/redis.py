"""Redis client utilities."""
from __future__ import annotations

import secrets

from redis.asyncio import Redis
from redis.asyncio.connection import ConnectionPool

from app.core.config import get_settings
from app.core.logging import log_info, log_warning


__all__ = ["get_redis_client", "set_redis_client", "close_redis_client", "acquire_lock", "release_lock"]


_redis_pool: ConnectionPool | None = None
_redis_client: Redis | None = None

RELEASE_LOCK_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


class RedisUnavailableError(RuntimeError):
    """Raised when the key-value store cannot be configured."""


def get_redis_client() -> Redis:
    """Return the shared Redis client used for pending conversations and jobs."""

    global _redis_client, _redis_pool
    if _redis_client is not None:
        return _redis_client

    settings = get_settings()
    redis_url = settings.redis_url
    if not redis_url:
        raise RedisUnavailableError("REDIS_URL is not configured")

    try:
        _redis_pool = ConnectionPool.from_url(redis_url, decode_responses=True)
        _redis_client = Redis(connection_pool=_redis_pool)
    except Exception as exc:
        log_warning("Unable to configure Redis client", error=str(exc))
        _redis_pool = None
        _redis_client = None
        raise RedisUnavailableError(str(exc)) from exc

    return _redis_client


def set_redis_client(client: Redis | None) -> None:
    """Replace the shared client; used by tests and by embedding applications."""

    global _redis_client, _redis_pool
    _redis_client = client
    _redis_pool = None


async def close_redis_client() -> None:
    """Close the shared Redis client and release the connection pool."""

    global _redis_client, _redis_pool
    client = _redis_client
    pool = _redis_pool
    _redis_client = None
    _redis_pool = None

    if client is not None:
        try:
            await client.aclose()
        except Exception:  # pragma: no cover - defensive cleanup
            pass

    if pool is not None:
        try:
            await pool.disconnect()
        except Exception:  # pragma: no cover - defensive cleanup
            pass


async def acquire_lock(name: str, *, ttl_seconds: int = 60) -> str | None:
    """Take a best-effort distributed lock shared by every replica.

    Returns the owner token to pass to :func:`release_lock`, or ``None`` when
    another worker holds the lock.
    """

    client = get_redis_client()
    token = secrets.token_hex(16)
    acquired = await client.set(f"lock:{name}", token, nx=True, ex=ttl_seconds)
    if not acquired:
        log_info("Lock held by another worker", lock=name)
        return None
    return token


async def release_lock(name: str, token: str) -> bool:
    """Release ``name`` only if ``token`` still owns it."""

    client = get_redis_client()
    released = await client.eval(RELEASE_LOCK_LUA, 1, f"lock:{name}", token)
    if not int(released):
        log_warning("Lock expired before release", lock=name)
    return bool(int(released))
