from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from app.core.config import get_settings
from app.schemas.jobs import Backoff, Job, JobStatus
from app.services.redis import get_redis_client


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _score(dt: datetime) -> float:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def _key(*parts: Any) -> str:
    prefix = get_settings().job_queue_prefix
    return ":".join([prefix, *(str(part) for part in parts)])


def _job_key(job_id: int) -> str:
    return _key("job", job_id)


_DUE = "due"
_RUNNING = "running"
_FAILED = "failed"
_SUCCEEDED = "succeeded"

# Moves a job id from the due index to the running index in one step, so a
# claimed job is always visible to the stall monitor.
CLAIM_LUA = """
if redis.call('ZREM', KEYS[1], ARGV[1]) == 1 then
    redis.call('ZADD', KEYS[2], ARGV[2], ARGV[1])
    return 1
end
return 0
"""


async def _save(job: Job) -> Job:
    job.updated_at = _utcnow()
    client = get_redis_client()
    await client.set(_job_key(job.id), job.model_dump_json())
    return job


async def create_job(
    *,
    queue: str,
    payload: Any,
    max_attempts: int,
    backoff: Backoff,
) -> Job:
    client = get_redis_client()
    job_id = int(await client.incr(_key("next_id")))
    now = _utcnow()
    job = Job(
        id=job_id,
        queue=queue,
        payload=payload,
        status=JobStatus.PENDING,
        attempt_count=0,
        max_attempts=max(1, max_attempts),
        backoff=backoff,
        next_attempt_at=now,
        created_at=now,
    )
    await _save(job)
    await client.zadd(_key(_DUE), {str(job_id): _score(now)})
    return job


async def get_job(job_id: int) -> Job | None:
    client = get_redis_client()
    raw = await client.get(_job_key(job_id))
    if raw is None:
        return None
    return Job.model_validate_json(raw)


async def _load_many(ids: Iterable[str]) -> list[Job]:
    jobs: list[Job] = []
    for raw_id in ids:
        job = await get_job(int(raw_id))
        if job is not None:
            jobs.append(job)
    return jobs


async def claim_due_jobs(*, limit: int, queues: Iterable[str] | None = None) -> list[Job]:
    """Claim up to ``limit`` due jobs for this worker.

    A job is claimed by moving it from the due index to the running index in
    a single Lua script, so concurrent workers never run the same attempt
    twice and a claimed job is never outside both indexes. Jobs belonging to
    queues this worker does not handle are left in place.
    """

    client = get_redis_client()
    allowed = set(queues) if queues is not None else None
    now = _utcnow()
    page_size = max(limit * 4, 1)
    # Entries for other queues stay in the due index; skip past them.
    offset = 0
    claimed: list[Job] = []
    while len(claimed) < limit:
        candidates = await client.zrangebyscore(
            _key(_DUE), "-inf", _score(now), start=offset, num=page_size
        )
        if not candidates:
            break
        for raw_id in candidates:
            if len(claimed) >= limit:
                break
            job = await get_job(int(raw_id))
            if job is None:
                await client.zrem(_key(_DUE), raw_id)
                continue
            if allowed is not None and job.queue not in allowed:
                offset += 1
                continue
            moved = await client.eval(
                CLAIM_LUA, 2, _key(_DUE), _key(_RUNNING), str(raw_id), _score(now)
            )
            if not int(moved):
                continue
            job.status = JobStatus.IN_PROGRESS
            job.started_at = now
            await _save(job)
            claimed.append(job)
    return claimed


async def mark_job_completed(job: Job, *, attempt_number: int) -> Job:
    client = get_redis_client()
    job.status = JobStatus.SUCCEEDED
    job.attempt_count = attempt_number
    job.last_error = None
    job.next_attempt_at = None
    await _save(job)
    await client.zrem(_key(_RUNNING), str(job.id))
    await client.zadd(_key(_SUCCEEDED), {str(job.id): _score(_utcnow())})
    return job


async def schedule_retry(
    job: Job,
    *,
    attempt_number: int,
    next_attempt_at: datetime,
    error_message: str | None,
) -> Job:
    client = get_redis_client()
    job.status = JobStatus.PENDING
    job.attempt_count = attempt_number
    job.last_error = error_message
    job.next_attempt_at = next_attempt_at
    job.started_at = None
    await _save(job)
    await client.zrem(_key(_RUNNING), str(job.id))
    await client.zadd(_key(_DUE), {str(job.id): _score(next_attempt_at)})
    return job


async def mark_job_failed(job: Job, *, attempt_number: int, error_message: str | None) -> Job:
    client = get_redis_client()
    job.status = JobStatus.FAILED
    job.attempt_count = attempt_number
    job.last_error = error_message
    job.next_attempt_at = None
    await _save(job)
    await client.zrem(_key(_RUNNING), str(job.id))
    await client.zrem(_key(_DUE), str(job.id))
    await client.zadd(_key(_FAILED), {str(job.id): _score(_utcnow())})
    return job


async def list_failed_jobs(*, limit: int = 100) -> list[Job]:
    client = get_redis_client()
    ids = await client.zrangebyscore(_key(_FAILED), "-inf", "+inf", start=0, num=limit)
    return await _load_many(ids)


async def list_stalled_jobs(*, timeout_seconds: int) -> list[Job]:
    client = get_redis_client()
    cutoff = _score(_utcnow()) - timeout_seconds
    ids = await client.zrangebyscore(_key(_RUNNING), "-inf", cutoff)
    return await _load_many(ids)


async def force_retry(job_id: int) -> Job | None:
    job = await get_job(job_id)
    if job is None:
        return None
    client = get_redis_client()
    now = _utcnow()
    job.status = JobStatus.PENDING
    job.attempt_count = 0
    job.next_attempt_at = now
    job.started_at = None
    await _save(job)
    await client.zrem(_key(_FAILED), str(job.id))
    await client.zrem(_key(_RUNNING), str(job.id))
    await client.zadd(_key(_DUE), {str(job.id): _score(now)})
    return job


async def delete_succeeded_before(cutoff: datetime) -> int:
    client = get_redis_client()
    ids = await client.zrangebyscore(_key(_SUCCEEDED), "-inf", _score(cutoff))
    for raw_id in ids:
        await client.delete(_job_key(int(raw_id)))
        await client.zrem(_key(_SUCCEEDED), raw_id)
    return len(ids)
