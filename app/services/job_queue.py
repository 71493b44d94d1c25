"""Durable at-least-once job queue backed by Redis.

Webhook receivers call :func:`enqueue` and return immediately; workers
register a coroutine per queue name with :func:`process` and drain due jobs
through :func:`process_pending_jobs`. A handler that raises is retried with
the job's backoff policy until ``max_attempts`` is reached, after which the
job is parked in the failed index and reported through
:func:`app.core.logging.log_job_failure`.
"""
from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from app.core.config import get_settings
from app.core.logging import log_error, log_info, log_job_failure, log_warning
from app.repositories import jobs as jobs_repo
from app.schemas.jobs import Backoff, Job

JobHandler = Callable[[Any], Awaitable[None]]

_MAX_BACKOFF_SECONDS = 3600
_ERROR_LIMIT = 1000

_handlers: dict[str, JobHandler] = {}


class PermanentJobError(RuntimeError):
    """Raised by a handler when retrying the job cannot succeed."""


def _truncate(value: str | None, *, limit: int = _ERROR_LIMIT) -> str | None:
    if value is None:
        return None
    if len(value) <= limit:
        return value
    return value[: limit - 3] + "..."


def default_backoff() -> Backoff:
    settings = get_settings()
    return Backoff(type=settings.job_backoff_type, delay_seconds=settings.job_backoff_seconds)


def process(queue_name: str, handler: JobHandler) -> None:
    """Register ``handler`` as the consumer for ``queue_name``."""

    _handlers[queue_name] = handler


def registered_queues() -> list[str]:
    return sorted(_handlers)


def clear_handlers() -> None:
    _handlers.clear()


async def enqueue(
    queue_name: str,
    payload: Any,
    *,
    max_attempts: int | None = None,
    backoff: Backoff | None = None,
) -> Job:
    settings = get_settings()
    job = await jobs_repo.create_job(
        queue=queue_name,
        payload=payload,
        max_attempts=max_attempts if max_attempts is not None else settings.job_max_attempts,
        backoff=backoff or default_backoff(),
    )
    log_info("Job enqueued", job_id=job.id, queue=queue_name)
    return job


async def process_pending_jobs(limit: int | None = None) -> int:
    """Run every due job this worker has a handler for. Returns the number attempted."""

    if not _handlers:
        return 0
    batch_size = limit or get_settings().job_batch_size
    jobs = await jobs_repo.claim_due_jobs(limit=batch_size, queues=_handlers.keys())
    for job in jobs:
        try:
            await _attempt_job(job)
        except Exception as exc:  # pragma: no cover - defensive logging
            log_error("Failed to process job", job_id=job.id, queue=job.queue, error=str(exc))
    return len(jobs)


async def fail_stalled_jobs(*, timeout_seconds: int | None = None) -> int:
    """Return jobs stuck ``in_progress`` to the retry path.

    A job stays ``in_progress`` past the timeout only when the worker running
    it died, so the lost attempt is counted as a failure.
    """

    timeout = timeout_seconds if timeout_seconds is not None else get_settings().job_stall_timeout_seconds
    jobs = await jobs_repo.list_stalled_jobs(timeout_seconds=timeout)
    if not jobs:
        return 0

    for job in jobs:
        await _record_failure(job, f"Job timed out after {timeout} seconds")
    log_info("Recovered stalled jobs", count=len(jobs))
    return len(jobs)


async def force_retry(job_id: int) -> Job | None:
    job = await jobs_repo.force_retry(job_id)
    if job:
        log_info("Job requeued by operator", job_id=job_id, queue=job.queue)
    return job


async def list_failed_jobs(limit: int = 100) -> list[Job]:
    return await jobs_repo.list_failed_jobs(limit=limit)


async def get_job(job_id: int) -> Job | None:
    return await jobs_repo.get_job(job_id)


async def purge_completed_jobs(*, retention: timedelta = timedelta(hours=24)) -> int:
    if retention.total_seconds() <= 0:
        return 0
    cutoff = datetime.now(timezone.utc) - retention
    deleted = await jobs_repo.delete_succeeded_before(cutoff)
    if deleted:
        log_info("Purged completed jobs", count=deleted)
    return deleted


async def _attempt_job(job: Job) -> None:
    handler = _handlers.get(job.queue)
    if handler is None:
        await _record_failure(job, f"No handler registered for queue {job.queue}")
        return
    attempt = job.attempt_count + 1
    log_info("Running job", job_id=job.id, queue=job.queue, attempt=attempt)
    try:
        await handler(job.payload)
    except PermanentJobError as exc:
        await _record_failure(job, str(exc) or exc.__class__.__name__, permanent=True)
        return
    except Exception as exc:
        await _record_failure(job, str(exc) or exc.__class__.__name__)
        return
    await jobs_repo.mark_job_completed(job, attempt_number=attempt)
    log_info("Job completed", job_id=job.id, queue=job.queue, attempt=attempt)


async def _record_failure(job: Job, error: str, *, permanent: bool = False) -> None:
    attempt = job.attempt_count + 1
    error_message = _truncate(error)
    if permanent or attempt >= job.max_attempts:
        await jobs_repo.mark_job_failed(job, attempt_number=attempt, error_message=error_message)
        log_job_failure(
            job.queue,
            job.id,
            attempts=attempt,
            error=error_message,
            permanent=permanent,
        )
        return

    next_attempt = _calculate_next_attempt(job.backoff, attempt)
    await jobs_repo.schedule_retry(
        job,
        attempt_number=attempt,
        next_attempt_at=next_attempt,
        error_message=error_message,
    )
    log_warning(
        "Job scheduled for retry",
        job_id=job.id,
        queue=job.queue,
        attempt=attempt,
        next_attempt=next_attempt.isoformat(),
        reason=error_message,
    )


def _calculate_next_attempt(backoff: Backoff, attempt: int) -> datetime:
    if backoff.type == "fixed":
        delay = backoff.delay_seconds
    else:
        delay = backoff.delay_seconds * (2 ** (attempt - 1))
    delay = min(delay, _MAX_BACKOFF_SECONDS)
    return datetime.now(timezone.utc) + timedelta(seconds=delay)
