from __future__ import annotations

from datetime import timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from app.core.config import get_settings
from app.core.logging import log_error, log_info
from app.services import job_queue


class SchedulerService:
    """Periodically drains the job queue and recovers stalled jobs."""

    def __init__(self) -> None:
        settings = get_settings()
        self._scheduler = AsyncIOScheduler(timezone=settings.default_timezone)
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        self._scheduler.start()
        self._started = True
        self._ensure_worker_jobs()
        log_info("Scheduler started", queues=",".join(job_queue.registered_queues()))

    async def stop(self) -> None:
        if not self._started:
            return
        self._scheduler.shutdown(wait=True)
        self._started = False
        log_info("Scheduler stopped")

    def _ensure_worker_jobs(self) -> None:
        if not self._started:
            return
        settings = get_settings()
        if not self._scheduler.get_job("job-queue-worker"):
            self._scheduler.add_job(
                self._run_job_queue,
                "interval",
                seconds=max(1, settings.job_poll_seconds),
                id="job-queue-worker",
                replace_existing=True,
                coalesce=True,
                max_instances=1,
            )
        if not self._scheduler.get_job("job-stall-monitor"):
            self._scheduler.add_job(
                self._run_stall_monitor,
                "interval",
                seconds=60,
                id="job-stall-monitor",
                replace_existing=True,
                coalesce=True,
                max_instances=1,
            )
        if not self._scheduler.get_job("job-cleanup"):
            self._scheduler.add_job(
                self._run_job_cleanup,
                "interval",
                hours=1,
                id="job-cleanup",
                replace_existing=True,
                coalesce=True,
                max_instances=1,
            )

    async def _run_job_queue(self) -> None:
        try:
            # Keep draining while full batches come back so bursts clear quickly.
            batch_size = get_settings().job_batch_size
            while await job_queue.process_pending_jobs(limit=batch_size) >= batch_size:
                pass
        except Exception as exc:  # pragma: no cover - defensive logging
            log_error("Job queue worker failed", error=str(exc))

    async def _run_stall_monitor(self) -> None:
        try:
            await job_queue.fail_stalled_jobs()
        except Exception as exc:  # pragma: no cover - defensive logging
            log_error("Stalled job recovery failed", error=str(exc))

    async def _run_job_cleanup(self) -> None:
        retention = timedelta(hours=get_settings().job_retention_hours)
        try:
            await job_queue.purge_completed_jobs(retention=retention)
        except Exception as exc:  # pragma: no cover - defensive logging
            log_error("Job cleanup failed", error=str(exc))


scheduler_service = SchedulerService()
