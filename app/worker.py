"""Standalone queue worker.

Runs the job handlers without serving HTTP so webhook receipt and processing
can be scaled separately::

    python -m app.worker
"""
from __future__ import annotations

import asyncio
import signal

from app.core.config import get_settings
from app.core.logging import configure_logging, log_info
from app.services import dispatcher
from app.services.redis import close_redis_client
from app.services.scheduler import scheduler_service


async def run() -> None:
    settings = get_settings()
    dispatcher.register_handlers()
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:  # pragma: no cover - Windows event loops
            pass

    await scheduler_service.start()
    log_info("Worker started", integration=settings.integration_name)
    try:
        await stop_event.wait()
    finally:
        await scheduler_service.stop()
        await close_redis_client()
        log_info("Worker stopped")


def main() -> None:
    configure_logging()
    asyncio.run(run())


if __name__ == "__main__":
    main()
