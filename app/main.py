from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from fastapi import FastAPI

from app.api.routes import jobs as jobs_api
from app.api.routes import webhooks
from app.core.config import get_settings
from app.core.logging import configure_logging, log_error, log_info
from app.services import dispatcher, layer_hooks, zendesk_hooks
from app.services.redis import close_redis_client
from app.services.scheduler import scheduler_service

configure_logging()
settings = get_settings()

tags_metadata = [
    {
        "name": "Layer Webhooks",
        "description": "Conversation and message events delivered by Layer.",
    },
    {
        "name": "Zendesk Webhooks",
        "description": "Public agent comments delivered by the Zendesk target.",
    },
    {
        "name": "Jobs",
        "description": "Operator view of failed synchronisation jobs.",
    },
]

app = FastAPI(
    title=settings.integration_name,
    description="Synchronises Layer conversations with Zendesk tickets.",
    openapi_tags=tags_metadata,
)
app.include_router(webhooks.layer_router)
if not settings.zendesk_port:
    app.include_router(webhooks.zendesk_router)
app.include_router(jobs_api.router)

# Zendesk cannot reach self-signed TLS endpoints; with ZENDESK_PORT set the
# comment receiver is served by this app on a separate plain-HTTP listener,
# e.g. ``uvicorn app.main:zendesk_app --port $ZENDESK_PORT``.
zendesk_app = FastAPI(title=f"{settings.integration_name} (Zendesk callbacks)")
zendesk_app.include_router(webhooks.zendesk_router)


async def setup_remote_hooks() -> None:
    """Register both platforms' callbacks, logging failures without aborting startup."""

    startup_tasks = [
        ("zendesk_subscription", zendesk_hooks.ensure_subscription()),
        ("layer_webhook", layer_hooks.ensure_webhook()),
    ]
    results = await asyncio.gather(*(task for _, task in startup_tasks), return_exceptions=True)
    for (name, _), result in zip(startup_tasks, results):
        if isinstance(result, Exception):
            log_error("Webhook setup failed; please fix and retry", task=name, error=str(result))
        else:
            log_info("Webhook setup complete", task=name)


@app.on_event("startup")
async def on_startup() -> None:
    dispatcher.register_handlers()
    if settings.setup_hooks_on_startup:
        await setup_remote_hooks()
    if settings.run_worker_in_app:
        await scheduler_service.start()
    log_info("Application started", environment=settings.environment)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await scheduler_service.stop()
    await close_redis_client()
    log_info("Application shutdown")


@app.get("/health")
async def health_check():
    return {
        "status": "ok",
        "worker": scheduler_service.running,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@zendesk_app.get("/health")
async def zendesk_health_check():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
