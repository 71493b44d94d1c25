from __future__ import annotations

from app.core.config import get_settings
from app.core.logging import log_info
from app.schemas.layer import LayerWebhook
from app.services import layer

LAYER_EVENTS = ["message.sent", "conversation.created"]


class LayerSetupError(RuntimeError):
    """Raised when the Layer webhook cannot be registered."""


def get_webhook_url() -> str:
    settings = get_settings()
    if not settings.server_url:
        raise LayerSetupError("SERVER_URL must be configured to register the Layer webhook")
    return str(settings.server_url).rstrip("/") + settings.layer_path


def _matches(webhook: LayerWebhook, url: str) -> bool:
    return webhook.target_url == url and set(LAYER_EVENTS).issubset(webhook.events)


async def ensure_webhook() -> LayerWebhook:
    """Make sure Layer delivers conversation and message events to this service."""

    settings = get_settings()
    if not settings.layer_webhook_secret:
        raise LayerSetupError("LAYER_WEBHOOK_SECRET must be configured to register the Layer webhook")
    url = get_webhook_url()

    for webhook in await layer.list_webhooks():
        if not _matches(webhook, url):
            continue
        if webhook.status == "inactive":
            await layer.activate_webhook(webhook.id)
            log_info("Re-activated Layer webhook", webhook_id=webhook.id, status=webhook.status)
        return webhook

    webhook = await layer.create_webhook(
        target_url=url,
        events=list(LAYER_EVENTS),
        secret=settings.layer_webhook_secret,
        config={"name": settings.integration_name},
    )
    log_info("Registered Layer webhook", webhook_id=webhook.id, url=url)
    return webhook
