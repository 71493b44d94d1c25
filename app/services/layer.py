from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx

from app.core.config import get_settings
from app.core.logging import log_debug, log_error
from app.schemas.layer import PLAIN_TEXT, LayerWebhook

_PLATFORM_ACCEPT = "application/vnd.layer+json; version=1.1"
_WEBHOOKS_ACCEPT = "application/vnd.layer.webhooks+json; version=1.0"


class LayerConfigurationError(RuntimeError):
    """Raised when Layer integration settings are incomplete."""


class LayerAPIError(RuntimeError):
    """Raised when the Layer Platform API responds with an error or cannot be reached."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        error: Any = None,
        transient: bool = False,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.error = error
        self.transient = transient


def _get_effective_settings() -> dict[str, str]:
    settings = get_settings()
    app_id = str(settings.layer_app_id or "").strip()
    token = str(settings.layer_bearer_token or "").strip()
    if not app_id or not token:
        raise LayerConfigurationError("LAYER_APP_ID and LAYER_BEARER_TOKEN must be configured")
    base = settings.layer_api_url.rstrip("/")
    return {"base_url": f"{base}/apps/{resource_uuid(app_id)}", "token": token}


def resource_uuid(identifier: str) -> str:
    """Return the trailing UUID of a Layer ID such as ``layer:///conversations/<uuid>``."""

    return str(identifier).rstrip("/").rsplit("/", 1)[-1]


def _build_client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout)


async def _request(
    method: str,
    path: str,
    *,
    json: Any | None = None,
    accept: str = _PLATFORM_ACCEPT,
    timeout: float = 15.0,
) -> Any:
    config = _get_effective_settings()
    url = f"{config['base_url']}/{path.lstrip('/')}"
    headers = {
        "Accept": accept,
        "Content-Type": "application/json",
        "Authorization": f"Bearer {config['token']}",
    }
    log_debug("Calling Layer API", url=url, method=method)

    async with _build_client(timeout) as client:
        try:
            response = await client.request(method, url, headers=headers, json=json)
        except httpx.HTTPError as exc:
            log_error("Layer API request failed", url=url, error=str(exc))
            raise LayerAPIError(str(exc), transient=True) from exc

    try:
        data = response.json() if response.content else None
    except ValueError:
        data = None

    if response.status_code >= 400:
        log_error(
            "Layer API responded with error",
            url=url,
            status=response.status_code,
            body=response.text[:500],
        )
        error = (data.get("message") or data.get("code")) if isinstance(data, dict) else None
        raise LayerAPIError(
            f"Layer API responded with {response.status_code}",
            status=response.status_code,
            error=error,
            transient=response.status_code == 429 or response.status_code >= 500,
        )
    return data


async def send_text_from_name(conversation_id: str, sender_name: str, text: str) -> dict[str, Any]:
    """Post a plain-text message into a conversation on behalf of a named, non-user sender."""

    body = {
        "sender": {"name": sender_name},
        "parts": [{"body": text, "mime_type": PLAIN_TEXT}],
        "notification": {"text": f"{sender_name}: {text}"[:140]},
    }
    data = await _request(
        "POST",
        f"conversations/{quote(resource_uuid(conversation_id), safe='')}/messages",
        json=body,
    )
    return data or {}


async def get_identity(user_id: str) -> dict[str, Any] | None:
    try:
        data = await _request("GET", f"users/{quote(user_id, safe='')}/identity")
    except LayerAPIError as exc:
        if exc.status == httpx.codes.NOT_FOUND:
            return None
        raise
    return data or None


async def list_webhooks() -> list[LayerWebhook]:
    data = await _request("GET", "webhooks", accept=_WEBHOOKS_ACCEPT)
    return [LayerWebhook.model_validate(item) for item in data or []]


async def create_webhook(
    *,
    target_url: str,
    events: list[str],
    secret: str,
    config: dict[str, Any] | None = None,
) -> LayerWebhook:
    data = await _request(
        "POST",
        "webhooks",
        json={
            "version": "1.0",
            "target_url": target_url,
            "events": events,
            "secret": secret,
            "config": config or {},
        },
        accept=_WEBHOOKS_ACCEPT,
    )
    return LayerWebhook.model_validate(data)


async def activate_webhook(webhook_id: str) -> None:
    await _request(
        "POST",
        f"webhooks/{quote(resource_uuid(webhook_id), safe='')}/activate",
        accept=_WEBHOOKS_ACCEPT,
    )
