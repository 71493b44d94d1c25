from __future__ import annotations

import base64
from typing import Any

import httpx

from app.core.config import get_settings
from app.core.logging import log_debug, log_error
from app.schemas.zendesk import Target, Ticket, Trigger, ZendeskUser


class ZendeskConfigurationError(RuntimeError):
    """Raised when Zendesk integration settings are incomplete."""


class ZendeskAPIError(RuntimeError):
    """Raised when Zendesk responds with an error or cannot be reached.

    ``transient`` is true for transport failures, throttling and 5xx
    responses; structured error bodies are reported with ``transient=False``.
    """

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
    subdomain = str(settings.zendesk_subdomain or "").strip()
    user = str(settings.zendesk_user or "").strip()
    token = str(settings.zendesk_token or "").strip()
    missing = [
        name
        for name, value in (
            ("ZENDESK_SUBDOMAIN", subdomain),
            ("ZENDESK_USER", user),
            ("ZENDESK_TOKEN", token),
        )
        if not value
    ]
    if missing:
        raise ZendeskConfigurationError(f"Zendesk is not configured: missing {', '.join(missing)}")
    return {
        "base_url": f"https://{subdomain}.zendesk.com/api/v2",
        "user": user,
        "token": token,
    }


def _auth_header(user: str, token: str) -> str:
    credentials = f"{user}/token:{token}".encode("utf-8")
    return "Basic " + base64.b64encode(credentials).decode("ascii")


def _build_client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout)


def _extract_error(data: Any) -> Any:
    if isinstance(data, dict):
        for key in ("error", "errors", "details", "description"):
            if data.get(key):
                return data[key]
    return None


async def _request(
    method: str,
    path: str,
    *,
    params: dict[str, Any] | None = None,
    json: Any | None = None,
) -> Any:
    config = _get_effective_settings()
    url = f"{config['base_url']}/{path.lstrip('/')}"
    headers = {
        "Content-Type": "application/json",
        "Accept": "application/json",
        "Authorization": _auth_header(config["user"], config["token"]),
    }
    log_debug("Calling Zendesk API", url=url, method=method)

    async with _build_client(get_settings().zendesk_timeout) as client:
        try:
            response = await client.request(
                method,
                url,
                headers=headers,
                params=params,
                json=json,
            )
        except httpx.HTTPError as exc:
            log_error("Zendesk API request failed", url=url, error=str(exc))
            raise ZendeskAPIError(str(exc), transient=True) from exc

    try:
        data = response.json() if response.content else None
    except ValueError:
        data = None

    if response.status_code >= 400:
        error = _extract_error(data)
        transient = response.status_code == 429 or response.status_code >= 500
        log_error(
            "Zendesk API responded with error",
            url=url,
            status=response.status_code,
            body=response.text[:500],
        )
        raise ZendeskAPIError(
            f"Zendesk API responded with {response.status_code}",
            status=response.status_code,
            error=error,
            transient=transient,
        )

    if isinstance(data, dict) and data.get("error"):
        error = _extract_error(data)
        log_error("Zendesk API returned an error body", url=url, error=str(error))
        raise ZendeskAPIError(str(error), status=response.status_code, error=error)
    return data


async def list_targets() -> list[Target]:
    data = await _request("GET", "targets.json")
    return [Target.model_validate(item) for item in (data or {}).get("targets") or []]


async def create_target(*, title: str, target_url: str) -> Target:
    data = await _request(
        "POST",
        "targets.json",
        json={
            "target": {
                "type": "url_target_v2",
                "title": title,
                "content_type": "application/json",
                "target_url": target_url,
                "method": "post",
            }
        },
    )
    return Target.model_validate((data or {})["target"])


async def list_triggers() -> list[Trigger]:
    data = await _request("GET", "triggers.json")
    return [Trigger.model_validate(item) for item in (data or {}).get("triggers") or []]


async def create_trigger(trigger: dict[str, Any]) -> Trigger:
    data = await _request("POST", "triggers.json", json={"trigger": trigger})
    return Trigger.model_validate((data or {})["trigger"])


async def show_users_by_external_id(external_id: str) -> list[ZendeskUser]:
    data = await _request("GET", "users/show_many.json", params={"external_ids": external_id})
    return [ZendeskUser.model_validate(item) for item in (data or {}).get("users") or []]


async def create_or_update_user(*, external_id: str, name: str, email: str | None) -> ZendeskUser:
    user: dict[str, Any] = {"external_id": external_id, "name": name}
    if email:
        user["email"] = email
    data = await _request("POST", "users/create_or_update.json", json={"user": user})
    return ZendeskUser.model_validate((data or {})["user"])


async def create_ticket(ticket: dict[str, Any]) -> Ticket:
    data = await _request("POST", "tickets.json", json={"ticket": ticket})
    return Ticket.model_validate((data or {})["ticket"])


async def add_comment(ticket_id: int, *, body: str, author_id: int | None, public: bool = True) -> Ticket | None:
    comment: dict[str, Any] = {"public": public, "body": body}
    if author_id is not None:
        comment["author_id"] = author_id
    data = await _request("PUT", f"tickets/{ticket_id}.json", json={"ticket": {"comment": comment}})
    payload = (data or {}).get("ticket")
    return Ticket.model_validate(payload) if payload else None


async def list_tickets_by_external_id(external_id: str) -> list[Ticket]:
    data = await _request("GET", "tickets.json", params={"external_id": external_id})
    return [Ticket.model_validate(item) for item in (data or {}).get("tickets") or []]

