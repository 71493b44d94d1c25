from __future__ import annotations

from app.core.logging import log_error, log_info
from app.schemas.zendesk import ZendeskUser
from app.services import zendesk
from app.services.integration import get_hooks


async def fetch_zendesk_user(user_id: str) -> ZendeskUser | None:
    users = await zendesk.show_users_by_external_id(user_id)
    return users[0] if users else None


async def register_user(user_id: str) -> ZendeskUser:
    """Return the Zendesk user for a Layer user, creating it when missing.

    Nothing is cached locally; Zendesk's ``create_or_update`` endpoint keyed
    on the external id keeps repeated registrations idempotent.
    """

    existing = await fetch_zendesk_user(user_id)
    if existing:
        return existing

    try:
        identity = await get_hooks().lookup_identity(user_id)
    except Exception as exc:
        log_error("Identity lookup failed", user_id=user_id, error=str(exc))
        raise

    try:
        user = await zendesk.create_or_update_user(
            external_id=user_id,
            name=identity.name,
            email=identity.email,
        )
    except zendesk.ZendeskAPIError as exc:
        log_error("create_or_update user failed", user_id=user_id, error=str(exc))
        raise
    log_info("Registered Zendesk user", user_id=user_id, zendesk_user_id=user.id)
    return user
