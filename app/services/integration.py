"""Pluggable behaviour for the integration instance.

``use_conversation`` decides, when a conversation is created, whether it
should ever get a Zendesk ticket. It is evaluated once; later changes to the
conversation do not re-run it. ``identities`` resolves the profile used to
register a Layer user in Zendesk. Both may be plain functions or coroutines.
"""
from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Union

from app.schemas.layer import Conversation, LayerIdentity
from app.services import layer as layer_client

ConversationFilter = Callable[[Conversation], Union[bool, Awaitable[bool]]]
IdentityLookup = Callable[[str], Union[LayerIdentity, Awaitable[LayerIdentity]]]


class IdentityLookupError(RuntimeError):
    """Raised when no profile can be found for a Layer user."""


def accept_all_conversations(conversation: Conversation) -> bool:
    return True


def identity_from_layer(payload: dict[str, Any]) -> LayerIdentity:
    return LayerIdentity(
        name=payload.get("display_name"),
        avatar_url=payload.get("avatar_url"),
        first_name=payload.get("first_name"),
        last_name=payload.get("last_name"),
        email=payload.get("email_address"),
        phone=payload.get("phone_number"),
        metadata=payload.get("metadata") or {},
    )


async def lookup_layer_identity(user_id: str) -> LayerIdentity:
    payload = await layer_client.get_identity(user_id)
    if not payload:
        raise IdentityLookupError(f"Layer has no identity for user {user_id}")
    return identity_from_layer(payload)


@dataclass
class IntegrationHooks:
    use_conversation: ConversationFilter = field(default=accept_all_conversations)
    identities: IdentityLookup = field(default=lookup_layer_identity)

    async def should_use(self, conversation: Conversation) -> bool:
        return bool(await _resolve(self.use_conversation(conversation)))

    async def lookup_identity(self, user_id: str) -> LayerIdentity:
        result = await _resolve(self.identities(user_id))
        if isinstance(result, dict):
            result = LayerIdentity.model_validate(result)
        if result is None:
            raise IdentityLookupError(f"Identity lookup returned nothing for user {user_id}")
        if not result.name:
            raise IdentityLookupError(f"Identity for user {user_id} has no name")
        return result


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


_hooks = IntegrationHooks()


def get_hooks() -> IntegrationHooks:
    return _hooks


def configure_hooks(
    *,
    use_conversation: ConversationFilter | None = None,
    identities: IdentityLookup | None = None,
) -> IntegrationHooks:
    """Install custom callables; omitted arguments fall back to the defaults."""

    global _hooks
    _hooks = IntegrationHooks(
        use_conversation=use_conversation or accept_all_conversations,
        identities=identities or lookup_layer_identity,
    )
    return _hooks
