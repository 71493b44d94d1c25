from __future__ import annotations

from app.core.config import get_settings
from app.schemas.layer import Conversation
from app.services.redis import get_redis_client


def pending_key(conversation_id: str) -> str:
    return f"{get_settings().pending_key_prefix}{conversation_id}"


async def save_conversation(conversation: Conversation) -> None:
    """Record a conversation that still needs a ticket for its first message.

    No expiry is set; the entry lives until the first message is ticketed.
    """

    client = get_redis_client()
    await client.set(pending_key(conversation.id), conversation.model_dump_json())


async def get_conversation(conversation_id: str) -> Conversation | None:
    client = get_redis_client()
    raw = await client.get(pending_key(conversation_id))
    if raw is None:
        return None
    return Conversation.model_validate_json(raw)


async def delete_conversation(conversation_id: str) -> None:
    client = get_redis_client()
    await client.delete(pending_key(conversation_id))
