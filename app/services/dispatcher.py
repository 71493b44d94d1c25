"""Route webhook events from both platforms through the job queue.

Receivers only validate and enqueue; the handlers registered here run on the
queue worker and drive each conversation through its lifecycle::

    NonExistent --conversation.created--> Pending --first message--> Ticketed

A conversation is *pending* while a Redis entry exists for it. The entry is
written when the conversation is created and accepted by the integration's
filter, and removed once its first message produced a ticket. Later messages
find no entry and are appended to the ticket as comments.
"""
from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from app.core.config import get_settings
from app.core.logging import log_debug, log_error, log_info
from app.repositories import pending_conversations as pending_repo
from app.schemas.jobs import Job
from app.schemas.layer import Conversation, LayerEvent, Message
from app.schemas.zendesk import ZendeskCommentEvent
from app.services import job_queue, layer, tickets
from app.services.integration import get_hooks


async def on_messaging_event(event: LayerEvent | dict[str, Any]) -> Job:
    if not isinstance(event, LayerEvent):
        event = LayerEvent.model_validate(event)
    settings = get_settings()
    return await job_queue.enqueue(
        settings.integration_name,
        event.model_dump(mode="json", exclude_none=True),
    )


async def on_ticketing_event(payload: ZendeskCommentEvent | dict[str, Any]) -> Job:
    if not isinstance(payload, ZendeskCommentEvent):
        payload = ZendeskCommentEvent.model_validate(payload)
    settings = get_settings()
    return await job_queue.enqueue(
        settings.comment_queue_name,
        payload.model_dump(mode="json"),
    )


async def handle_layer_job(payload: dict[str, Any]) -> None:
    try:
        event = LayerEvent.model_validate(payload)
    except ValidationError as exc:
        raise job_queue.PermanentJobError(f"Invalid Layer event payload: {exc}") from exc

    if event.type == "conversation.created" and event.conversation is not None:
        await handle_conversation_created(event.conversation)
    elif event.type == "message.sent" and event.message is not None:
        await handle_message_sent(event.message)
    else:
        log_debug("Ignoring Layer event", type=event.type)


async def handle_conversation_created(conversation: Conversation) -> None:
    if not await get_hooks().should_use(conversation):
        log_info("Conversation excluded from Zendesk", conversation_id=conversation.id)
        return
    await pending_repo.save_conversation(conversation)
    log_info("Conversation awaiting first message", conversation_id=conversation.id)


async def handle_message_sent(message: Message) -> None:
    conversation_id = message.conversation_id
    if not message.sender.user_id:
        # Messages posted by the bridge itself only carry a sender name.
        log_debug("Ignoring message without sender user_id", message_id=message.id, conversation_id=conversation_id)
        return
    try:
        conversation = await pending_repo.get_conversation(conversation_id)
    except Exception as exc:
        log_error("Failed to read conversation from Redis", conversation_id=conversation_id, error=str(exc))
        raise

    if conversation is not None:
        await tickets.create_ticket(message, conversation)
        await pending_repo.delete_conversation(conversation_id)
        return

    try:
        ticket = await tickets.fetch_ticket_for_conversation(conversation_id)
    except Exception as exc:
        log_error("Fetch ticket for comment failed", conversation_id=conversation_id, error=str(exc))
        raise
    if ticket is None:
        log_debug("No ticket for conversation", conversation_id=conversation_id)
        return
    await tickets.create_comment(ticket, message)


async def handle_zendesk_comment(payload: dict[str, Any]) -> None:
    try:
        event = ZendeskCommentEvent.model_validate(payload)
    except ValidationError as exc:
        raise job_queue.PermanentJobError(f"Invalid Zendesk comment payload: {exc}") from exc
    log_info(
        "New Zendesk comment received",
        ticket_id=event.ticket_id,
        conversation_id=event.external_id,
    )
    await layer.send_text_from_name(event.external_id, event.sender, event.comment)


def register_handlers() -> None:
    settings = get_settings()
    job_queue.process(settings.integration_name, handle_layer_job)
    job_queue.process(settings.comment_queue_name, handle_zendesk_comment)
