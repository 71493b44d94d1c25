from __future__ import annotations

import re

from app.core.config import get_settings
from app.core.logging import log_error, log_info
from app.schemas.layer import Conversation, Message
from app.schemas.zendesk import Ticket
from app.services import zendesk
from app.services.identities import register_user
from app.services.job_queue import PermanentJobError

SUBJECT_MAX_LENGTH = 60
_ELLIPSIS = "..."
_SENTENCE_END = re.compile(r"([.;?])\s.*", re.DOTALL)


class EmptyMessageError(PermanentJobError):
    """Raised when a message has no plain-text content to synchronise."""


def message_text(message: Message) -> str:
    return "\n".join(message.plain_text_parts())


def build_subject(text: str) -> str:
    """Derive a ticket subject from the first plain-text part of a message.

    Long text is cut after its first sentence; when that sentence is still
    too long it is truncated to fit with a trailing ellipsis.
    """

    if len(text) <= SUBJECT_MAX_LENGTH:
        return text
    subject = _SENTENCE_END.sub(r"\1", text, count=1)
    if len(subject) > SUBJECT_MAX_LENGTH:
        subject = subject[: SUBJECT_MAX_LENGTH - len(_ELLIPSIS)] + _ELLIPSIS
    return subject


def _sender_id(message: Message) -> str:
    user_id = message.sender.user_id
    if not user_id:
        raise PermanentJobError(
            f"Message {message.id or ''} in {message.conversation_id} has no sender user_id"
        )
    return user_id


async def fetch_ticket_for_conversation(conversation_id: str) -> Ticket | None:
    tickets = await zendesk.list_tickets_by_external_id(conversation_id)
    return tickets[0] if tickets else None


async def create_ticket(message: Message, conversation: Conversation) -> Ticket:
    parts = message.plain_text_parts()
    if not parts:
        raise EmptyMessageError(
            f"Message in {conversation.id} has no text/plain parts; waiting for the next message"
        )

    existing = await fetch_ticket_for_conversation(conversation.id)
    if existing:
        log_info(
            "Ticket already exists for conversation",
            conversation_id=conversation.id,
            ticket_id=existing.id,
        )
        return existing

    requester = await register_user(_sender_id(message))
    subject = build_subject(parts[0])
    log_info(
        "Creating Zendesk ticket",
        conversation_id=conversation.id,
        subject=subject,
        requester=requester.name or requester.id,
    )
    try:
        ticket = await zendesk.create_ticket(
            {
                "requester_id": requester.id,
                "external_id": conversation.id,
                "subject": subject,
                "comment": {"public": True, "body": "\n".join(parts)},
                "tags": [get_settings().zendesk_ticket_tag],
            }
        )
    except zendesk.ZendeskAPIError as exc:
        log_error("Create Zendesk ticket failed", conversation_id=conversation.id, error=str(exc))
        raise
    log_info("Created Zendesk ticket", conversation_id=conversation.id, ticket_id=ticket.id)
    return ticket


async def create_comment(ticket: Ticket, message: Message) -> None:
    body = message_text(message)
    if not body:
        raise EmptyMessageError(f"Message in {message.conversation_id} has no text/plain parts")

    try:
        author = await register_user(_sender_id(message))
    except Exception as exc:
        log_error(
            "Create Zendesk comment failed; unable to register Zendesk user",
            ticket_id=ticket.id,
            error=str(exc),
        )
        raise

    await zendesk.add_comment(ticket.id, body=body, author_id=author.id, public=True)
    log_info("Created Zendesk comment", ticket_id=ticket.id, conversation_id=message.conversation_id)
