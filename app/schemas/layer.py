from __future__ import annotations

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

PLAIN_TEXT = "text/plain"


class Conversation(BaseModel):
    id: str = Field(..., min_length=1)
    participants: list[Any] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")


class ConversationRef(BaseModel):
    id: str = Field(..., min_length=1)

    model_config = ConfigDict(extra="allow")


class MessagePart(BaseModel):
    mime_type: str = Field(validation_alias=AliasChoices("mime_type", "mimeType"))
    body: Optional[str] = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class MessageSender(BaseModel):
    user_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("user_id", "userId")
    )
    name: Optional[str] = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class Message(BaseModel):
    id: Optional[str] = None
    conversation: ConversationRef
    sender: MessageSender
    parts: list[MessagePart] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow")

    @model_validator(mode="before")
    @classmethod
    def _accept_flat_conversation_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and "conversation" not in data:
            conversation_id = data.get("conversation_id") or data.get("conversationId")
            if conversation_id:
                data = {**data, "conversation": {"id": conversation_id}}
        return data

    @property
    def conversation_id(self) -> str:
        return self.conversation.id

    def plain_text_parts(self) -> list[str]:
        return [part.body or "" for part in self.parts if part.mime_type == PLAIN_TEXT]


class LayerEvent(BaseModel):
    """A decoded Layer webhook delivery.

    Layer wraps the event type in an ``event`` envelope; older deliveries and
    internal callers use a flat ``type`` key. Both shapes are accepted.
    """

    type: str
    conversation: Optional[Conversation] = None
    message: Optional[Message] = None

    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _unwrap_envelope(cls, data: Any) -> Any:
        if isinstance(data, dict) and "type" not in data:
            envelope = data.get("event")
            if isinstance(envelope, dict) and envelope.get("type"):
                data = {**data, "type": envelope["type"]}
        return data

    @model_validator(mode="after")
    def _require_subject(self) -> "LayerEvent":
        if self.type == "conversation.created" and self.conversation is None:
            raise ValueError("conversation.created events require a conversation")
        if self.type == "message.sent" and self.message is None:
            raise ValueError("message.sent events require a message")
        return self


class LayerIdentity(BaseModel):
    """Profile fields used to register a Zendesk user for a Layer user."""

    name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class LayerWebhook(BaseModel):
    id: str
    target_url: str
    events: list[str] = Field(default_factory=list)
    status: Optional[str] = None
    config: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")
