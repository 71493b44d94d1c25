from __future__ import annotations

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class ZendeskUser(BaseModel):
    id: int
    external_id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class Ticket(BaseModel):
    id: int
    external_id: Optional[str] = None
    requester_id: Optional[int] = None
    subject: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    tags: list[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow")


class Target(BaseModel):
    id: int
    title: Optional[str] = None
    target_url: Optional[str] = None
    type: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class TriggerCondition(BaseModel):
    field: str
    operator: str
    value: Any = None


class TriggerAction(BaseModel):
    field: str
    value: Any = None


class Trigger(BaseModel):
    id: int
    title: Optional[str] = None
    actions: list[TriggerAction] = Field(default_factory=list)
    conditions: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")

    def notifies_target(self, target_id: int) -> bool:
        for action in self.actions:
            if action.field != "notification_target":
                continue
            value = action.value
            if isinstance(value, (list, tuple)) and value:
                candidate = value[0]
            else:
                candidate = value
            try:
                if int(candidate) == int(target_id):
                    return True
            except (TypeError, ValueError):
                continue
        return False


class ZendeskCommentEvent(BaseModel):
    """Payload posted by the Zendesk target when an agent adds a public comment."""

    ticket_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("id", "ticket_id")
    )
    external_id: str = Field(..., min_length=1)
    sender: str = Field(..., min_length=1)
    comment: str

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @field_validator("ticket_id", mode="before")
    @classmethod
    def _stringify_ticket_id(cls, value: Any) -> Any:
        if value is None:
            return None
        return str(value)
