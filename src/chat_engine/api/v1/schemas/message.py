from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from chat_engine.domain.value_objects.enums import MessageType, Reaction


class SendMessageRequest(BaseModel):
    content: str = Field(min_length=1)
    type: MessageType = MessageType.TEXT
    reply_to: UUID | None = None
    client_msg_id: UUID | None = None


class SendDirectRequest(SendMessageRequest):
    recipient_id: int


class EditMessageRequest(BaseModel):
    content: str = Field(min_length=1)


class ReactionRequest(BaseModel):
    reaction: Reaction | None = None


class ForwardRequest(BaseModel):
    conversation_ids: list[UUID] = Field(min_length=1)


class MarkReadRequest(BaseModel):
    up_to_seq: int = Field(ge=0)


class ReadMarkResponse(BaseModel):
    conversation_id: UUID
    user_id: int
    last_read_seq: int
    unread_count: int

    model_config = {"from_attributes": True}


class ForwardedFromResponse(BaseModel):
    message_id: UUID
    conversation_id: UUID
    sender_id: int

    model_config = {"from_attributes": True}


class MessageResponse(BaseModel):
    id: UUID
    conversation_id: UUID
    sender_id: int
    seq: int
    type: str
    content: str | None
    reply_to: UUID | None
    client_msg_id: UUID | None
    forwarded_from: ForwardedFromResponse | None = None
    created_at: datetime
    edited: bool
    edited_at: datetime | None
    deleted: bool
    deleted_at: datetime | None
    delivered_to: list[int]
    read_by: list[int]
    reactions: dict[int, str]

    model_config = {"from_attributes": True}

    @field_validator("delivered_to", "read_by", mode="before")
    @classmethod
    def _sorted(cls, value: object) -> object:
        if isinstance(value, (set, frozenset)):
            return sorted(value)
        return value


class PinnedMessageResponse(BaseModel):
    conversation_id: UUID
    message_id: UUID
    pinned_by: int
    pinned_at: datetime

    model_config = {"from_attributes": True}
