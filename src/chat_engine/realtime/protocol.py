"""WebSocket frame models."""
from __future__ import annotations

import uuid
from typing import Any

from pydantic import BaseModel, Field, model_validator

from chat_engine.domain.value_objects.enums import EventName, MessageType, Namespace, Reaction


class Envelope(BaseModel):
    """Server → Client."""

    namespace: Namespace
    event: EventName
    room: str | None = None
    payload: dict[str, Any] = {}


class ClientFrame(BaseModel):
    """Client → Server."""

    type: str  # join | leave | send | mark_read | typing_start | typing_stop | react | ping
    data: dict[str, Any] = {}


class RoomIntent(BaseModel):
    conversation_id: uuid.UUID


class SendIntent(BaseModel):
    conversation_id: uuid.UUID | None = None
    recipient_id: int | None = None
    content: str = Field(min_length=1)
    type: MessageType = MessageType.TEXT
    reply_to: uuid.UUID | None = None
    client_msg_id: uuid.UUID | None = None

    @model_validator(mode="after")
    def _one_target(self) -> SendIntent:
        if (self.conversation_id is None) == (self.recipient_id is None):
            raise ValueError("exactly one of conversation_id or recipient_id is required")
        return self


class MarkReadIntent(BaseModel):
    conversation_id: uuid.UUID | None = None
    up_to_seq: int | None = Field(default=None, ge=0)
    message_id: uuid.UUID | None = None

    @model_validator(mode="after")
    def _one_target(self) -> MarkReadIntent:
        if self.message_id is None and (self.conversation_id is None or self.up_to_seq is None):
            raise ValueError("message_id or conversation_id with up_to_seq is required")
        return self


class ReactIntent(BaseModel):
    message_id: uuid.UUID
    reaction: Reaction | None = None
