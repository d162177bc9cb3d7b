from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from chat_engine.api.v1.schemas.message import MessageResponse


class CreateDirectRequest(BaseModel):
    user_id: int


class CreateGroupRequest(BaseModel):
    participant_ids: list[int] = Field(min_length=1)
    name: str | None = Field(default=None, max_length=100)
    avatar: str | None = None


class SettingsPatchRequest(BaseModel):
    muted: bool | None = None
    archived: bool | None = None


class AddParticipantRequest(BaseModel):
    user_id: int


class AdminRequest(BaseModel):
    user_id: int


class ConversationResponse(BaseModel):
    id: UUID
    type: str
    participant_ids: list[int]
    creator_id: int
    admin_ids: list[int] = []
    name: str | None
    avatar: str | None
    last_message_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("participant_ids", "admin_ids", mode="before")
    @classmethod
    def _sorted(cls, value: object) -> object:
        if isinstance(value, (set, frozenset)):
            return sorted(value)
        return value


class ParticipantResponse(BaseModel):
    conversation_id: UUID
    user_id: int
    joined_at: datetime
    muted: bool
    archived: bool
    admin: bool

    model_config = {"from_attributes": True}


class ConversationSummaryResponse(BaseModel):
    conversation: ConversationResponse
    unread_count: int
    last_read_seq: int
    muted: bool
    archived: bool

    model_config = {"from_attributes": True}


class ConversationPageResponse(BaseModel):
    summary: ConversationSummaryResponse
    messages: list[MessageResponse]
    next_before_seq: int | None

    model_config = {"from_attributes": True}
