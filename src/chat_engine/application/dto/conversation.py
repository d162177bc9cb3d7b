from __future__ import annotations

from dataclasses import dataclass

from chat_engine.domain.entities.conversation import Conversation
from chat_engine.domain.entities.message import Message


@dataclass(frozen=True, slots=True)
class SettingsPatch:
    muted: bool | None = None
    archived: bool | None = None


@dataclass(frozen=True, slots=True)
class ConversationSummary:
    conversation: Conversation
    unread_count: int
    last_read_seq: int
    muted: bool
    archived: bool


@dataclass(frozen=True, slots=True)
class ConversationPage:
    summary: ConversationSummary
    messages: list[Message]
    next_before_seq: int | None
