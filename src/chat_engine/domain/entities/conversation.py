from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from chat_engine.domain.value_objects.enums import ConversationType


@dataclass(frozen=True, slots=True)
class Conversation:
    id: UUID
    type: str
    participant_ids: frozenset[int]
    creator_id: int
    name: str | None
    avatar: str | None
    pair_key: str | None
    last_message_at: datetime | None
    created_at: datetime
    updated_at: datetime
    admin_ids: frozenset[int] = frozenset()

    @property
    def is_direct(self) -> bool:
        return self.type == ConversationType.DIRECT

    def has_participant(self, user_id: int) -> bool:
        return user_id in self.participant_ids

    def is_admin(self, user_id: int) -> bool:
        return user_id in self.admin_ids
