from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from chat_engine.domain.entities.conversation import Conversation


class ConversationReader(Protocol):
    async def get_by_id(self, conversation_id: UUID) -> Conversation | None: ...

    async def get_by_pair_key(self, pair_key: str) -> Conversation | None: ...

    async def list_for_user(self, user_id: int) -> list[Conversation]:
        """Conversations the user actively participates in, newest activity first."""
        ...


class ConversationWriter(Protocol):
    async def create(self, conversation: Conversation) -> Conversation:
        """Insert a conversation together with its participants."""
        ...

    async def create_direct_if_not_exists(
        self, conversation: Conversation
    ) -> tuple[Conversation, bool]:
        """Insert a direct conversation. If its pair_key is taken, return the existing one."""
        ...

    async def touch_last_message_at(
        self, conversation_id: UUID, ts: datetime
    ) -> None: ...
