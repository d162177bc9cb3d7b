from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Protocol
from uuid import UUID

from chat_engine.domain.entities.read_state import ReadState


class ReadStateRepository(Protocol):
    async def get(self, conversation_id: UUID, user_id: int) -> ReadState | None: ...

    async def list_for_user(self, user_id: int) -> list[ReadState]: ...

    async def increment_unread(
        self, conversation_id: UUID, user_ids: Iterable[int], ts: datetime
    ) -> None:
        """Add one to each user's unread counter, creating rows as needed."""
        ...

    async def set_last_read(
        self,
        conversation_id: UUID,
        user_id: int,
        last_read_seq: int,
        unread_count: int,
        ts: datetime,
    ) -> None: ...
