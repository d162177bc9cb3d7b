from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from chat_engine.domain.entities.participant import Participant


class ParticipantReader(Protocol):
    async def get(self, conversation_id: UUID, user_id: int) -> Participant | None: ...

    async def list_participants(
        self, conversation_id: UUID, *, include_removed: bool = False
    ) -> list[Participant]: ...


class ParticipantWriter(Protocol):
    async def add(self, participant: Participant) -> None:
        """Insert, or reactivate a previously removed participant."""
        ...

    async def remove(self, conversation_id: UUID, user_id: int, ts: datetime) -> None:
        """Soft-remove; an admin flag is cleared with it."""
        ...

    async def set_admin(self, conversation_id: UUID, user_id: int, admin: bool) -> None: ...

    async def update_settings(
        self,
        conversation_id: UUID,
        user_id: int,
        *,
        muted: bool | None = None,
        archived: bool | None = None,
    ) -> Participant: ...
