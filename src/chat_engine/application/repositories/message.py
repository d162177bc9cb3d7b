from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Protocol
from uuid import UUID

from chat_engine.domain.entities.message import Message
from chat_engine.domain.entities.pin import PinnedMessage


class MessageReader(Protocol):
    async def get_by_id(self, message_id: UUID) -> Message | None: ...

    async def page(
        self,
        conversation_id: UUID,
        *,
        before_seq: int | None = None,
        limit: int = 50,
    ) -> list[Message]:
        """Messages with seq < before_seq, strictly decreasing by seq."""
        ...

    async def latest_seq(self, conversation_id: UUID) -> int:
        """Highest seq in the conversation, 0 when empty."""
        ...

    async def count_after(
        self, conversation_id: UUID, after_seq: int, *, exclude_sender: int
    ) -> int: ...

    async def list_range(
        self, conversation_id: UUID, after_seq: int, up_to_seq: int
    ) -> list[Message]:
        """Messages with after_seq < seq <= up_to_seq, ascending."""
        ...

    async def list_pinned(self, conversation_id: UUID) -> list[PinnedMessage]:
        """Pins of a conversation, oldest first."""
        ...


class MessageWriter(Protocol):
    async def create_if_not_exists(self, message: Message) -> tuple[Message, bool]:
        """Append and assign seq. If client_msg_id collides, return the existing message."""
        ...

    async def mark_delivered(
        self, message_id: UUID, user_ids: Iterable[int], ts: datetime
    ) -> None:
        """Set-union into delivered_to. Re-marking is a no-op."""
        ...

    async def mark_read(
        self, message_ids: Iterable[UUID], user_id: int, ts: datetime
    ) -> None:
        """Set-union user_id into read_by of every message. Re-marking is a no-op."""
        ...

    async def update_content(
        self, message_id: UUID, content: str, edited_at: datetime
    ) -> None: ...

    async def soft_delete(self, message_id: UUID, deleted_at: datetime) -> None:
        """Blank content, drop reactions and unpin the message."""
        ...

    async def set_reaction(
        self, message_id: UUID, user_id: int, reaction: str | None
    ) -> None: ...

    async def pin(self, pin: PinnedMessage) -> bool:
        """Returns False when the message is already pinned."""
        ...

    async def unpin(self, conversation_id: UUID, message_id: UUID) -> bool: ...
