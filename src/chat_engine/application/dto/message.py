from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True, slots=True)
class ReadMark:
    """Outcome of advancing a user's read position in a conversation."""

    conversation_id: UUID
    user_id: int
    last_read_seq: int
    unread_count: int
    message_ids: tuple[UUID, ...] = ()
    advanced: bool = False
