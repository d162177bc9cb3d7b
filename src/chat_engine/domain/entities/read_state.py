from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True, slots=True)
class ReadState:
    conversation_id: UUID
    user_id: int
    last_read_seq: int
    unread_count: int
    updated_at: datetime
