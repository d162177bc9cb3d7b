from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True, slots=True)
class Participant:
    conversation_id: UUID
    user_id: int
    joined_at: datetime
    muted: bool = False
    archived: bool = False
    admin: bool = False
    removed_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.removed_at is None
