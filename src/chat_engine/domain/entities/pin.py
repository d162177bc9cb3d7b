from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True, slots=True)
class PinnedMessage:
    conversation_id: UUID
    message_id: UUID
    pinned_by: int
    pinned_at: datetime
