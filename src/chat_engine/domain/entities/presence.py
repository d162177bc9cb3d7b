from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chat_engine.domain.value_objects.enums import PresenceStatus


@dataclass(frozen=True, slots=True)
class PresenceEntry:
    """Read-only view of one connected session."""

    session_id: str
    user_id: int
    rooms: frozenset[str]
    namespaces: frozenset[str]
    connected_at: datetime
    last_activity: datetime
    status: PresenceStatus = PresenceStatus.ONLINE


@dataclass(frozen=True, slots=True)
class PresenceChange:
    """A user came online, or left some rooms; ``rooms`` is the audience."""

    user_id: int
    status: PresenceStatus
    rooms: frozenset[str]
    at: datetime
