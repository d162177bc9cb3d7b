"""Which sessions are connected and which rooms they listen to.

All methods are synchronous. On a single event loop that makes every
mutation atomic with respect to router snapshots: a session is either fully
registered or fully gone.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from chat_engine.application.ports.clock import Clock, SystemClock
from chat_engine.domain.entities.presence import PresenceChange, PresenceEntry
from chat_engine.domain.value_objects.enums import Namespace, PresenceStatus
from chat_engine.domain.value_objects.rooms import is_conversation_room, user_room

logger = logging.getLogger(__name__)

ALL_NAMESPACES = frozenset(Namespace)


@dataclass(slots=True)
class _SessionRecord:
    session_id: str
    user_id: int
    namespaces: frozenset[str]
    connected_at: datetime
    last_activity: datetime
    rooms: set[str] = field(default_factory=set)


class PresenceTracker:
    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._sessions: dict[str, _SessionRecord] = {}
        self._rooms: dict[str, set[str]] = {}
        self._users: dict[int, set[str]] = {}
        # (room, user) -> number of that user's sessions subscribed to the room
        self._members: dict[tuple[str, int], int] = {}

    def connect(
        self,
        session_id: str,
        user_id: int,
        *,
        namespaces: Iterable[str] | None = None,
    ) -> PresenceChange | None:
        """Register a session and auto-join its user's personal room.

        Returns an online PresenceChange for the user's first session.
        """
        if session_id in self._sessions:
            raise ValueError(f"session {session_id!r} already connected")

        now = self._clock.now()
        wanted = frozenset(namespaces) if namespaces is not None else ALL_NAMESPACES
        self._sessions[session_id] = _SessionRecord(
            session_id=session_id,
            user_id=user_id,
            namespaces=wanted | {Namespace.SYSTEM},
            connected_at=now,
            last_activity=now,
        )
        sessions = self._users.setdefault(user_id, set())
        first = not sessions
        sessions.add(session_id)
        self._join(session_id, user_room(user_id))
        logger.debug("Session %s connected for user %s", session_id, user_id)

        if first:
            return PresenceChange(user_id, PresenceStatus.ONLINE, frozenset(), now)
        return None

    def disconnect(self, session_id: str) -> PresenceChange | None:
        """Drop a session and all its subscriptions. Unknown ids are ignored.

        Returns an offline PresenceChange when this was the user's last
        session, or when it was the user's last session in some conversation
        room. Its rooms are the conversation rooms the user just left.
        """
        record = self._sessions.pop(session_id, None)
        if record is None:
            return None

        vacated = [room for room in list(record.rooms) if self._leave(session_id, room, record)]

        sessions = self._users.get(record.user_id, set())
        sessions.discard(session_id)
        last = not sessions
        if last:
            self._users.pop(record.user_id, None)
        logger.debug("Session %s disconnected for user %s", session_id, record.user_id)
        return self._departure(record.user_id, vacated, force=last)

    def subscribe(self, session_id: str, room: str) -> bool:
        """Add a room to the session. Returns True if the user is new to the room."""
        record = self._require(session_id)
        if room in record.rooms:
            return False
        return self._join(session_id, room)

    def unsubscribe(self, session_id: str, room: str) -> PresenceChange | None:
        """Remove a room from the session.

        Returns an offline PresenceChange for the room when no other session
        of the user is still subscribed to it.
        """
        record = self._sessions.get(session_id)
        if record is None or room not in record.rooms:
            return None
        vacated = self._leave(session_id, room, record)
        return self._departure(record.user_id, [room] if vacated else [])

    def unsubscribe_user(self, user_id: int, room: str) -> PresenceChange | None:
        """Unsubscribe every session of a user from a room."""
        vacated = False
        for sid in list(self._users.get(user_id, ())):
            record = self._sessions[sid]
            if room in record.rooms:
                vacated = self._leave(sid, room, record) or vacated
        return self._departure(user_id, [room] if vacated else [])

    def sessions_for(self, room: str) -> frozenset[str]:
        return frozenset(self._rooms.get(room, ()))

    def sessions_for_user(self, user_id: int) -> frozenset[str]:
        return frozenset(self._users.get(user_id, ()))

    def users_in(self, room: str) -> frozenset[int]:
        return frozenset(self._sessions[sid].user_id for sid in self._rooms.get(room, ()))

    def is_online(self, user_id: int) -> bool:
        return user_id in self._users

    def online_users(self, user_ids: Iterable[int]) -> frozenset[int]:
        return frozenset(uid for uid in user_ids if uid in self._users)

    def user_of(self, session_id: str) -> int | None:
        record = self._sessions.get(session_id)
        return record.user_id if record else None

    def accepts(self, session_id: str, namespace: str) -> bool:
        record = self._sessions.get(session_id)
        return record is not None and namespace in record.namespaces

    def is_subscribed(self, session_id: str, room: str) -> bool:
        record = self._sessions.get(session_id)
        return record is not None and room in record.rooms

    def touch(self, session_id: str) -> None:
        record = self._sessions.get(session_id)
        if record is not None:
            record.last_activity = self._clock.now()

    def entry(self, session_id: str) -> PresenceEntry | None:
        record = self._sessions.get(session_id)
        if record is None:
            return None
        return PresenceEntry(
            session_id=record.session_id,
            user_id=record.user_id,
            rooms=frozenset(record.rooms),
            namespaces=record.namespaces,
            connected_at=record.connected_at,
            last_activity=record.last_activity,
        )

    def now(self) -> datetime:
        return self._clock.now()

    def __len__(self) -> int:
        return len(self._sessions)

    def _require(self, session_id: str) -> _SessionRecord:
        record = self._sessions.get(session_id)
        if record is None:
            raise KeyError(f"session {session_id!r} is not connected")
        return record

    def _join(self, session_id: str, room: str) -> bool:
        """Returns True when this is the user's first session in the room."""
        record = self._sessions[session_id]
        record.rooms.add(room)
        self._rooms.setdefault(room, set()).add(session_id)
        key = (room, record.user_id)
        self._members[key] = self._members.get(key, 0) + 1
        return self._members[key] == 1

    def _leave(self, session_id: str, room: str, record: _SessionRecord) -> bool:
        """Returns True when the user has no session left in the room."""
        record.rooms.discard(room)
        members = self._rooms.get(room)
        if members is not None:
            members.discard(session_id)
            if not members:
                del self._rooms[room]
        key = (room, record.user_id)
        remaining = self._members.get(key, 1) - 1
        if remaining > 0:
            self._members[key] = remaining
            return False
        self._members.pop(key, None)
        return True

    def _departure(
        self, user_id: int, rooms: Iterable[str], *, force: bool = False
    ) -> PresenceChange | None:
        audience = frozenset(r for r in rooms if is_conversation_room(r))
        if not audience and not force:
            return None
        return PresenceChange(
            user_id=user_id,
            status=PresenceStatus.OFFLINE,
            rooms=audience,
            at=self._clock.now(),
        )
