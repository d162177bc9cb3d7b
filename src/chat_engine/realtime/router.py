"""Namespaced event fan-out.

``publish`` takes a snapshot of a room's sessions and hands the serialized
frame to each session's sink without awaiting, so a concurrent join, leave
or disconnect either happens entirely before or entirely after it.
"""
from __future__ import annotations

import logging
from collections.abc import Collection
from typing import Protocol

from chat_engine.domain.entities.presence import PresenceChange
from chat_engine.realtime import events
from chat_engine.realtime.presence import PresenceTracker
from chat_engine.realtime.protocol import Envelope

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    def offer(self, raw: str) -> bool: ...


class Registration:
    """Handle returned by ``EventRouter.attach``; releasing it is idempotent."""

    def __init__(self, router: EventRouter, session_id: str, sink: EventSink) -> None:
        self._router = router
        self.session_id = session_id
        self._sink = sink
        self.released = False

    def release(self) -> None:
        if not self.released:
            self.released = True
            self._router._detach(self.session_id, self._sink)

    def __enter__(self) -> Registration:
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()


class EventRouter:
    def __init__(self, presence: PresenceTracker) -> None:
        self._presence = presence
        self._sinks: dict[str, EventSink] = {}

    def attach(self, session_id: str, sink: EventSink) -> Registration:
        if session_id in self._sinks:
            raise ValueError(f"session {session_id!r} already attached")
        self._sinks[session_id] = sink
        return Registration(self, session_id, sink)

    def _detach(self, session_id: str, sink: EventSink) -> None:
        if self._sinks.get(session_id) is sink:
            del self._sinks[session_id]

    def publish(
        self,
        envelope: Envelope,
        *,
        exclude_users: Collection[int] = (),
        exclude_sessions: Collection[str] = (),
        sessions: Collection[str] | None = None,
    ) -> int:
        """Deliver to every session in the envelope's room. Returns the number reached.

        ``sessions`` replaces the room lookup with a snapshot the caller took
        earlier, so the audience matches what the caller already recorded.
        """
        if envelope.room is None:
            raise ValueError("envelope has no room")

        targets = self._presence.sessions_for(envelope.room) if sessions is None else sessions
        if not targets:
            return 0

        raw = envelope.model_dump_json()
        delivered = 0
        for session_id in targets:
            if session_id in exclude_sessions:
                continue
            if exclude_users and self._presence.user_of(session_id) in exclude_users:
                continue
            if not self._presence.accepts(session_id, envelope.namespace):
                continue
            if self._offer(session_id, raw):
                delivered += 1
        logger.debug(
            "Published %s to %s (%d/%d sessions)",
            envelope.event, envelope.room, delivered, len(targets),
        )
        return delivered

    def send_to_session(self, session_id: str, envelope: Envelope) -> bool:
        """Deliver to one session regardless of room, e.g. acks and errors."""
        return self._offer(session_id, envelope.model_dump_json())

    def audience(self, room: str, namespace: str) -> frozenset[str]:
        """Sessions in a room that would receive an event of ``namespace``."""
        return frozenset(
            sid for sid in self._presence.sessions_for(room)
            if self._presence.accepts(sid, namespace)
        )

    def publish_presence(self, change: PresenceChange) -> int:
        delivered = 0
        for room in sorted(change.rooms):
            delivered += self.publish(
                events.presence_event(room, change.user_id, change.status, change.at),
                exclude_users=(change.user_id,),
            )
        return delivered

    def _offer(self, session_id: str, raw: str) -> bool:
        sink = self._sinks.get(session_id)
        if sink is None:
            return False
        try:
            return sink.offer(raw)
        except Exception:
            logger.exception("Fan-out to session %s failed", session_id)
            return False

    def __len__(self) -> int:
        return len(self._sinks)
