from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from uuid import UUID

from chat_engine.domain.value_objects.enums import EventName
from chat_engine.realtime import events
from chat_engine.realtime.router import EventRouter

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Indicator:
    session_id: str
    timer: asyncio.TimerHandle


class TypingTracker:
    """Ephemeral typing indicators keyed by (conversation, user).

    An indicator expires ``timeout`` seconds after its last refresh and
    emits ``typing:stop`` exactly once, whether stopped or expired.
    """

    def __init__(self, router: EventRouter, *, timeout: float = 6.0) -> None:
        self._router = router
        self._timeout = timeout
        self._active: dict[tuple[UUID, int], _Indicator] = {}

    def start(self, conversation_id: UUID, user_id: int, session_id: str) -> bool:
        """Start or refresh. Returns True when a typing:start was emitted."""
        key = (conversation_id, user_id)
        current = self._active.get(key)
        if current is not None:
            current.timer.cancel()
        loop = asyncio.get_running_loop()
        timer = loop.call_later(self._timeout, self._expire, key)
        self._active[key] = _Indicator(session_id, timer)
        if current is not None:
            return False
        self._router.publish(
            events.typing_event(EventName.TYPING_START, conversation_id, user_id),
            exclude_users=(user_id,),
        )
        return True

    def stop(
        self,
        conversation_id: UUID,
        user_id: int,
        *,
        reason: str | None = None,
        session_id: str | None = None,
    ) -> bool:
        """Stop an indicator. With ``session_id``, only one that session started."""
        key = (conversation_id, user_id)
        indicator = self._active.get(key)
        if indicator is None:
            return False
        if session_id is not None and indicator.session_id != session_id:
            return False
        del self._active[key]
        indicator.timer.cancel()
        self._emit_stop(conversation_id, user_id, reason)
        return True

    def drop_session(self, session_id: str) -> int:
        """Stop every indicator started by a session that went away."""
        keys = [k for k, ind in self._active.items() if ind.session_id == session_id]
        for conversation_id, user_id in keys:
            self.stop(conversation_id, user_id, reason="disconnect")
        return len(keys)

    def is_typing(self, conversation_id: UUID, user_id: int) -> bool:
        return (conversation_id, user_id) in self._active

    def clear(self) -> None:
        for indicator in self._active.values():
            indicator.timer.cancel()
        self._active.clear()

    def _expire(self, key: tuple[UUID, int]) -> None:
        if self._active.pop(key, None) is None:
            return
        logger.debug("Typing indicator expired: conversation=%s user=%s", *key)
        self._emit_stop(*key, reason="timeout")

    def _emit_stop(self, conversation_id: UUID, user_id: int, reason: str | None) -> None:
        try:
            self._router.publish(
                events.typing_event(EventName.TYPING_STOP, conversation_id, user_id, reason=reason),
                exclude_users=(user_id,),
            )
        except Exception:
            logger.exception("Failed to publish typing:stop for %s", conversation_id)
