"""Per-connection adapter between client intents and the delivery engine."""
from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable, Iterable
from types import TracebackType
from typing import Any

from pydantic import ValidationError

from chat_engine.application.exceptions import AppError, ForbiddenError
from chat_engine.application.ports.transport import SessionTransport
from chat_engine.domain.entities.message import Message
from chat_engine.domain.value_objects.enums import EventName, PresenceStatus
from chat_engine.domain.value_objects.rooms import conversation_room
from chat_engine.realtime import events
from chat_engine.realtime.outbox import SessionOutbox
from chat_engine.realtime.presence import PresenceTracker
from chat_engine.realtime.protocol import (
    ClientFrame,
    Envelope,
    MarkReadIntent,
    ReactIntent,
    RoomIntent,
    SendIntent,
)
from chat_engine.realtime.router import EventRouter, Registration
from chat_engine.realtime.typing_indicators import TypingTracker
from chat_engine.services.delivery_engine import DeliveryEngine

logger = logging.getLogger(__name__)


class ClientSession:
    """One authenticated connection.

    Use as an async context manager: leaving the block, for any reason,
    stops the session's typing indicators, removes it from presence and
    the router, and stops its writer task.
    """

    def __init__(
        self,
        user_id: int,
        transport: SessionTransport,
        *,
        engine: DeliveryEngine,
        presence: PresenceTracker,
        router: EventRouter,
        typing: TypingTracker,
        namespaces: Iterable[str] | None = None,
        outbox_size: int = 256,
        session_id: str | None = None,
    ) -> None:
        self.user_id = user_id
        self.session_id = session_id or uuid.uuid4().hex
        self._engine = engine
        self._presence = presence
        self._router = router
        self._typing = typing
        self._namespaces = namespaces
        self.outbox = SessionOutbox(self.session_id, transport, maxsize=outbox_size)
        self._registration: Registration | None = None
        self._opened = False
        self._closed = False
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[None]]] = {
            "join": self._on_join,
            "leave": self._on_leave,
            "send": self._on_send,
            "mark_read": self._on_mark_read,
            "typing_start": self._on_typing_start,
            "typing_stop": self._on_typing_stop,
            "react": self._on_react,
            "ping": self._on_ping,
        }

    async def __aenter__(self) -> ClientSession:
        self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def open(self) -> None:
        self.outbox.start()
        change = self._presence.connect(
            self.session_id, self.user_id, namespaces=self._namespaces,
        )
        self._registration = self._router.attach(self.session_id, self.outbox)
        self._opened = True
        if change is not None:
            self._router.publish_presence(change)
        logger.info("Session %s opened for user %s", self.session_id, self.user_id)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._opened:
            self._typing.drop_session(self.session_id)
            change = self._presence.disconnect(self.session_id)
            if self._registration is not None:
                self._registration.release()
            if change is not None:
                self._router.publish_presence(change)
        await self.outbox.aclose()
        logger.info("Session %s closed for user %s", self.session_id, self.user_id)

    # -- inbound -----------------------------------------------------------

    async def handle_raw(self, raw: str | bytes) -> None:
        self._presence.touch(self.session_id)
        try:
            frame = ClientFrame.model_validate_json(raw)
        except ValidationError as exc:
            self.reply(events.error("invalid_payload", _first_error(exc)))
            return
        await self.handle(frame)

    async def handle(self, frame: ClientFrame) -> None:
        handler = self._handlers.get(frame.type)
        if handler is None:
            self.reply(events.error("unknown_type", f"Unknown frame type {frame.type!r}"))
            return
        try:
            await handler(frame.data)
        except ValidationError as exc:
            self.reply(events.error("invalid_payload", _first_error(exc), intent=frame.type))
        except AppError as exc:
            logger.debug("Intent %s rejected for session %s: %s", frame.type, self.session_id, exc)
            self.reply(events.error(exc.code, exc.detail, intent=frame.type))

    def reply(self, envelope: Envelope) -> bool:
        return self._router.send_to_session(self.session_id, envelope)

    # -- intents -----------------------------------------------------------

    async def join_room(self, conversation_id: uuid.UUID) -> None:
        await self._engine.ensure_member(conversation_id, self.user_id)
        room = conversation_room(conversation_id)
        if self._presence.subscribe(self.session_id, room):
            self._router.publish(
                events.presence_event(
                    room, self.user_id, PresenceStatus.ONLINE, self._presence.now(),
                ),
                exclude_users=(self.user_id,),
            )
        self.reply(events.membership_ack(EventName.CONVERSATION_JOINED, conversation_id))

    async def leave_room(self, conversation_id: uuid.UUID) -> None:
        room = conversation_room(conversation_id)
        self._typing.stop(conversation_id, self.user_id, reason="left", session_id=self.session_id)
        change = self._presence.unsubscribe(self.session_id, room)
        if change is not None:
            self._router.publish_presence(change)
        self.reply(events.membership_ack(EventName.CONVERSATION_LEFT, conversation_id))

    async def send(self, intent: SendIntent) -> Message:
        if intent.recipient_id is not None:
            message = await self._engine.send_direct(
                self.user_id, intent.recipient_id, intent.content,
                msg_type=intent.type, reply_to=intent.reply_to,
                client_msg_id=intent.client_msg_id,
            )
        else:
            assert intent.conversation_id is not None
            message = await self._engine.send(
                intent.conversation_id, self.user_id, intent.content,
                msg_type=intent.type, reply_to=intent.reply_to,
                client_msg_id=intent.client_msg_id,
            )
        self._typing.stop(message.conversation_id, self.user_id, reason="sent")
        self.reply(events.message_sent_ack(message))
        return message

    async def mark_read(self, intent: MarkReadIntent) -> None:
        if intent.message_id is not None:
            await self._engine.mark_message_read(intent.message_id, self.user_id)
        else:
            assert intent.conversation_id is not None and intent.up_to_seq is not None
            await self._engine.mark_read(intent.conversation_id, self.user_id, intent.up_to_seq)

    def start_typing(self, conversation_id: uuid.UUID) -> bool:
        if not self._presence.is_subscribed(self.session_id, conversation_room(conversation_id)):
            raise ForbiddenError("Join the conversation before typing")
        return self._typing.start(conversation_id, self.user_id, self.session_id)

    def stop_typing(self, conversation_id: uuid.UUID) -> bool:
        return self._typing.stop(conversation_id, self.user_id)

    # -- frame handlers ----------------------------------------------------

    async def _on_join(self, data: dict[str, Any]) -> None:
        await self.join_room(RoomIntent.model_validate(data).conversation_id)

    async def _on_leave(self, data: dict[str, Any]) -> None:
        await self.leave_room(RoomIntent.model_validate(data).conversation_id)

    async def _on_send(self, data: dict[str, Any]) -> None:
        await self.send(SendIntent.model_validate(data))

    async def _on_mark_read(self, data: dict[str, Any]) -> None:
        await self.mark_read(MarkReadIntent.model_validate(data))

    async def _on_typing_start(self, data: dict[str, Any]) -> None:
        self.start_typing(RoomIntent.model_validate(data).conversation_id)

    async def _on_typing_stop(self, data: dict[str, Any]) -> None:
        self.stop_typing(RoomIntent.model_validate(data).conversation_id)

    async def _on_react(self, data: dict[str, Any]) -> None:
        intent = ReactIntent.model_validate(data)
        await self._engine.react(intent.message_id, self.user_id, intent.reaction)

    async def _on_ping(self, data: dict[str, Any]) -> None:
        self.reply(events.pong(data))


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(part) for part in err.get("loc", ()))
    return f"{loc}: {err['msg']}" if loc else err["msg"]
