"""Envelope builders for every outbound event.

Payloads contain JSON-native values only (ids as strings, timestamps in
ISO 8601, sets as sorted lists) so an Envelope serializes without custom
encoders.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from chat_engine.domain.entities.conversation import Conversation
from chat_engine.domain.entities.message import Message
from chat_engine.domain.value_objects.enums import EventName, Namespace, PresenceStatus
from chat_engine.domain.value_objects.rooms import conversation_room, user_room
from chat_engine.realtime.protocol import Envelope


def _iso(ts: datetime | None) -> str | None:
    return ts.isoformat() if ts else None


def forwarded_payload(message: Message) -> dict[str, Any] | None:
    origin = message.forwarded_from
    if origin is None:
        return None
    return {
        "message_id": str(origin.message_id),
        "conversation_id": str(origin.conversation_id),
        "sender_id": origin.sender_id,
    }


def message_payload(message: Message) -> dict[str, Any]:
    return {
        "id": str(message.id),
        "conversation_id": str(message.conversation_id),
        "sender_id": message.sender_id,
        "seq": message.seq,
        "type": message.type,
        "content": message.content,
        "reply_to": str(message.reply_to) if message.reply_to else None,
        "client_msg_id": str(message.client_msg_id) if message.client_msg_id else None,
        "forwarded_from": forwarded_payload(message),
        "created_at": _iso(message.created_at),
        "edited": message.edited,
        "edited_at": _iso(message.edited_at),
        "deleted": message.deleted,
        "deleted_at": _iso(message.deleted_at),
        "delivered_to": sorted(message.delivered_to),
        "read_by": sorted(message.read_by),
        "reactions": {str(uid): r for uid, r in sorted(message.reactions.items())},
    }


def conversation_payload(conversation: Conversation) -> dict[str, Any]:
    return {
        "id": str(conversation.id),
        "type": conversation.type,
        "participant_ids": sorted(conversation.participant_ids),
        "creator_id": conversation.creator_id,
        "admin_ids": sorted(conversation.admin_ids),
        "name": conversation.name,
        "avatar": conversation.avatar,
        "last_message_at": _iso(conversation.last_message_at),
        "created_at": _iso(conversation.created_at),
    }


def message_event(event: EventName, message: Message) -> Envelope:
    """message:received / message:edited / message:deleted to the conversation room."""
    return Envelope(
        namespace=Namespace.MESSAGING,
        event=event,
        room=conversation_room(message.conversation_id),
        payload={"message": message_payload(message)},
    )


def message_sent_ack(message: Message) -> Envelope:
    return Envelope(
        namespace=Namespace.MESSAGING,
        event=EventName.MESSAGE_SENT,
        payload={"message": message_payload(message)},
    )


def read_receipt_event(
    conversation_id: UUID, user_id: int, up_to_seq: int, message_ids: tuple[UUID, ...]
) -> Envelope:
    return Envelope(
        namespace=Namespace.MESSAGING,
        event=EventName.MESSAGE_READ,
        room=conversation_room(conversation_id),
        payload={
            "conversation_id": str(conversation_id),
            "user_id": user_id,
            "up_to_seq": up_to_seq,
            "message_ids": [str(mid) for mid in message_ids],
        },
    )


def reaction_event(message: Message, user_id: int, reaction: str | None) -> Envelope:
    return Envelope(
        namespace=Namespace.MESSAGING,
        event=EventName.MESSAGE_REACTION,
        room=conversation_room(message.conversation_id),
        payload={
            "message_id": str(message.id),
            "conversation_id": str(message.conversation_id),
            "user_id": user_id,
            "reaction": reaction,
            "reactions": {str(uid): r for uid, r in sorted(message.reactions.items())},
        },
    )


def typing_event(
    event: EventName, conversation_id: UUID, user_id: int, *, reason: str | None = None
) -> Envelope:
    payload: dict[str, Any] = {"conversation_id": str(conversation_id), "user_id": user_id}
    if reason is not None:
        payload["reason"] = reason
    return Envelope(
        namespace=Namespace.MESSAGING,
        event=event,
        room=conversation_room(conversation_id),
        payload=payload,
    )


def presence_event(room: str, user_id: int, status: PresenceStatus, at: datetime) -> Envelope:
    return Envelope(
        namespace=Namespace.SOCIAL,
        event=EventName.PRESENCE_CHANGE,
        room=room,
        payload={"user_id": user_id, "status": status.value, "at": _iso(at)},
    )


def conversation_event(
    room: str, conversation: Conversation, action: str, **extra: Any
) -> Envelope:
    return Envelope(
        namespace=Namespace.MESSAGING,
        event=EventName.CONVERSATION_UPDATED,
        room=room,
        payload={"action": action, "conversation": conversation_payload(conversation), **extra},
    )


def membership_ack(event: EventName, conversation_id: UUID) -> Envelope:
    """conversation:joined / conversation:left for the requesting session."""
    return Envelope(
        namespace=Namespace.MESSAGING,
        event=event,
        room=conversation_room(conversation_id),
        payload={"conversation_id": str(conversation_id)},
    )


def notification_event(user_id: int, notification: dict[str, Any]) -> Envelope:
    return Envelope(
        namespace=Namespace.NOTIFICATIONS,
        event=EventName.NOTIFICATION_NEW,
        room=user_room(user_id),
        payload=notification,
    )


def message_notification(user_id: int, conversation: Conversation, message: Message) -> Envelope:
    preview = (message.content or "")[:100]
    return notification_event(
        user_id,
        {
            "type": "message",
            "conversation_id": str(conversation.id),
            "message_id": str(message.id),
            "sender_id": message.sender_id,
            "preview": preview,
            "created_at": _iso(message.created_at),
        },
    )


def pong(data: dict[str, Any] | None = None) -> Envelope:
    return Envelope(namespace=Namespace.SYSTEM, event=EventName.PONG, payload=data or {})


def ping() -> Envelope:
    return Envelope(namespace=Namespace.SYSTEM, event=EventName.PING)


def error(code: str, detail: str, *, intent: str | None = None) -> Envelope:
    payload: dict[str, Any] = {"code": code, "detail": detail}
    if intent is not None:
        payload["intent"] = intent
    return Envelope(namespace=Namespace.SYSTEM, event=EventName.ERROR, payload=payload)
