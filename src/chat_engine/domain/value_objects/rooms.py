"""Fan-out room keys.

A room is either a conversation (``conversation:<uuid>``) or a user's
personal room (``user:<id>``) used for notifications.
"""
from __future__ import annotations

from uuid import UUID

CONVERSATION_PREFIX = "conversation:"
USER_PREFIX = "user:"


def conversation_room(conversation_id: UUID) -> str:
    return f"{CONVERSATION_PREFIX}{conversation_id}"


def user_room(user_id: int) -> str:
    return f"{USER_PREFIX}{user_id}"


def is_conversation_room(room: str) -> bool:
    return room.startswith(CONVERSATION_PREFIX)


def conversation_id_of(room: str) -> UUID:
    if not is_conversation_room(room):
        raise ValueError(f"not a conversation room: {room!r}")
    return UUID(room[len(CONVERSATION_PREFIX):])
