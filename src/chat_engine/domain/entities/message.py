from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True, slots=True)
class ForwardedFrom:
    """Where a forwarded message was copied from."""

    message_id: UUID
    conversation_id: UUID
    sender_id: int


@dataclass(frozen=True, slots=True)
class Message:
    """A message snapshot.

    ``seq`` is assigned by the store on append and orders the conversation
    timeline. ``delivered_to`` and ``read_by`` only ever grow.
    """

    id: UUID
    conversation_id: UUID
    sender_id: int
    type: str
    content: str | None
    created_at: datetime
    seq: int = 0
    reply_to: UUID | None = None
    client_msg_id: UUID | None = None
    forwarded_from: ForwardedFrom | None = None
    edited: bool = False
    edited_at: datetime | None = None
    deleted: bool = False
    deleted_at: datetime | None = None
    delivered_to: frozenset[int] = frozenset()
    read_by: frozenset[int] = frozenset()
    reactions: dict[int, str] = field(default_factory=dict)
