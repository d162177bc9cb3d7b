from __future__ import annotations

from typing import NewType
from uuid import UUID

ConversationId = NewType("ConversationId", UUID)
MessageId = NewType("MessageId", UUID)
UserId = NewType("UserId", int)
SessionId = NewType("SessionId", str)


def direct_pair_key(user_a: int, user_b: int) -> str:
    """Order-independent key identifying the direct conversation of two users."""
    low, high = sorted((user_a, user_b))
    return f"{low}:{high}"
