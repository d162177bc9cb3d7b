from __future__ import annotations

from chat_engine.application.exceptions import (
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
)
from chat_engine.domain.entities.conversation import Conversation
from chat_engine.domain.entities.message import Message


def assert_conversation_access(
    user_id: int,
    conversation: Conversation | None,
) -> Conversation:
    """Raise if conversation doesn't exist or user is not an active participant."""
    if conversation is None:
        raise NotFoundError("Conversation not found")

    if not conversation.has_participant(user_id):
        raise ForbiddenError("Not a participant of this conversation")

    return conversation


def assert_message_sender(user_id: int, message: Message | None) -> Message:
    if message is None:
        raise NotFoundError("Message not found")
    if message.sender_id != user_id:
        raise ForbiddenError("Only the sender can modify this message")
    return message


def assert_group(conversation: Conversation) -> None:
    if conversation.is_direct:
        raise InvalidArgumentError("Direct conversations have a fixed membership")


def assert_group_admin(user_id: int, conversation: Conversation) -> None:
    assert_group(conversation)
    if not conversation.is_admin(user_id):
        raise ForbiddenError("Only a group admin can do this")
