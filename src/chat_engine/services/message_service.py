from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Iterable

from chat_engine.application.dto.message import ReadMark
from chat_engine.application.exceptions import (
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
)
from chat_engine.application.policies.permissions import (
    assert_conversation_access,
    assert_group_admin,
    assert_message_sender,
)
from chat_engine.application.ports.clock import Clock
from chat_engine.application.uow import UnitOfWork
from chat_engine.domain.entities.conversation import Conversation
from chat_engine.domain.entities.message import ForwardedFrom, Message
from chat_engine.domain.entities.pin import PinnedMessage
from chat_engine.domain.value_objects.enums import MessageType, Reaction

MAX_CONTENT_LENGTH = 2000


def _clean_content(content: str | None) -> str:
    if content is None or not content.strip():
        raise InvalidArgumentError("Message content must not be empty")
    content = content.strip()
    if len(content) > MAX_CONTENT_LENGTH:
        raise InvalidArgumentError(f"Message content exceeds {MAX_CONTENT_LENGTH} characters")
    return content


async def append(
    conversation_id: uuid.UUID,
    sender_id: int,
    content: str | None,
    uow: UnitOfWork,
    *,
    clock: Clock,
    msg_type: MessageType = MessageType.TEXT,
    reply_to: uuid.UUID | None = None,
    client_msg_id: uuid.UUID | None = None,
    forwarded_from: ForwardedFrom | None = None,
) -> tuple[Message, Conversation, bool]:
    """Durably append a message.

    The unread counter of every other active participant is incremented in
    the same commit. Returns (message, conversation, created); a retried
    client_msg_id returns the stored message with created=False.
    """
    conversation = await uow.conversations.get_by_id(conversation_id)
    conversation = assert_conversation_access(sender_id, conversation)
    content = _clean_content(content)

    if reply_to is not None:
        if client_msg_id is not None and reply_to == client_msg_id:
            raise InvalidArgumentError("A message cannot reply to itself")
        target = await uow.messages.get_by_id(reply_to)
        if target is None or target.conversation_id != conversation_id:
            raise NotFoundError("Reply target not found in this conversation")

    now = clock.now()
    msg = Message(
        id=uuid.uuid4(),
        conversation_id=conversation_id,
        sender_id=sender_id,
        type=MessageType(msg_type).value,
        content=content,
        created_at=now,
        reply_to=reply_to,
        client_msg_id=client_msg_id,
        forwarded_from=forwarded_from,
    )

    msg, created = await uow.messages_w.create_if_not_exists(msg)

    if created:
        await uow.conversations_w.touch_last_message_at(conversation_id, msg.created_at)
        await uow.read_states.increment_unread(
            conversation_id, conversation.participant_ids - {sender_id}, now,
        )
        await uow.commit()

    return msg, conversation, created


async def mark_delivered(
    message_id: uuid.UUID,
    user_ids: Iterable[int],
    uow: UnitOfWork,
    *,
    clock: Clock,
) -> None:
    user_ids = frozenset(user_ids)
    if not user_ids:
        return
    await uow.messages_w.mark_delivered(message_id, user_ids, clock.now())
    await uow.commit()


async def mark_read(
    message_id: uuid.UUID,
    user_id: int,
    uow: UnitOfWork,
    *,
    clock: Clock,
) -> Message:
    """Add user_id to one message's read_by set. Idempotent.

    The read mark and unread counter are left alone; unread accounting goes
    through ``mark_read_up_to``.
    """
    message = await uow.messages.get_by_id(message_id)
    if message is None:
        raise NotFoundError("Message not found")
    conversation = await uow.conversations.get_by_id(message.conversation_id)
    assert_conversation_access(user_id, conversation)
    if user_id not in message.read_by and user_id != message.sender_id:
        await uow.messages_w.mark_read([message_id], user_id, clock.now())
        await uow.commit()
        message = await uow.messages.get_by_id(message_id)
        assert message is not None
    return message


async def mark_read_up_to(
    conversation_id: uuid.UUID,
    user_id: int,
    up_to_seq: int,
    uow: UnitOfWork,
    *,
    clock: Clock,
) -> ReadMark:
    """Advance the user's read mark and recompute the unread counter.

    The mark never moves backwards; re-reading an already read range leaves
    the counter unchanged.
    """
    conversation = await uow.conversations.get_by_id(conversation_id)
    assert_conversation_access(user_id, conversation)
    if up_to_seq < 0:
        raise InvalidArgumentError("up_to_seq must not be negative")

    state = await uow.read_states.get(conversation_id, user_id)
    last_read = state.last_read_seq if state else 0
    latest = await uow.messages.latest_seq(conversation_id)
    target = min(up_to_seq, latest)

    if target <= last_read:
        return ReadMark(
            conversation_id=conversation_id,
            user_id=user_id,
            last_read_seq=last_read,
            unread_count=state.unread_count if state else 0,
        )

    now = clock.now()
    newly_read = [
        m.id
        for m in await uow.messages.list_range(conversation_id, last_read, target)
        if m.sender_id != user_id
    ]
    if newly_read:
        await uow.messages_w.mark_read(newly_read, user_id, now)

    unread = 0
    if target < latest:
        unread = await uow.messages.count_after(
            conversation_id, target, exclude_sender=user_id,
        )
    await uow.read_states.set_last_read(conversation_id, user_id, target, unread, now)
    await uow.commit()

    return ReadMark(
        conversation_id=conversation_id,
        user_id=user_id,
        last_read_seq=target,
        unread_count=unread,
        message_ids=tuple(newly_read),
        advanced=True,
    )


async def soft_delete(
    message_id: uuid.UUID,
    requester_id: int,
    uow: UnitOfWork,
    *,
    clock: Clock,
) -> tuple[Message, bool]:
    """Blank a message's content, keeping its slot in the timeline.

    Returns (message, changed). Deleting twice is a no-op.
    """
    message = assert_message_sender(requester_id, await uow.messages.get_by_id(message_id))
    if message.deleted:
        return message, False

    await uow.messages_w.soft_delete(message_id, clock.now())
    await uow.commit()
    message = await uow.messages.get_by_id(message_id)
    assert message is not None
    return message, True


async def edit(
    message_id: uuid.UUID,
    requester_id: int,
    content: str | None,
    uow: UnitOfWork,
    *,
    clock: Clock,
) -> Message:
    message = assert_message_sender(requester_id, await uow.messages.get_by_id(message_id))
    if message.deleted:
        raise InvalidStateError("Deleted messages cannot be edited")
    content = _clean_content(content)

    await uow.messages_w.update_content(message_id, content, clock.now())
    await uow.commit()
    message = await uow.messages.get_by_id(message_id)
    assert message is not None
    return message


async def react(
    message_id: uuid.UUID,
    user_id: int,
    reaction: Reaction | None,
    uow: UnitOfWork,
) -> Message:
    """Set or clear the user's single reaction on a message."""
    message = await uow.messages.get_by_id(message_id)
    if message is None:
        raise NotFoundError("Message not found")
    conversation = await uow.conversations.get_by_id(message.conversation_id)
    assert_conversation_access(user_id, conversation)
    if message.deleted:
        raise InvalidStateError("Deleted messages cannot be reacted to")

    value = Reaction(reaction).value if reaction is not None else None
    if message.reactions.get(user_id) == value:
        return message

    await uow.messages_w.set_reaction(message_id, user_id, value)
    await uow.commit()
    message = await uow.messages.get_by_id(message_id)
    assert message is not None
    return message


async def forward_source(
    message_id: uuid.UUID, requester_id: int, uow: UnitOfWork
) -> tuple[Message, ForwardedFrom]:
    """Load a message the requester may forward, with the origin its copies carry."""
    message = await uow.messages.get_by_id(message_id)
    if message is None:
        raise NotFoundError("Message not found")
    conversation = await uow.conversations.get_by_id(message.conversation_id)
    assert_conversation_access(requester_id, conversation)
    if message.deleted:
        raise InvalidStateError("Deleted messages cannot be forwarded")
    return message, ForwardedFrom(
        message_id=message.id,
        conversation_id=message.conversation_id,
        sender_id=message.sender_id,
    )


async def _assert_can_pin(
    conversation_id: uuid.UUID, requester_id: int, uow: UnitOfWork
) -> Conversation:
    conversation = await uow.conversations.get_by_id(conversation_id)
    conversation = assert_conversation_access(requester_id, conversation)
    if not conversation.is_direct:
        assert_group_admin(requester_id, conversation)
    return conversation


async def pin_message(
    conversation_id: uuid.UUID,
    message_id: uuid.UUID,
    requester_id: int,
    uow: UnitOfWork,
    *,
    clock: Clock,
) -> tuple[PinnedMessage, Conversation]:
    """Pin a message. Any participant may pin in a direct chat, only admins in a group."""
    conversation = await _assert_can_pin(conversation_id, requester_id, uow)
    message = await uow.messages.get_by_id(message_id)
    if message is None or message.conversation_id != conversation_id:
        raise NotFoundError("Message not found in this conversation")
    if message.deleted:
        raise InvalidStateError("Deleted messages cannot be pinned")

    pin = PinnedMessage(
        conversation_id=conversation_id,
        message_id=message_id,
        pinned_by=requester_id,
        pinned_at=clock.now(),
    )
    if not await uow.messages_w.pin(pin):
        raise InvalidStateError("Message is already pinned")
    await uow.commit()
    return pin, conversation


async def unpin_message(
    conversation_id: uuid.UUID,
    message_id: uuid.UUID,
    requester_id: int,
    uow: UnitOfWork,
) -> tuple[Conversation, bool]:
    """Unpin a message; unpinning one that is not pinned changes nothing."""
    conversation = await _assert_can_pin(conversation_id, requester_id, uow)
    removed = await uow.messages_w.unpin(conversation_id, message_id)
    if removed:
        await uow.commit()
    return conversation, removed


async def list_pinned(
    conversation_id: uuid.UUID, requester_id: int, uow: UnitOfWork
) -> list[PinnedMessage]:
    conversation = await uow.conversations.get_by_id(conversation_id)
    assert_conversation_access(requester_id, conversation)
    return await uow.messages.list_pinned(conversation_id)


async def page(
    conversation_id: uuid.UUID,
    requester_id: int,
    uow: UnitOfWork,
    *,
    before_seq: int | None = None,
    limit: int = 50,
) -> list[Message]:
    """Up to ``limit`` messages older than ``before_seq``, newest first."""
    if limit <= 0:
        raise InvalidArgumentError("limit must be positive")
    conversation = await uow.conversations.get_by_id(conversation_id)
    assert_conversation_access(requester_id, conversation)
    return await uow.messages.page(conversation_id, before_seq=before_seq, limit=limit)


async def iter_messages(
    conversation_id: uuid.UUID,
    requester_id: int,
    uow: UnitOfWork,
    *,
    page_size: int = 50,
    before_seq: int | None = None,
) -> AsyncIterator[Message]:
    """Walk the whole history backwards, one page at a time."""
    while True:
        batch = await page(
            conversation_id, requester_id, uow, before_seq=before_seq, limit=page_size,
        )
        for message in batch:
            yield message
        if len(batch) < page_size:
            return
        before_seq = batch[-1].seq
