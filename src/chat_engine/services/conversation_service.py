from __future__ import annotations

import uuid
from collections.abc import Iterable

from chat_engine.application.dto.conversation import SettingsPatch
from chat_engine.application.exceptions import (
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
)
from chat_engine.application.policies.permissions import (
    assert_conversation_access,
    assert_group,
    assert_group_admin,
)
from chat_engine.application.ports.clock import Clock
from chat_engine.application.uow import UnitOfWork
from chat_engine.domain.entities.conversation import Conversation
from chat_engine.domain.entities.participant import Participant
from chat_engine.domain.value_objects.enums import ConversationType
from chat_engine.domain.value_objects.ids import direct_pair_key

MAX_GROUP_NAME_LENGTH = 100


async def get_or_create_direct(
    user_a: int,
    user_b: int,
    uow: UnitOfWork,
    *,
    clock: Clock,
) -> tuple[Conversation, bool]:
    """Return the direct conversation of the unordered pair, creating it if absent.

    Returns (conversation, created).
    """
    if user_a == user_b:
        raise InvalidArgumentError("A direct conversation needs two distinct users")

    pair_key = direct_pair_key(user_a, user_b)
    existing = await uow.conversations.get_by_pair_key(pair_key)
    if existing is not None:
        return existing, False

    now = clock.now()
    conversation = Conversation(
        id=uuid.uuid4(),
        type=ConversationType.DIRECT,
        participant_ids=frozenset((user_a, user_b)),
        creator_id=user_a,
        name=None,
        avatar=None,
        pair_key=pair_key,
        last_message_at=None,
        created_at=now,
        updated_at=now,
    )
    conversation, created = await uow.conversations_w.create_direct_if_not_exists(conversation)
    if created:
        await uow.commit()
    return conversation, created


async def create_group(
    creator_id: int,
    participant_ids: Iterable[int],
    uow: UnitOfWork,
    *,
    clock: Clock,
    name: str | None = None,
    avatar: str | None = None,
) -> Conversation:
    members = frozenset(participant_ids) | {creator_id}
    if len(members) < 2:
        raise InvalidArgumentError("A group needs at least two distinct members")
    if name is not None:
        name = name.strip() or None
    if name is not None and len(name) > MAX_GROUP_NAME_LENGTH:
        raise InvalidArgumentError(f"Group name exceeds {MAX_GROUP_NAME_LENGTH} characters")

    now = clock.now()
    conversation = Conversation(
        id=uuid.uuid4(),
        type=ConversationType.GROUP,
        participant_ids=members,
        creator_id=creator_id,
        name=name,
        avatar=avatar,
        pair_key=None,
        last_message_at=None,
        created_at=now,
        updated_at=now,
        admin_ids=frozenset((creator_id,)),
    )
    conversation = await uow.conversations_w.create(conversation)
    await uow.commit()
    return conversation


async def get_membership(conversation_id: uuid.UUID, uow: UnitOfWork) -> frozenset[int]:
    conversation = await uow.conversations.get_by_id(conversation_id)
    if conversation is None:
        raise NotFoundError("Conversation not found")
    return conversation.participant_ids


async def update_setting(
    conversation_id: uuid.UUID,
    user_id: int,
    patch: SettingsPatch,
    uow: UnitOfWork,
) -> Participant:
    """Change one participant's own mute/archive flags."""
    conversation = await uow.conversations.get_by_id(conversation_id)
    assert_conversation_access(user_id, conversation)
    participant = await uow.participants_w.update_settings(
        conversation_id, user_id, muted=patch.muted, archived=patch.archived,
    )
    await uow.commit()
    return participant


async def add_participant(
    conversation_id: uuid.UUID,
    requester_id: int,
    user_id: int,
    uow: UnitOfWork,
    *,
    clock: Clock,
) -> tuple[Conversation, bool]:
    conversation = await uow.conversations.get_by_id(conversation_id)
    conversation = assert_conversation_access(requester_id, conversation)
    assert_group_admin(requester_id, conversation)

    if conversation.has_participant(user_id):
        return conversation, False

    await uow.participants_w.add(
        Participant(
            conversation_id=conversation_id,
            user_id=user_id,
            joined_at=clock.now(),
        )
    )
    await uow.commit()
    updated = await uow.conversations.get_by_id(conversation_id)
    assert updated is not None
    return updated, True


async def remove_participant(
    conversation_id: uuid.UUID,
    requester_id: int,
    user_id: int,
    uow: UnitOfWork,
    *,
    clock: Clock,
) -> Conversation:
    """Remove a member from a group, or let a member leave.

    Admin rights go with the membership. Historical receipts of the removed user stay untouched.
    """
    conversation = await uow.conversations.get_by_id(conversation_id)
    conversation = assert_conversation_access(requester_id, conversation)
    if requester_id != user_id:
        assert_group_admin(requester_id, conversation)
    else:
        assert_group(conversation)

    if not conversation.has_participant(user_id):
        raise NotFoundError("Participant not found")
    if user_id == conversation.creator_id:
        raise InvalidStateError("The group creator cannot be removed")
    if conversation.admin_ids == {user_id}:
        raise InvalidStateError("The last admin cannot leave the group")

    await uow.participants_w.remove(conversation_id, user_id, clock.now())
    await uow.commit()
    updated = await uow.conversations.get_by_id(conversation_id)
    assert updated is not None
    return updated


async def add_admin(
    conversation_id: uuid.UUID,
    requester_id: int,
    user_id: int,
    uow: UnitOfWork,
) -> tuple[Conversation, bool]:
    """Grant admin rights to a group member. Idempotent; returns (conversation, changed)."""
    conversation = await uow.conversations.get_by_id(conversation_id)
    conversation = assert_conversation_access(requester_id, conversation)
    assert_group_admin(requester_id, conversation)
    if not conversation.has_participant(user_id):
        raise NotFoundError("Participant not found")
    if conversation.is_admin(user_id):
        return conversation, False

    await uow.participants_w.set_admin(conversation_id, user_id, True)
    await uow.commit()
    updated = await uow.conversations.get_by_id(conversation_id)
    assert updated is not None
    return updated, True


async def remove_admin(
    conversation_id: uuid.UUID,
    requester_id: int,
    user_id: int,
    uow: UnitOfWork,
) -> tuple[Conversation, bool]:
    conversation = await uow.conversations.get_by_id(conversation_id)
    conversation = assert_conversation_access(requester_id, conversation)
    assert_group_admin(requester_id, conversation)
    if not conversation.is_admin(user_id):
        return conversation, False
    if len(conversation.admin_ids) == 1:
        raise InvalidStateError("A group needs at least one admin")

    await uow.participants_w.set_admin(conversation_id, user_id, False)
    await uow.commit()
    updated = await uow.conversations.get_by_id(conversation_id)
    assert updated is not None
    return updated, True
