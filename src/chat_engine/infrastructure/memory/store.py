"""In-process keyed record store.

Every repository method runs without suspending, so each call is atomic with
respect to other tasks on the event loop. Writes apply immediately and
``commit`` is a no-op.
"""
from __future__ import annotations

import itertools
from bisect import bisect_left, bisect_right
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from uuid import UUID

from chat_engine.application.exceptions import NotFoundError
from chat_engine.domain.entities.conversation import Conversation
from chat_engine.domain.entities.message import Message
from chat_engine.domain.entities.participant import Participant
from chat_engine.domain.entities.pin import PinnedMessage
from chat_engine.domain.entities.read_state import ReadState


@dataclass
class MemoryState:
    conversations: dict[UUID, Conversation] = field(default_factory=dict)
    pair_index: dict[str, UUID] = field(default_factory=dict)
    participants: dict[UUID, dict[int, Participant]] = field(default_factory=dict)
    messages: dict[UUID, Message] = field(default_factory=dict)
    timelines: dict[UUID, list[int]] = field(default_factory=dict)
    by_seq: dict[int, UUID] = field(default_factory=dict)
    client_ids: dict[tuple[UUID, int, UUID], UUID] = field(default_factory=dict)
    read_states: dict[tuple[UUID, int], ReadState] = field(default_factory=dict)
    pins: dict[UUID, dict[UUID, PinnedMessage]] = field(default_factory=dict)
    seq: itertools.count = field(default_factory=lambda: itertools.count(1))


def _with_members(state: MemoryState, conversation: Conversation) -> Conversation:
    members = state.participants.get(conversation.id, {})
    active = frozenset(uid for uid, p in members.items() if p.is_active)
    admins = frozenset(uid for uid, p in members.items() if p.is_active and p.admin)
    return replace(conversation, participant_ids=active, admin_ids=admins)


class MemoryConversationReader:
    def __init__(self, state: MemoryState) -> None:
        self._state = state

    async def get_by_id(self, conversation_id: UUID) -> Conversation | None:
        conv = self._state.conversations.get(conversation_id)
        return _with_members(self._state, conv) if conv else None

    async def get_by_pair_key(self, pair_key: str) -> Conversation | None:
        conversation_id = self._state.pair_index.get(pair_key)
        if conversation_id is None:
            return None
        return await self.get_by_id(conversation_id)

    async def list_for_user(self, user_id: int) -> list[Conversation]:
        result = []
        for conversation_id, members in self._state.participants.items():
            member = members.get(user_id)
            if member is None or not member.is_active:
                continue
            result.append(_with_members(self._state, self._state.conversations[conversation_id]))
        result.sort(
            key=lambda c: (c.last_message_at or c.created_at, c.created_at),
            reverse=True,
        )
        return result


class MemoryConversationWriter:
    def __init__(self, state: MemoryState) -> None:
        self._state = state

    async def create(self, conversation: Conversation) -> Conversation:
        self._state.conversations[conversation.id] = conversation
        self._state.participants[conversation.id] = {
            uid: Participant(
                conversation_id=conversation.id,
                user_id=uid,
                joined_at=conversation.created_at,
                admin=uid in conversation.admin_ids,
            )
            for uid in conversation.participant_ids
        }
        self._state.timelines[conversation.id] = []
        if conversation.pair_key is not None:
            self._state.pair_index[conversation.pair_key] = conversation.id
        return _with_members(self._state, conversation)

    async def create_direct_if_not_exists(
        self, conversation: Conversation
    ) -> tuple[Conversation, bool]:
        assert conversation.pair_key is not None
        existing_id = self._state.pair_index.get(conversation.pair_key)
        if existing_id is not None:
            existing = self._state.conversations[existing_id]
            return _with_members(self._state, existing), False
        return await self.create(conversation), True

    async def touch_last_message_at(self, conversation_id: UUID, ts: datetime) -> None:
        conv = self._state.conversations[conversation_id]
        self._state.conversations[conversation_id] = replace(
            conv, last_message_at=ts, updated_at=ts,
        )


class MemoryParticipantReader:
    def __init__(self, state: MemoryState) -> None:
        self._state = state

    async def get(self, conversation_id: UUID, user_id: int) -> Participant | None:
        return self._state.participants.get(conversation_id, {}).get(user_id)

    async def list_participants(
        self, conversation_id: UUID, *, include_removed: bool = False
    ) -> list[Participant]:
        members = self._state.participants.get(conversation_id, {}).values()
        return [p for p in members if include_removed or p.is_active]


class MemoryParticipantWriter:
    def __init__(self, state: MemoryState) -> None:
        self._state = state

    async def add(self, participant: Participant) -> None:
        members = self._state.participants.setdefault(participant.conversation_id, {})
        previous = members.get(participant.user_id)
        if previous is not None:
            participant = replace(
                previous,
                removed_at=None,
                joined_at=participant.joined_at,
                admin=participant.admin,
            )
        members[participant.user_id] = participant

    async def remove(self, conversation_id: UUID, user_id: int, ts: datetime) -> None:
        members = self._state.participants.get(conversation_id, {})
        member = members.get(user_id)
        if member is not None and member.is_active:
            members[user_id] = replace(member, removed_at=ts, admin=False)

    async def set_admin(self, conversation_id: UUID, user_id: int, admin: bool) -> None:
        members = self._state.participants.get(conversation_id, {})
        member = members.get(user_id)
        if member is None:
            raise NotFoundError("Participant not found")
        members[user_id] = replace(member, admin=admin)

    async def update_settings(
        self,
        conversation_id: UUID,
        user_id: int,
        *,
        muted: bool | None = None,
        archived: bool | None = None,
    ) -> Participant:
        members = self._state.participants.get(conversation_id, {})
        member = members.get(user_id)
        if member is None:
            raise NotFoundError("Participant not found")
        if muted is not None:
            member = replace(member, muted=muted)
        if archived is not None:
            member = replace(member, archived=archived)
        members[user_id] = member
        return member


class MemoryMessageReader:
    def __init__(self, state: MemoryState) -> None:
        self._state = state

    def _at(self, seq: int) -> Message:
        return self._state.messages[self._state.by_seq[seq]]

    async def get_by_id(self, message_id: UUID) -> Message | None:
        return self._state.messages.get(message_id)

    async def page(
        self,
        conversation_id: UUID,
        *,
        before_seq: int | None = None,
        limit: int = 50,
    ) -> list[Message]:
        seqs = self._state.timelines.get(conversation_id, [])
        end = len(seqs) if before_seq is None else bisect_left(seqs, before_seq)
        start = max(0, end - limit)
        return [self._at(s) for s in reversed(seqs[start:end])]

    async def latest_seq(self, conversation_id: UUID) -> int:
        seqs = self._state.timelines.get(conversation_id, [])
        return seqs[-1] if seqs else 0

    async def count_after(
        self, conversation_id: UUID, after_seq: int, *, exclude_sender: int
    ) -> int:
        seqs = self._state.timelines.get(conversation_id, [])
        start = bisect_right(seqs, after_seq)
        return sum(1 for s in seqs[start:] if self._at(s).sender_id != exclude_sender)

    async def list_range(
        self, conversation_id: UUID, after_seq: int, up_to_seq: int
    ) -> list[Message]:
        seqs = self._state.timelines.get(conversation_id, [])
        start = bisect_right(seqs, after_seq)
        end = bisect_right(seqs, up_to_seq)
        return [self._at(s) for s in seqs[start:end]]

    async def list_pinned(self, conversation_id: UUID) -> list[PinnedMessage]:
        return list(self._state.pins.get(conversation_id, {}).values())


class MemoryMessageWriter:
    def __init__(self, state: MemoryState) -> None:
        self._state = state

    async def create_if_not_exists(self, message: Message) -> tuple[Message, bool]:
        key = None
        if message.client_msg_id is not None:
            key = (message.conversation_id, message.sender_id, message.client_msg_id)
            existing_id = self._state.client_ids.get(key)
            if existing_id is not None:
                return self._state.messages[existing_id], False

        stored = replace(message, seq=next(self._state.seq))
        self._state.messages[stored.id] = stored
        self._state.timelines.setdefault(stored.conversation_id, []).append(stored.seq)
        self._state.by_seq[stored.seq] = stored.id
        if key is not None:
            self._state.client_ids[key] = stored.id
        return stored, True

    def _get(self, message_id: UUID) -> Message:
        message = self._state.messages.get(message_id)
        if message is None:
            raise NotFoundError("Message not found")
        return message

    async def mark_delivered(
        self, message_id: UUID, user_ids: Iterable[int], ts: datetime
    ) -> None:
        message = self._get(message_id)
        self._state.messages[message_id] = replace(
            message, delivered_to=message.delivered_to | frozenset(user_ids),
        )

    async def mark_read(
        self, message_ids: Iterable[UUID], user_id: int, ts: datetime
    ) -> None:
        for message_id in message_ids:
            message = self._get(message_id)
            if user_id in message.read_by:
                continue
            self._state.messages[message_id] = replace(
                message, read_by=message.read_by | {user_id},
            )

    async def update_content(
        self, message_id: UUID, content: str, edited_at: datetime
    ) -> None:
        message = self._get(message_id)
        self._state.messages[message_id] = replace(
            message, content=content, edited=True, edited_at=edited_at,
        )

    async def soft_delete(self, message_id: UUID, deleted_at: datetime) -> None:
        message = self._get(message_id)
        self._state.messages[message_id] = replace(
            message, content=None, deleted=True, deleted_at=deleted_at, reactions={},
        )
        self._state.pins.get(message.conversation_id, {}).pop(message_id, None)

    async def set_reaction(
        self, message_id: UUID, user_id: int, reaction: str | None
    ) -> None:
        message = self._get(message_id)
        reactions = dict(message.reactions)
        if reaction is None:
            reactions.pop(user_id, None)
        else:
            reactions[user_id] = reaction
        self._state.messages[message_id] = replace(message, reactions=reactions)

    async def pin(self, pin: PinnedMessage) -> bool:
        pins = self._state.pins.setdefault(pin.conversation_id, {})
        if pin.message_id in pins:
            return False
        pins[pin.message_id] = pin
        return True

    async def unpin(self, conversation_id: UUID, message_id: UUID) -> bool:
        return self._state.pins.get(conversation_id, {}).pop(message_id, None) is not None


class MemoryReadStateRepository:
    def __init__(self, state: MemoryState) -> None:
        self._state = state

    async def get(self, conversation_id: UUID, user_id: int) -> ReadState | None:
        return self._state.read_states.get((conversation_id, user_id))

    async def list_for_user(self, user_id: int) -> list[ReadState]:
        return [rs for (_, uid), rs in self._state.read_states.items() if uid == user_id]

    async def increment_unread(
        self, conversation_id: UUID, user_ids: Iterable[int], ts: datetime
    ) -> None:
        for user_id in user_ids:
            key = (conversation_id, user_id)
            current = self._state.read_states.get(key) or ReadState(
                conversation_id=conversation_id,
                user_id=user_id,
                last_read_seq=0,
                unread_count=0,
                updated_at=ts,
            )
            self._state.read_states[key] = replace(
                current, unread_count=current.unread_count + 1, updated_at=ts,
            )

    async def set_last_read(
        self,
        conversation_id: UUID,
        user_id: int,
        last_read_seq: int,
        unread_count: int,
        ts: datetime,
    ) -> None:
        self._state.read_states[(conversation_id, user_id)] = ReadState(
            conversation_id=conversation_id,
            user_id=user_id,
            last_read_seq=last_read_seq,
            unread_count=unread_count,
            updated_at=ts,
        )


class InMemoryUoW:
    """Unit-of-Work over a shared MemoryState."""

    def __init__(self, state: MemoryState) -> None:
        self.conversations = MemoryConversationReader(state)
        self.conversations_w = MemoryConversationWriter(state)
        self.participants = MemoryParticipantReader(state)
        self.participants_w = MemoryParticipantWriter(state)
        self.messages = MemoryMessageReader(state)
        self.messages_w = MemoryMessageWriter(state)
        self.read_states = MemoryReadStateRepository(state)

    async def flush(self) -> None:
        pass

    async def commit(self) -> None:
        pass

    async def rollback(self) -> None:
        pass


class InMemoryStore:
    def __init__(self) -> None:
        self.state = MemoryState()

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[InMemoryUoW]:
        yield InMemoryUoW(self.state)

    async def ping(self) -> None:
        pass

    async def dispose(self) -> None:
        pass
