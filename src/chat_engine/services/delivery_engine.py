"""Orchestrates durable writes and the real-time fan-out that follows them.

Every mutation is committed to the store before any event leaves the
process. Once the commit has happened the operation has succeeded: a failed
delivery mark, fan-out or integration publish is logged and swallowed.
"""
from __future__ import annotations

import logging
import uuid
from collections.abc import Collection, Iterable
from dataclasses import replace
from typing import Any

from chat_engine.application.dto.conversation import SettingsPatch
from chat_engine.application.dto.message import ReadMark
from chat_engine.application.exceptions import ForbiddenError, InvalidArgumentError, NotFoundError
from chat_engine.application.locks import KeyedLock
from chat_engine.application.policies.permissions import assert_conversation_access
from chat_engine.application.ports.bus import EventPublisher
from chat_engine.application.ports.clock import Clock, SystemClock
from chat_engine.application.uow import UnitOfWorkFactory
from chat_engine.domain.entities.conversation import Conversation
from chat_engine.domain.entities.message import Message
from chat_engine.domain.entities.participant import Participant
from chat_engine.domain.entities.pin import PinnedMessage
from chat_engine.domain.value_objects.enums import EventName, MessageType, Namespace, Reaction
from chat_engine.domain.value_objects.ids import direct_pair_key
from chat_engine.domain.value_objects.rooms import conversation_room, user_room
from chat_engine.realtime import events
from chat_engine.realtime.presence import PresenceTracker
from chat_engine.realtime.protocol import Envelope
from chat_engine.realtime.router import EventRouter
from chat_engine.realtime.typing_indicators import TypingTracker
from chat_engine.services import conversation_service, message_service

logger = logging.getLogger(__name__)

MESSAGE_CREATED = "chat.message_created"


class DeliveryEngine:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        presence: PresenceTracker,
        router: EventRouter,
        *,
        clock: Clock | None = None,
        publisher: EventPublisher | None = None,
        typing: TypingTracker | None = None,
        integration_channel: str = "chat.integration",
    ) -> None:
        self._uow = uow_factory
        self._presence = presence
        self._router = router
        self._typing = typing
        self._clock = clock or SystemClock()
        self._publisher = publisher
        self._integration_channel = integration_channel
        self._direct_locks = KeyedLock()
        # Appends and read marks of one conversation are serialized so an
        # unread increment is never overwritten by a stale recount.
        self._conversation_locks = KeyedLock()

    # -- conversations -----------------------------------------------------

    async def ensure_member(self, conversation_id: uuid.UUID, user_id: int) -> Conversation:
        async with self._uow() as uow:
            conversation = await uow.conversations.get_by_id(conversation_id)
        return assert_conversation_access(user_id, conversation)

    async def get_or_create_direct(self, user_a: int, user_b: int) -> Conversation:
        async with self._direct_locks.hold(direct_pair_key(user_a, user_b)):
            async with self._uow() as uow:
                conversation, created = await conversation_service.get_or_create_direct(
                    user_a, user_b, uow, clock=self._clock,
                )
        if created:
            logger.info("Direct conversation %s created for %s/%s", conversation.id, user_a, user_b)
            self._announce(conversation, "created")
        return conversation

    async def create_group(
        self,
        creator_id: int,
        participant_ids: Iterable[int],
        *,
        name: str | None = None,
        avatar: str | None = None,
    ) -> Conversation:
        async with self._uow() as uow:
            conversation = await conversation_service.create_group(
                creator_id, participant_ids, uow, clock=self._clock, name=name, avatar=avatar,
            )
        logger.info("Group %s created by %s", conversation.id, creator_id)
        self._announce(conversation, "created")
        return conversation

    async def get_membership(self, conversation_id: uuid.UUID) -> frozenset[int]:
        async with self._uow() as uow:
            return await conversation_service.get_membership(conversation_id, uow)

    async def update_setting(
        self, conversation_id: uuid.UUID, user_id: int, patch: SettingsPatch
    ) -> Participant:
        async with self._uow() as uow:
            return await conversation_service.update_setting(conversation_id, user_id, patch, uow)

    async def add_participant(
        self, conversation_id: uuid.UUID, requester_id: int, user_id: int
    ) -> Conversation:
        async with self._uow() as uow:
            conversation, added = await conversation_service.add_participant(
                conversation_id, requester_id, user_id, uow, clock=self._clock,
            )
        if added:
            self._fan_out(
                events.conversation_event(
                    conversation_room(conversation_id), conversation, "participant_added",
                    user_id=user_id,
                )
            )
            self._fan_out(
                events.conversation_event(user_room(user_id), conversation, "participant_added",
                                          user_id=user_id)
            )
        return conversation

    async def remove_participant(
        self, conversation_id: uuid.UUID, requester_id: int, user_id: int
    ) -> Conversation:
        async with self._uow() as uow:
            conversation = await conversation_service.remove_participant(
                conversation_id, requester_id, user_id, uow, clock=self._clock,
            )
        room = conversation_room(conversation_id)
        if self._typing is not None:
            self._typing.stop(conversation_id, user_id, reason="removed")
        change = self._presence.unsubscribe_user(user_id, room)
        if change is not None:
            self._router.publish_presence(change)
        self._fan_out(
            events.conversation_event(room, conversation, "participant_removed", user_id=user_id)
        )
        self._fan_out(
            events.conversation_event(user_room(user_id), conversation, "participant_removed",
                                      user_id=user_id)
        )
        return conversation

    # -- messages ----------------------------------------------------------

    async def send(
        self,
        conversation_id: uuid.UUID,
        sender_id: int,
        content: str | None,
        *,
        msg_type: MessageType = MessageType.TEXT,
        reply_to: uuid.UUID | None = None,
        client_msg_id: uuid.UUID | None = None,
    ) -> Message:
        """Append, mark delivered to present recipients, then fan out.

        Only the append can fail the call. A retried client_msg_id returns
        the stored message and emits nothing.
        """
        async with self._conversation_locks.hold(conversation_id):
            async with self._uow() as uow:
                message, conversation, created = await message_service.append(
                    conversation_id, sender_id, content, uow,
                    clock=self._clock, msg_type=msg_type,
                    reply_to=reply_to, client_msg_id=client_msg_id,
                )
        if not created:
            logger.info("Duplicate send %s in %s ignored", client_msg_id, conversation_id)
            return message
        return await self._deliver(conversation, message)

    async def _deliver(self, conversation: Conversation, message: Message) -> Message:
        """Record delivery to the room's messaging sessions and fan out to exactly those."""
        room = conversation_room(conversation.id)
        recipients = conversation.participant_ids - {message.sender_id}
        # One snapshot decides both the receipts and the frame's audience.
        targets = self._router.audience(room, Namespace.MESSAGING)
        present = frozenset(
            uid for uid in (self._presence.user_of(sid) for sid in targets) if uid in recipients
        )
        if present:
            try:
                async with self._uow() as uow:
                    await message_service.mark_delivered(
                        message.id, present, uow, clock=self._clock,
                    )
                message = replace(message, delivered_to=message.delivered_to | present)
            except Exception:
                logger.exception("Could not record delivery of message %s", message.id)

        self._fan_out(
            events.message_event(EventName.MESSAGE_RECEIVED, message),
            exclude_users=(message.sender_id,),
            sessions=targets,
        )
        await self._notify_elsewhere(conversation, message, recipients - present)
        await self._publish_integration(conversation, message)
        return message

    async def forward(
        self, message_id: uuid.UUID, requester_id: int, conversation_ids: Iterable[uuid.UUID]
    ) -> list[Message]:
        """Copy a message into other conversations of the requester.

        Targets the requester does not belong to are skipped. Each copy is
        delivered like a new message and carries ``forwarded_from``.
        """
        targets = list(dict.fromkeys(conversation_ids))
        if not targets:
            raise InvalidArgumentError("At least one target conversation is required")
        async with self._uow() as uow:
            source, origin = await message_service.forward_source(message_id, requester_id, uow)

        forwarded = []
        for conversation_id in targets:
            async with self._conversation_locks.hold(conversation_id):
                try:
                    async with self._uow() as uow:
                        message, conversation, _ = await message_service.append(
                            conversation_id, requester_id, source.content, uow,
                            clock=self._clock, msg_type=MessageType(source.type),
                            forwarded_from=origin,
                        )
                except (NotFoundError, ForbiddenError):
                    logger.info(
                        "Forward of %s by %s to %s skipped", message_id, requester_id,
                        conversation_id,
                    )
                    continue
            forwarded.append(await self._deliver(conversation, message))
        return forwarded

    async def send_direct(
        self,
        sender_id: int,
        recipient_id: int,
        content: str | None,
        *,
        msg_type: MessageType = MessageType.TEXT,
        reply_to: uuid.UUID | None = None,
        client_msg_id: uuid.UUID | None = None,
    ) -> Message:
        conversation = await self.get_or_create_direct(sender_id, recipient_id)
        return await self.send(
            conversation.id, sender_id, content,
            msg_type=msg_type, reply_to=reply_to, client_msg_id=client_msg_id,
        )

    async def mark_read(
        self, conversation_id: uuid.UUID, user_id: int, up_to_seq: int
    ) -> ReadMark:
        async with self._conversation_locks.hold(conversation_id):
            async with self._uow() as uow:
                mark = await message_service.mark_read_up_to(
                    conversation_id, user_id, up_to_seq, uow, clock=self._clock,
                )
        if mark.advanced:
            self._fan_out(
                events.read_receipt_event(
                    conversation_id, user_id, mark.last_read_seq, mark.message_ids,
                )
            )
        return mark

    async def mark_message_read(self, message_id: uuid.UUID, user_id: int) -> ReadMark:
        """Read everything up to and including one message."""
        async with self._uow() as uow:
            message = await uow.messages.get_by_id(message_id)
        if message is None:
            raise NotFoundError("Message not found")
        return await self.mark_read(message.conversation_id, user_id, message.seq)

    async def edit(self, message_id: uuid.UUID, requester_id: int, content: str | None) -> Message:
        async with self._uow() as uow:
            message = await message_service.edit(
                message_id, requester_id, content, uow, clock=self._clock,
            )
        self._fan_out(events.message_event(EventName.MESSAGE_EDITED, message))
        return message

    async def delete(self, message_id: uuid.UUID, requester_id: int) -> Message:
        async with self._uow() as uow:
            message, changed = await message_service.soft_delete(
                message_id, requester_id, uow, clock=self._clock,
            )
        if changed:
            self._fan_out(events.message_event(EventName.MESSAGE_DELETED, message))
        return message

    async def react(
        self, message_id: uuid.UUID, user_id: int, reaction: Reaction | None
    ) -> Message:
        async with self._uow() as uow:
            message = await message_service.react(message_id, user_id, reaction, uow)
        self._fan_out(
            events.reaction_event(message, user_id, message.reactions.get(user_id))
        )
        return message

    async def list_pinned(
        self, conversation_id: uuid.UUID, user_id: int
    ) -> list[PinnedMessage]:
        async with self._uow() as uow:
            return await message_service.list_pinned(conversation_id, user_id, uow)

    async def pin(
        self, conversation_id: uuid.UUID, message_id: uuid.UUID, requester_id: int
    ) -> PinnedMessage:
        async with self._uow() as uow:
            pin, conversation = await message_service.pin_message(
                conversation_id, message_id, requester_id, uow, clock=self._clock,
            )
        self._fan_out(
            events.conversation_event(
                conversation_room(conversation_id), conversation, "message_pinned",
                message_id=str(message_id), pinned_by=requester_id,
            )
        )
        return pin

    async def unpin(
        self, conversation_id: uuid.UUID, message_id: uuid.UUID, requester_id: int
    ) -> bool:
        async with self._uow() as uow:
            conversation, removed = await message_service.unpin_message(
                conversation_id, message_id, requester_id, uow,
            )
        if removed:
            self._fan_out(
                events.conversation_event(
                    conversation_room(conversation_id), conversation, "message_unpinned",
                    message_id=str(message_id), unpinned_by=requester_id,
                )
            )
        return removed

    # -- admins ------------------------------------------------------------

    async def add_admin(
        self, conversation_id: uuid.UUID, requester_id: int, user_id: int
    ) -> Conversation:
        async with self._uow() as uow:
            conversation, changed = await conversation_service.add_admin(
                conversation_id, requester_id, user_id, uow,
            )
        if changed:
            logger.info("User %s made admin of %s by %s", user_id, conversation_id, requester_id)
            self._fan_out(
                events.conversation_event(
                    conversation_room(conversation_id), conversation, "admin_added",
                    user_id=user_id,
                )
            )
        return conversation

    async def remove_admin(
        self, conversation_id: uuid.UUID, requester_id: int, user_id: int
    ) -> Conversation:
        async with self._uow() as uow:
            conversation, changed = await conversation_service.remove_admin(
                conversation_id, requester_id, user_id, uow,
            )
        if changed:
            self._fan_out(
                events.conversation_event(
                    conversation_room(conversation_id), conversation, "admin_removed",
                    user_id=user_id,
                )
            )
        return conversation

    # -- fan-out -----------------------------------------------------------

    def _fan_out(
        self,
        envelope: Envelope,
        *,
        exclude_users: Iterable[int] = (),
        sessions: Collection[str] | None = None,
    ) -> int:
        try:
            return self._router.publish(
                envelope, exclude_users=frozenset(exclude_users), sessions=sessions,
            )
        except Exception:
            logger.exception("Fan-out of %s to %s failed", envelope.event, envelope.room)
            return 0

    def _announce(self, conversation: Conversation, action: str) -> None:
        for user_id in sorted(conversation.participant_ids):
            self._fan_out(events.conversation_event(user_room(user_id), conversation, action))

    async def _notify_elsewhere(
        self, conversation: Conversation, message: Message, absent: frozenset[int]
    ) -> None:
        """Push notification:new to online recipients who have not joined the room."""
        online = self._presence.online_users(absent)
        if not online:
            return
        try:
            async with self._uow() as uow:
                members = await uow.participants.list_participants(conversation.id)
        except Exception:
            logger.exception("Could not load settings for %s notifications", conversation.id)
            return
        muted = {p.user_id for p in members if p.muted}
        for user_id in sorted(online - muted):
            self._fan_out(events.message_notification(user_id, conversation, message))

    async def _publish_integration(self, conversation: Conversation, message: Message) -> None:
        if self._publisher is None:
            return
        recipients = conversation.participant_ids - {message.sender_id}
        payload: dict[str, Any] = {
            "event_type": MESSAGE_CREATED,
            "message_id": str(message.id),
            "conversation_id": str(message.conversation_id),
            "sender_id": message.sender_id,
            "type": message.type,
            "seq": message.seq,
            "created_at": message.created_at.isoformat(),
            "offline_recipient_ids": sorted(
                recipients - self._presence.online_users(recipients)
            ),
        }
        try:
            await self._publisher.publish(self._integration_channel, payload)
        except Exception:
            logger.exception("Failed to publish %s for message %s", MESSAGE_CREATED, message.id)
