from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from chat_engine.domain.entities.message import Message
from chat_engine.domain.entities.pin import PinnedMessage
from chat_engine.infrastructure.db.mappers import message as mapper
from chat_engine.infrastructure.db.models.message import (
    MessageModel,
    MessageReactionModel,
    MessageReceiptModel,
    PinnedMessageModel,
)
from chat_engine.infrastructure.db.repositories._upsert import insert_for

DELIVERED = "delivered"
READ = "read"


async def _hydrate(session: AsyncSession, models: Sequence[MessageModel]) -> list[Message]:
    """Attach receipt sets and reactions to message rows."""
    ids = [m.id for m in models]
    if not ids:
        return []
    delivered: dict[UUID, set[int]] = {mid: set() for mid in ids}
    read: dict[UUID, set[int]] = {mid: set() for mid in ids}
    reactions: dict[UUID, dict[int, str]] = {mid: {} for mid in ids}

    receipts = select(
        MessageReceiptModel.message_id,
        MessageReceiptModel.user_id,
        MessageReceiptModel.kind,
    ).where(MessageReceiptModel.message_id.in_(ids))
    for message_id, user_id, kind in (await session.execute(receipts)).all():
        (delivered if kind == DELIVERED else read)[message_id].add(user_id)

    reaction_rows = select(
        MessageReactionModel.message_id,
        MessageReactionModel.user_id,
        MessageReactionModel.reaction,
    ).where(MessageReactionModel.message_id.in_(ids))
    for message_id, user_id, reaction in (await session.execute(reaction_rows)).all():
        reactions[message_id][user_id] = reaction

    return [
        mapper.model_to_entity(
            m,
            delivered_to=frozenset(delivered[m.id]),
            read_by=frozenset(read[m.id]),
            reactions=reactions[m.id],
        )
        for m in models
    ]


class MessageReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _fetch(self, stmt) -> list[Message]:
        stmt = stmt.execution_options(populate_existing=True)
        models = (await self._session.execute(stmt)).scalars().all()
        return await _hydrate(self._session, models)

    async def get_by_id(self, message_id: UUID) -> Message | None:
        found = await self._fetch(select(MessageModel).where(MessageModel.id == message_id))
        return found[0] if found else None

    async def page(
        self,
        conversation_id: UUID,
        *,
        before_seq: int | None = None,
        limit: int = 50,
    ) -> list[Message]:
        stmt = (
            select(MessageModel)
            .where(MessageModel.conversation_id == conversation_id)
            .order_by(MessageModel.seq.desc())
            .limit(limit)
        )
        if before_seq is not None:
            stmt = stmt.where(MessageModel.seq < before_seq)
        return await self._fetch(stmt)

    async def latest_seq(self, conversation_id: UUID) -> int:
        stmt = select(func.coalesce(func.max(MessageModel.seq), 0)).where(
            MessageModel.conversation_id == conversation_id,
        )
        return int((await self._session.execute(stmt)).scalar_one())

    async def count_after(
        self, conversation_id: UUID, after_seq: int, *, exclude_sender: int
    ) -> int:
        stmt = select(func.count()).select_from(MessageModel).where(
            MessageModel.conversation_id == conversation_id,
            MessageModel.seq > after_seq,
            MessageModel.sender_id != exclude_sender,
        )
        return int((await self._session.execute(stmt)).scalar_one())

    async def list_range(
        self, conversation_id: UUID, after_seq: int, up_to_seq: int
    ) -> list[Message]:
        stmt = (
            select(MessageModel)
            .where(
                MessageModel.conversation_id == conversation_id,
                MessageModel.seq > after_seq,
                MessageModel.seq <= up_to_seq,
            )
            .order_by(MessageModel.seq.asc())
        )
        return await self._fetch(stmt)

    async def list_pinned(self, conversation_id: UUID) -> list[PinnedMessage]:
        stmt = (
            select(PinnedMessageModel)
            .where(PinnedMessageModel.conversation_id == conversation_id)
            .order_by(PinnedMessageModel.pinned_at.asc())
            .execution_options(populate_existing=True)
        )
        models = (await self._session.execute(stmt)).scalars().all()
        return [mapper.pin_to_entity(m) for m in models]


class MessageWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create_if_not_exists(self, message: Message) -> tuple[Message, bool]:
        """Insert message idempotently. Returns (message, created_flag)."""
        table = MessageModel.__table__
        stmt = (
            insert_for(self._session, table)
            .values(**mapper.entity_to_values(message))
            .on_conflict_do_nothing(
                index_elements=[table.c.conversation_id, table.c.sender_id, table.c.client_msg_id],
            )
            .returning(table.c.seq)
        )
        seq = (await self._session.execute(stmt)).scalar_one_or_none()

        if seq is not None:
            return await self._reload(message.id), True

        # Conflict on client_msg_id: fetch existing
        existing = await MessageReaderRepo(self._session)._fetch(
            select(MessageModel).where(
                MessageModel.conversation_id == message.conversation_id,
                MessageModel.sender_id == message.sender_id,
                MessageModel.client_msg_id == message.client_msg_id,
            )
        )
        assert existing
        return existing[0], False

    async def _reload(self, message_id: UUID) -> Message:
        message = await MessageReaderRepo(self._session).get_by_id(message_id)
        assert message is not None
        return message

    async def _add_receipts(self, rows: list[dict]) -> None:
        if not rows:
            return
        table = MessageReceiptModel.__table__
        stmt = (
            insert_for(self._session, table)
            .values(rows)
            .on_conflict_do_nothing(
                index_elements=[table.c.message_id, table.c.user_id, table.c.kind],
            )
        )
        await self._session.execute(stmt)

    async def mark_delivered(
        self, message_id: UUID, user_ids: Iterable[int], ts: datetime
    ) -> None:
        await self._add_receipts([
            {"message_id": message_id, "user_id": uid, "kind": DELIVERED, "at": ts}
            for uid in sorted(set(user_ids))
        ])

    async def mark_read(
        self, message_ids: Iterable[UUID], user_id: int, ts: datetime
    ) -> None:
        await self._add_receipts([
            {"message_id": mid, "user_id": user_id, "kind": READ, "at": ts}
            for mid in dict.fromkeys(message_ids)
        ])

    async def update_content(
        self, message_id: UUID, content: str, edited_at: datetime
    ) -> None:
        stmt = (
            update(MessageModel)
            .where(MessageModel.id == message_id)
            .values(content=content, edited=True, edited_at=edited_at)
        )
        await self._session.execute(stmt)

    async def soft_delete(self, message_id: UUID, deleted_at: datetime) -> None:
        stmt = (
            update(MessageModel)
            .where(MessageModel.id == message_id)
            .values(content=None, deleted=True, deleted_at=deleted_at)
        )
        await self._session.execute(stmt)
        await self._session.execute(
            delete(MessageReactionModel).where(MessageReactionModel.message_id == message_id)
        )
        await self._session.execute(
            delete(PinnedMessageModel).where(PinnedMessageModel.message_id == message_id)
        )

    async def set_reaction(
        self, message_id: UUID, user_id: int, reaction: str | None
    ) -> None:
        if reaction is None:
            await self._session.execute(
                delete(MessageReactionModel).where(
                    MessageReactionModel.message_id == message_id,
                    MessageReactionModel.user_id == user_id,
                )
            )
            return
        table = MessageReactionModel.__table__
        stmt = (
            insert_for(self._session, table)
            .values(message_id=message_id, user_id=user_id, reaction=reaction)
            .on_conflict_do_update(
                index_elements=[table.c.message_id, table.c.user_id],
                set_={"reaction": reaction},
            )
        )
        await self._session.execute(stmt)

    async def pin(self, pin: PinnedMessage) -> bool:
        table = PinnedMessageModel.__table__
        stmt = (
            insert_for(self._session, table)
            .values(
                conversation_id=pin.conversation_id,
                message_id=pin.message_id,
                pinned_by=pin.pinned_by,
                pinned_at=pin.pinned_at,
            )
            .on_conflict_do_nothing(
                index_elements=[table.c.conversation_id, table.c.message_id],
            )
            .returning(table.c.message_id)
        )
        return (await self._session.execute(stmt)).scalar_one_or_none() is not None

    async def unpin(self, conversation_id: UUID, message_id: UUID) -> bool:
        stmt = (
            delete(PinnedMessageModel)
            .where(
                PinnedMessageModel.conversation_id == conversation_id,
                PinnedMessageModel.message_id == message_id,
            )
        )
        return (await self._session.execute(stmt)).rowcount > 0
