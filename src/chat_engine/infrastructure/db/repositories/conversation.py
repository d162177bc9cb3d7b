from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from chat_engine.domain.entities.conversation import Conversation
from chat_engine.infrastructure.db.mappers import conversation as mapper
from chat_engine.infrastructure.db.models.conversation import ConversationModel
from chat_engine.infrastructure.db.models.participant import ParticipantModel
from chat_engine.infrastructure.db.repositories._upsert import insert_for


async def _active_members(
    session: AsyncSession, conversation_ids: Iterable[UUID]
) -> dict[UUID, tuple[set[int], set[int]]]:
    """Active (members, admins) per conversation."""
    ids = list(conversation_ids)
    members: dict[UUID, tuple[set[int], set[int]]] = {cid: (set(), set()) for cid in ids}
    if not ids:
        return members
    stmt = select(
        ParticipantModel.conversation_id,
        ParticipantModel.user_id,
        ParticipantModel.admin,
    ).where(
        ParticipantModel.conversation_id.in_(ids),
        ParticipantModel.removed_at.is_(None),
    )
    for conversation_id, user_id, admin in (await session.execute(stmt)).all():
        users, admins = members[conversation_id]
        users.add(user_id)
        if admin:
            admins.add(user_id)
    return members


class ConversationReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _one(self, stmt) -> Conversation | None:
        model = (await self._session.execute(stmt)).scalar_one_or_none()
        if model is None:
            return None
        members = await _active_members(self._session, [model.id])
        return mapper.model_to_entity(model, *members[model.id])

    async def get_by_id(self, conversation_id: UUID) -> Conversation | None:
        stmt = (
            select(ConversationModel)
            .where(ConversationModel.id == conversation_id)
            .execution_options(populate_existing=True)
        )
        return await self._one(stmt)

    async def get_by_pair_key(self, pair_key: str) -> Conversation | None:
        stmt = (
            select(ConversationModel)
            .where(ConversationModel.pair_key == pair_key)
            .execution_options(populate_existing=True)
        )
        return await self._one(stmt)

    async def list_for_user(self, user_id: int) -> list[Conversation]:
        activity = func.coalesce(ConversationModel.last_message_at, ConversationModel.created_at)
        stmt = (
            select(ConversationModel)
            .join(
                ParticipantModel,
                ParticipantModel.conversation_id == ConversationModel.id,
            )
            .where(
                ParticipantModel.user_id == user_id,
                ParticipantModel.removed_at.is_(None),
            )
            .order_by(activity.desc(), ConversationModel.created_at.desc())
            .execution_options(populate_existing=True)
        )
        models = (await self._session.execute(stmt)).scalars().all()
        members = await _active_members(self._session, [m.id for m in models])
        return [mapper.model_to_entity(m, *members[m.id]) for m in models]


class ConversationWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _add_members(self, conversation: Conversation) -> None:
        self._session.add_all(
            ParticipantModel(
                id=uuid.uuid4(),
                conversation_id=conversation.id,
                user_id=uid,
                joined_at=conversation.created_at,
                muted=False,
                archived=False,
                admin=uid in conversation.admin_ids,
            )
            for uid in sorted(conversation.participant_ids)
        )
        await self._session.flush()

    async def create(self, conversation: Conversation) -> Conversation:
        self._session.add(ConversationModel(**mapper.entity_to_values(conversation)))
        await self._session.flush()
        await self._add_members(conversation)
        return conversation

    async def create_direct_if_not_exists(
        self, conversation: Conversation
    ) -> tuple[Conversation, bool]:
        """Insert on the unique pair_key; the loser of a race reads the winner's row."""
        table = ConversationModel.__table__
        stmt = (
            insert_for(self._session, table)
            .values(**mapper.entity_to_values(conversation))
            .on_conflict_do_nothing(index_elements=[table.c.pair_key])
            .returning(table.c.id)
        )
        inserted = (await self._session.execute(stmt)).scalar_one_or_none()
        if inserted is not None:
            await self._add_members(conversation)
            return conversation, True

        existing = await ConversationReaderRepo(self._session).get_by_pair_key(
            conversation.pair_key or "",
        )
        assert existing is not None
        return existing, False

    async def touch_last_message_at(
        self,
        conversation_id: UUID,
        ts: datetime,
    ) -> None:
        stmt = (
            update(ConversationModel)
            .where(ConversationModel.id == conversation_id)
            .values(last_message_at=ts, updated_at=ts)
        )
        await self._session.execute(stmt)
