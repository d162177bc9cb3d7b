from __future__ import annotations

import uuid
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from chat_engine.application.exceptions import NotFoundError
from chat_engine.domain.entities.participant import Participant
from chat_engine.infrastructure.db.mappers import participant as mapper
from chat_engine.infrastructure.db.models.participant import ParticipantModel
from chat_engine.infrastructure.db.repositories._upsert import insert_for


class ParticipantReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, conversation_id: UUID, user_id: int) -> Participant | None:
        stmt = (
            select(ParticipantModel)
            .where(
                ParticipantModel.conversation_id == conversation_id,
                ParticipantModel.user_id == user_id,
            )
            .execution_options(populate_existing=True)
        )
        model = (await self._session.execute(stmt)).scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None

    async def list_participants(
        self, conversation_id: UUID, *, include_removed: bool = False
    ) -> list[Participant]:
        stmt = (
            select(ParticipantModel)
            .where(ParticipantModel.conversation_id == conversation_id)
            .order_by(ParticipantModel.user_id)
            .execution_options(populate_existing=True)
        )
        if not include_removed:
            stmt = stmt.where(ParticipantModel.removed_at.is_(None))
        result = await self._session.execute(stmt)
        return [mapper.model_to_entity(m) for m in result.scalars().all()]


class ParticipantWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, participant: Participant) -> None:
        table = ParticipantModel.__table__
        stmt = (
            insert_for(self._session, table)
            .values(
                id=uuid.uuid4(),
                conversation_id=participant.conversation_id,
                user_id=participant.user_id,
                joined_at=participant.joined_at,
                muted=participant.muted,
                archived=participant.archived,
                admin=participant.admin,
                removed_at=None,
            )
            .on_conflict_do_update(
                index_elements=[table.c.conversation_id, table.c.user_id],
                set_={
                    "removed_at": None,
                    "joined_at": participant.joined_at,
                    "admin": participant.admin,
                },
            )
        )
        await self._session.execute(stmt)

    async def remove(self, conversation_id: UUID, user_id: int, ts: datetime) -> None:
        stmt = (
            update(ParticipantModel)
            .where(
                ParticipantModel.conversation_id == conversation_id,
                ParticipantModel.user_id == user_id,
                ParticipantModel.removed_at.is_(None),
            )
            .values(removed_at=ts, admin=False)
        )
        await self._session.execute(stmt)

    async def set_admin(self, conversation_id: UUID, user_id: int, admin: bool) -> None:
        stmt = (
            update(ParticipantModel)
            .where(
                ParticipantModel.conversation_id == conversation_id,
                ParticipantModel.user_id == user_id,
            )
            .values(admin=admin)
        )
        if (await self._session.execute(stmt)).rowcount == 0:
            raise NotFoundError("Participant not found")

    async def update_settings(
        self,
        conversation_id: UUID,
        user_id: int,
        *,
        muted: bool | None = None,
        archived: bool | None = None,
    ) -> Participant:
        values = {}
        if muted is not None:
            values["muted"] = muted
        if archived is not None:
            values["archived"] = archived
        if values:
            stmt = (
                update(ParticipantModel)
                .where(
                    ParticipantModel.conversation_id == conversation_id,
                    ParticipantModel.user_id == user_id,
                )
                .values(**values)
            )
            await self._session.execute(stmt)
        participant = await ParticipantReaderRepo(self._session).get(conversation_id, user_id)
        if participant is None:
            raise NotFoundError("Participant not found")
        return participant
