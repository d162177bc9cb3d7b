from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from chat_engine.domain.entities.read_state import ReadState
from chat_engine.infrastructure.db.models.read_state import ReadStateModel
from chat_engine.infrastructure.db.repositories._upsert import insert_for


def _to_entity(model: ReadStateModel) -> ReadState:
    return ReadState(
        conversation_id=model.conversation_id,
        user_id=model.user_id,
        last_read_seq=model.last_read_seq,
        unread_count=model.unread_count,
        updated_at=model.updated_at,
    )


class ReadStateRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, conversation_id: UUID, user_id: int) -> ReadState | None:
        stmt = (
            select(ReadStateModel)
            .where(
                ReadStateModel.conversation_id == conversation_id,
                ReadStateModel.user_id == user_id,
            )
            .execution_options(populate_existing=True)
        )
        model = (await self._session.execute(stmt)).scalar_one_or_none()
        return _to_entity(model) if model else None

    async def list_for_user(self, user_id: int) -> list[ReadState]:
        stmt = (
            select(ReadStateModel)
            .where(ReadStateModel.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return [_to_entity(m) for m in result.scalars().all()]

    async def increment_unread(
        self, conversation_id: UUID, user_ids: Iterable[int], ts: datetime
    ) -> None:
        table = ReadStateModel.__table__
        for user_id in sorted(set(user_ids)):
            stmt = (
                insert_for(self._session, table)
                .values(
                    id=uuid.uuid4(),
                    conversation_id=conversation_id,
                    user_id=user_id,
                    last_read_seq=0,
                    unread_count=1,
                    updated_at=ts,
                )
                .on_conflict_do_update(
                    index_elements=[table.c.conversation_id, table.c.user_id],
                    set_={"unread_count": table.c.unread_count + 1, "updated_at": ts},
                )
            )
            await self._session.execute(stmt)

    async def set_last_read(
        self,
        conversation_id: UUID,
        user_id: int,
        last_read_seq: int,
        unread_count: int,
        ts: datetime,
    ) -> None:
        table = ReadStateModel.__table__
        stmt = (
            insert_for(self._session, table)
            .values(
                id=uuid.uuid4(),
                conversation_id=conversation_id,
                user_id=user_id,
                last_read_seq=last_read_seq,
                unread_count=unread_count,
                updated_at=ts,
            )
            .on_conflict_do_update(
                index_elements=[table.c.conversation_id, table.c.user_id],
                set_={
                    "last_read_seq": last_read_seq,
                    "unread_count": unread_count,
                    "updated_at": ts,
                },
            )
        )
        await self._session.execute(stmt)
