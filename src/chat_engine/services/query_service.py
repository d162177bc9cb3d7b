from __future__ import annotations

import uuid

from chat_engine.application.dto.conversation import ConversationPage, ConversationSummary
from chat_engine.application.policies.permissions import assert_conversation_access
from chat_engine.application.uow import UnitOfWork
from chat_engine.domain.entities.conversation import Conversation
from chat_engine.services import message_service


async def _summarize(
    conversation: Conversation, user_id: int, uow: UnitOfWork
) -> ConversationSummary:
    state = await uow.read_states.get(conversation.id, user_id)
    member = await uow.participants.get(conversation.id, user_id)
    return ConversationSummary(
        conversation=conversation,
        unread_count=state.unread_count if state else 0,
        last_read_seq=state.last_read_seq if state else 0,
        muted=member.muted if member else False,
        archived=member.archived if member else False,
    )


async def list_conversations(
    user_id: int,
    uow: UnitOfWork,
    *,
    include_archived: bool = False,
) -> list[ConversationSummary]:
    """User's conversations with unread counters, most recent activity first."""
    summaries = []
    for conversation in await uow.conversations.list_for_user(user_id):
        summary = await _summarize(conversation, user_id, uow)
        if summary.archived and not include_archived:
            continue
        summaries.append(summary)
    return summaries


async def get_conversation(
    conversation_id: uuid.UUID,
    user_id: int,
    uow: UnitOfWork,
    *,
    before_seq: int | None = None,
    limit: int = 50,
) -> ConversationPage:
    conversation = await uow.conversations.get_by_id(conversation_id)
    conversation = assert_conversation_access(user_id, conversation)
    messages = await message_service.page(
        conversation_id, user_id, uow, before_seq=before_seq, limit=limit,
    )
    next_before = messages[-1].seq if len(messages) == limit else None
    return ConversationPage(
        summary=await _summarize(conversation, user_id, uow),
        messages=messages,
        next_before_seq=next_before,
    )


async def unread_count(conversation_id: uuid.UUID, user_id: int, uow: UnitOfWork) -> int:
    conversation = await uow.conversations.get_by_id(conversation_id)
    assert_conversation_access(user_id, conversation)
    state = await uow.read_states.get(conversation_id, user_id)
    return state.unread_count if state else 0
