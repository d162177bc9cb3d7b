from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Query, status

from chat_engine.api.deps import CurrentPrincipal, RuntimeDep, UoWDep, page_limit
from chat_engine.api.v1.schemas.conversation import (
    AddParticipantRequest,
    AdminRequest,
    ConversationPageResponse,
    ConversationResponse,
    ConversationSummaryResponse,
    CreateDirectRequest,
    CreateGroupRequest,
    ParticipantResponse,
    SettingsPatchRequest,
)
from chat_engine.application.dto.conversation import SettingsPatch
from chat_engine.services import query_service

router = APIRouter(prefix="/api/v1/chat/conversations", tags=["conversations"])


@router.get("", response_model=list[ConversationSummaryResponse])
async def list_conversations(
    principal: CurrentPrincipal,
    uow: UoWDep,
    include_archived: bool = Query(False),
) -> list[ConversationSummaryResponse]:
    summaries = await query_service.list_conversations(
        principal.user_id, uow, include_archived=include_archived,
    )
    return [ConversationSummaryResponse.model_validate(s) for s in summaries]


@router.post("/direct", response_model=ConversationResponse)
async def get_or_create_direct(
    body: CreateDirectRequest,
    principal: CurrentPrincipal,
    runtime: RuntimeDep,
) -> ConversationResponse:
    conv = await runtime.engine.get_or_create_direct(principal.user_id, body.user_id)
    return ConversationResponse.model_validate(conv)


@router.post("/group", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
async def create_group(
    body: CreateGroupRequest,
    principal: CurrentPrincipal,
    runtime: RuntimeDep,
) -> ConversationResponse:
    conv = await runtime.engine.create_group(
        principal.user_id, body.participant_ids, name=body.name, avatar=body.avatar,
    )
    return ConversationResponse.model_validate(conv)


@router.get("/{conversation_id}", response_model=ConversationPageResponse)
async def get_conversation(
    conversation_id: UUID,
    principal: CurrentPrincipal,
    runtime: RuntimeDep,
    uow: UoWDep,
    before_seq: int | None = Query(None, ge=1),
    limit: int | None = Query(None, ge=1),
) -> ConversationPageResponse:
    page = await query_service.get_conversation(
        conversation_id, principal.user_id, uow,
        before_seq=before_seq, limit=page_limit(runtime, limit),
    )
    return ConversationPageResponse.model_validate(page)


@router.patch("/{conversation_id}/settings", response_model=ParticipantResponse)
async def update_settings(
    conversation_id: UUID,
    body: SettingsPatchRequest,
    principal: CurrentPrincipal,
    runtime: RuntimeDep,
) -> ParticipantResponse:
    participant = await runtime.engine.update_setting(
        conversation_id, principal.user_id,
        SettingsPatch(muted=body.muted, archived=body.archived),
    )
    return ParticipantResponse.model_validate(participant)


@router.post("/{conversation_id}/participants", response_model=ConversationResponse)
async def add_participant(
    conversation_id: UUID,
    body: AddParticipantRequest,
    principal: CurrentPrincipal,
    runtime: RuntimeDep,
) -> ConversationResponse:
    conv = await runtime.engine.add_participant(conversation_id, principal.user_id, body.user_id)
    return ConversationResponse.model_validate(conv)


@router.delete("/{conversation_id}/participants/{user_id}", response_model=ConversationResponse)
async def remove_participant(
    conversation_id: UUID,
    user_id: int,
    principal: CurrentPrincipal,
    runtime: RuntimeDep,
) -> ConversationResponse:
    conv = await runtime.engine.remove_participant(conversation_id, principal.user_id, user_id)
    return ConversationResponse.model_validate(conv)


@router.post("/{conversation_id}/admins", response_model=ConversationResponse)
async def add_admin(
    conversation_id: UUID,
    body: AdminRequest,
    principal: CurrentPrincipal,
    runtime: RuntimeDep,
) -> ConversationResponse:
    conv = await runtime.engine.add_admin(conversation_id, principal.user_id, body.user_id)
    return ConversationResponse.model_validate(conv)


@router.delete("/{conversation_id}/admins/{user_id}", response_model=ConversationResponse)
async def remove_admin(
    conversation_id: UUID,
    user_id: int,
    principal: CurrentPrincipal,
    runtime: RuntimeDep,
) -> ConversationResponse:
    conv = await runtime.engine.remove_admin(conversation_id, principal.user_id, user_id)
    return ConversationResponse.model_validate(conv)
