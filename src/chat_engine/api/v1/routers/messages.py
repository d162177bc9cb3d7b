from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Query, status

from chat_engine.api.deps import CurrentPrincipal, RuntimeDep, UoWDep, page_limit
from chat_engine.api.v1.schemas.common import SeqPage
from chat_engine.api.v1.schemas.message import (
    EditMessageRequest,
    ForwardRequest,
    MarkReadRequest,
    MessageResponse,
    PinnedMessageResponse,
    ReactionRequest,
    ReadMarkResponse,
    SendDirectRequest,
    SendMessageRequest,
)
from chat_engine.services import message_service

router = APIRouter(prefix="/api/v1/chat", tags=["messages"])


@router.get("/conversations/{conversation_id}/messages", response_model=SeqPage[MessageResponse])
async def list_messages(
    conversation_id: UUID,
    principal: CurrentPrincipal,
    runtime: RuntimeDep,
    uow: UoWDep,
    before_seq: int | None = Query(None, ge=1),
    limit: int | None = Query(None, ge=1),
) -> SeqPage[MessageResponse]:
    limit = page_limit(runtime, limit)
    messages = await message_service.page(
        conversation_id, principal.user_id, uow, before_seq=before_seq, limit=limit,
    )
    return SeqPage[MessageResponse](
        items=[MessageResponse.model_validate(m) for m in messages],
        next_before_seq=messages[-1].seq if len(messages) == limit else None,
    )


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: UUID,
    body: SendMessageRequest,
    principal: CurrentPrincipal,
    runtime: RuntimeDep,
) -> MessageResponse:
    msg = await runtime.engine.send(
        conversation_id,
        principal.user_id,
        body.content,
        msg_type=body.type,
        reply_to=body.reply_to,
        client_msg_id=body.client_msg_id,
    )
    return MessageResponse.model_validate(msg)


@router.post("/messages/direct", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_direct_message(
    body: SendDirectRequest,
    principal: CurrentPrincipal,
    runtime: RuntimeDep,
) -> MessageResponse:
    msg = await runtime.engine.send_direct(
        principal.user_id,
        body.recipient_id,
        body.content,
        msg_type=body.type,
        reply_to=body.reply_to,
        client_msg_id=body.client_msg_id,
    )
    return MessageResponse.model_validate(msg)


@router.put("/conversations/{conversation_id}/read", response_model=ReadMarkResponse)
async def mark_read(
    conversation_id: UUID,
    body: MarkReadRequest,
    principal: CurrentPrincipal,
    runtime: RuntimeDep,
) -> ReadMarkResponse:
    mark = await runtime.engine.mark_read(conversation_id, principal.user_id, body.up_to_seq)
    return ReadMarkResponse.model_validate(mark)


@router.patch("/messages/{message_id}", response_model=MessageResponse)
async def edit_message(
    message_id: UUID,
    body: EditMessageRequest,
    principal: CurrentPrincipal,
    runtime: RuntimeDep,
) -> MessageResponse:
    msg = await runtime.engine.edit(message_id, principal.user_id, body.content)
    return MessageResponse.model_validate(msg)


@router.delete("/messages/{message_id}", response_model=MessageResponse)
async def delete_message(
    message_id: UUID,
    principal: CurrentPrincipal,
    runtime: RuntimeDep,
) -> MessageResponse:
    msg = await runtime.engine.delete(message_id, principal.user_id)
    return MessageResponse.model_validate(msg)


@router.put("/messages/{message_id}/reaction", response_model=MessageResponse)
async def react(
    message_id: UUID,
    body: ReactionRequest,
    principal: CurrentPrincipal,
    runtime: RuntimeDep,
) -> MessageResponse:
    msg = await runtime.engine.react(message_id, principal.user_id, body.reaction)
    return MessageResponse.model_validate(msg)


@router.post(
    "/messages/{message_id}/forward",
    response_model=list[MessageResponse],
    status_code=status.HTTP_201_CREATED,
)
async def forward_message(
    message_id: UUID,
    body: ForwardRequest,
    principal: CurrentPrincipal,
    runtime: RuntimeDep,
) -> list[MessageResponse]:
    """Forward to each listed conversation the caller belongs to; others are skipped."""
    messages = await runtime.engine.forward(message_id, principal.user_id, body.conversation_ids)
    return [MessageResponse.model_validate(m) for m in messages]


@router.get(
    "/conversations/{conversation_id}/pins", response_model=list[PinnedMessageResponse]
)
async def list_pins(
    conversation_id: UUID,
    principal: CurrentPrincipal,
    runtime: RuntimeDep,
) -> list[PinnedMessageResponse]:
    pins = await runtime.engine.list_pinned(conversation_id, principal.user_id)
    return [PinnedMessageResponse.model_validate(p) for p in pins]


@router.post(
    "/conversations/{conversation_id}/pins/{message_id}",
    response_model=list[PinnedMessageResponse],
    status_code=status.HTTP_201_CREATED,
)
async def pin_message(
    conversation_id: UUID,
    message_id: UUID,
    principal: CurrentPrincipal,
    runtime: RuntimeDep,
) -> list[PinnedMessageResponse]:
    await runtime.engine.pin(conversation_id, message_id, principal.user_id)
    return await list_pins(conversation_id, principal, runtime)


@router.delete(
    "/conversations/{conversation_id}/pins/{message_id}",
    response_model=list[PinnedMessageResponse],
)
async def unpin_message(
    conversation_id: UUID,
    message_id: UUID,
    principal: CurrentPrincipal,
    runtime: RuntimeDep,
) -> list[PinnedMessageResponse]:
    await runtime.engine.unpin(conversation_id, message_id, principal.user_id)
    return await list_pins(conversation_id, principal, runtime)
