from __future__ import annotations

from chat_engine.domain.entities.message import ForwardedFrom, Message
from chat_engine.domain.entities.pin import PinnedMessage
from chat_engine.infrastructure.db.models.message import MessageModel, PinnedMessageModel


def _forwarded_from(model: MessageModel) -> ForwardedFrom | None:
    if model.forwarded_from_message_id is None:
        return None
    return ForwardedFrom(
        message_id=model.forwarded_from_message_id,
        conversation_id=model.forwarded_from_conversation_id,
        sender_id=model.forwarded_from_sender_id,
    )


def model_to_entity(
    model: MessageModel,
    *,
    delivered_to: frozenset[int] = frozenset(),
    read_by: frozenset[int] = frozenset(),
    reactions: dict[int, str] | None = None,
) -> Message:
    return Message(
        id=model.id,
        conversation_id=model.conversation_id,
        seq=model.seq,
        sender_id=model.sender_id,
        type=model.type,
        content=model.content,
        reply_to=model.reply_to,
        client_msg_id=model.client_msg_id,
        forwarded_from=_forwarded_from(model),
        edited=model.edited,
        edited_at=model.edited_at,
        deleted=model.deleted,
        deleted_at=model.deleted_at,
        created_at=model.created_at,
        delivered_to=delivered_to,
        read_by=read_by,
        reactions=reactions or {},
    )


def entity_to_values(entity: Message) -> dict:
    """Insert values; seq is left to the database."""
    origin = entity.forwarded_from
    return {
        "id": entity.id,
        "conversation_id": entity.conversation_id,
        "sender_id": entity.sender_id,
        "type": entity.type,
        "content": entity.content,
        "reply_to": entity.reply_to,
        "client_msg_id": entity.client_msg_id,
        "forwarded_from_message_id": origin.message_id if origin else None,
        "forwarded_from_conversation_id": origin.conversation_id if origin else None,
        "forwarded_from_sender_id": origin.sender_id if origin else None,
        "edited": entity.edited,
        "edited_at": entity.edited_at,
        "deleted": entity.deleted,
        "deleted_at": entity.deleted_at,
        "created_at": entity.created_at,
    }


def pin_to_entity(model: PinnedMessageModel) -> PinnedMessage:
    return PinnedMessage(
        conversation_id=model.conversation_id,
        message_id=model.message_id,
        pinned_by=model.pinned_by,
        pinned_at=model.pinned_at,
    )
