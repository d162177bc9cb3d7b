from __future__ import annotations

from collections.abc import Iterable

from chat_engine.domain.entities.conversation import Conversation
from chat_engine.infrastructure.db.models.conversation import ConversationModel


def model_to_entity(
    model: ConversationModel,
    participant_ids: Iterable[int],
    admin_ids: Iterable[int] = (),
) -> Conversation:
    return Conversation(
        id=model.id,
        type=model.type,
        participant_ids=frozenset(participant_ids),
        creator_id=model.creator_id,
        name=model.name,
        avatar=model.avatar,
        pair_key=model.pair_key,
        last_message_at=model.last_message_at,
        created_at=model.created_at,
        updated_at=model.updated_at,
        admin_ids=frozenset(admin_ids),
    )


def entity_to_values(entity: Conversation) -> dict:
    return {
        "id": entity.id,
        "type": entity.type,
        "name": entity.name,
        "avatar": entity.avatar,
        "creator_id": entity.creator_id,
        "pair_key": entity.pair_key,
        "last_message_at": entity.last_message_at,
        "created_at": entity.created_at,
        "updated_at": entity.updated_at,
    }
