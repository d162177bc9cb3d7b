from __future__ import annotations

from chat_engine.domain.entities.participant import Participant
from chat_engine.infrastructure.db.models.participant import ParticipantModel


def model_to_entity(model: ParticipantModel) -> Participant:
    return Participant(
        conversation_id=model.conversation_id,
        user_id=model.user_id,
        joined_at=model.joined_at,
        muted=model.muted,
        archived=model.archived,
        admin=model.admin,
        removed_at=model.removed_at,
    )
