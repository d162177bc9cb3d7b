"""Import all models so Base.metadata sees every table."""
from chat_engine.infrastructure.db.models.conversation import ConversationModel
from chat_engine.infrastructure.db.models.message import (
    MessageModel,
    MessageReactionModel,
    MessageReceiptModel,
    PinnedMessageModel,
)
from chat_engine.infrastructure.db.models.participant import ParticipantModel
from chat_engine.infrastructure.db.models.read_state import ReadStateModel

__all__ = [
    "ConversationModel",
    "MessageModel",
    "MessageReactionModel",
    "MessageReceiptModel",
    "ParticipantModel",
    "PinnedMessageModel",
    "ReadStateModel",
]
