from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Callable, Protocol

from chat_engine.application.repositories.conversation import (
    ConversationReader,
    ConversationWriter,
)
from chat_engine.application.repositories.message import MessageReader, MessageWriter
from chat_engine.application.repositories.participant import (
    ParticipantReader,
    ParticipantWriter,
)
from chat_engine.application.repositories.read_state import ReadStateRepository


class UnitOfWork(Protocol):
    conversations: ConversationReader
    conversations_w: ConversationWriter
    participants: ParticipantReader
    participants_w: ParticipantWriter
    messages: MessageReader
    messages_w: MessageWriter
    read_states: ReadStateRepository

    async def commit(self) -> None: ...
    async def rollback(self) -> None: ...
    async def flush(self) -> None: ...


UnitOfWorkFactory = Callable[[], AbstractAsyncContextManager[UnitOfWork]]
