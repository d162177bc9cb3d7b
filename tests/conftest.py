"""Shared test fixtures."""
from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import pytest
import pytest_asyncio

from chat_engine.application.exceptions import UnavailableError
from chat_engine.infrastructure.memory.store import InMemoryStore, InMemoryUoW
from chat_engine.realtime.presence import PresenceTracker
from chat_engine.realtime.router import EventRouter
from chat_engine.realtime.session import ClientSession
from chat_engine.realtime.typing_indicators import TypingTracker
from chat_engine.services.delivery_engine import DeliveryEngine

TYPING_TIMEOUT = 0.05


class FakeTransport:
    """Records frames written to a session."""

    def __init__(self, *, fail: bool = False) -> None:
        self.sent: list[str] = []
        self.closed: tuple[int, str] | None = None
        self.fail = fail

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise ConnectionError("socket gone")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = (code, reason)

    def frames(self, event: str | None = None) -> list[dict[str, Any]]:
        decoded = [json.loads(raw) for raw in self.sent]
        if event is None:
            return decoded
        return [f for f in decoded if f["event"] == event]

    def events(self) -> list[str]:
        return [f["event"] for f in self.frames()]


class RecordingSink:
    def __init__(self, *, accept: bool = True) -> None:
        self.raw: list[str] = []
        self.accept = accept

    def offer(self, raw: str) -> bool:
        if not self.accept:
            return False
        self.raw.append(raw)
        return True

    @property
    def events(self) -> list[str]:
        return [json.loads(r)["event"] for r in self.raw]


class ExplodingSink:
    def offer(self, raw: str) -> bool:
        raise RuntimeError("sink exploded")


class FakePublisher:
    def __init__(self, *, fail: bool = False) -> None:
        self.published: list[tuple[str, dict[str, Any]]] = []
        self.fail = fail

    async def publish(self, channel: str, payload: dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("redis down")
        self.published.append((channel, payload))


class FlakyStore:
    """Wraps a store; the listed unit_of_work calls (1-based) fail as unavailable."""

    def __init__(self, inner: InMemoryStore, fail_on: set[int] | None = None) -> None:
        self.inner = inner
        self.fail_on = fail_on or set()
        self.calls = 0

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[InMemoryUoW]:
        self.calls += 1
        if self.calls in self.fail_on:
            raise UnavailableError("Message store unavailable")
        async with self.inner.unit_of_work() as uow:
            yield uow

    async def ping(self) -> None:
        pass

    async def dispose(self) -> None:
        pass


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def presence() -> PresenceTracker:
    return PresenceTracker()


@pytest.fixture
def router(presence: PresenceTracker) -> EventRouter:
    return EventRouter(presence)


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture
def engine(store, presence, router, publisher, typing_tracker) -> DeliveryEngine:
    return DeliveryEngine(
        store.unit_of_work, presence, router, publisher=publisher, typing=typing_tracker,
    )


@pytest.fixture
def typing_tracker(router: EventRouter) -> TypingTracker:
    return TypingTracker(router, timeout=TYPING_TIMEOUT)


@pytest_asyncio.fixture
async def connect(engine, presence, router, typing_tracker):
    """Open a ClientSession for a user; every session is closed at teardown."""
    opened: list[ClientSession] = []

    def _connect(
        user_id: int,
        *,
        namespaces: set[str] | None = None,
        transport: FakeTransport | None = None,
    ) -> tuple[ClientSession, FakeTransport]:
        transport = transport or FakeTransport()
        session = ClientSession(
            user_id,
            transport,
            engine=engine,
            presence=presence,
            router=router,
            typing=typing_tracker,
            namespaces=namespaces,
        )
        session.open()
        opened.append(session)
        return session, transport

    yield _connect

    for session in opened:
        await session.close()


async def settle(*sessions: ClientSession) -> None:
    """Wait until every queued frame has reached the fake transports."""
    for session in sessions:
        await session.outbox.flush()
