"""Process-wide object graph: stores, presence, router and delivery engine."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import redis.asyncio as aioredis

from chat_engine.application.ports.clock import Clock, SystemClock
from chat_engine.application.uow import UnitOfWorkFactory
from chat_engine.config import Settings
from chat_engine.infrastructure.bus.redis_pubsub import (
    RedisPubSubPublisher,
    RedisPubSubSubscriber,
)
from chat_engine.infrastructure.memory.store import InMemoryStore
from chat_engine.realtime import events
from chat_engine.realtime.presence import PresenceTracker
from chat_engine.realtime.router import EventRouter
from chat_engine.realtime.typing_indicators import TypingTracker
from chat_engine.services.delivery_engine import DeliveryEngine

logger = logging.getLogger(__name__)


class Store(Protocol):
    def unit_of_work(self) -> Any: ...

    async def ping(self) -> None: ...

    async def dispose(self) -> None: ...


@dataclass
class ChatRuntime:
    settings: Settings
    store: Store
    presence: PresenceTracker
    router: EventRouter
    typing: TypingTracker
    engine: DeliveryEngine
    redis: aioredis.Redis | None = None
    subscriber: RedisPubSubSubscriber | None = None

    @property
    def uow(self) -> UnitOfWorkFactory:
        return self.store.unit_of_work

    async def start(self) -> None:
        if self.subscriber is not None:
            await self.subscriber.start()

    async def stop(self) -> None:
        if self.subscriber is not None:
            await self.subscriber.stop()
        self.typing.clear()
        if self.redis is not None:
            await self.redis.aclose()
        await self.store.dispose()
        logger.info("Chat runtime stopped")

    async def on_notification(self, event_type: str, data: dict[str, Any]) -> None:
        """Route an externally produced notification to its recipient's personal room."""
        raw_user = data.get("recipient_id", data.get("user_id"))
        try:
            user_id = int(raw_user)
        except (TypeError, ValueError):
            logger.warning("Notification %s without a valid recipient dropped", event_type)
            return
        notification = {k: v for k, v in data.items() if k != "recipient_id"}
        notification.setdefault("type", event_type)
        self.router.publish(events.notification_event(user_id, notification))


async def build_store(settings: Settings) -> Store:
    if settings.STORE_BACKEND == "memory":
        logger.info("Using in-memory store")
        return InMemoryStore()

    from chat_engine.infrastructure.db.session import (
        build_engine,
        build_sessionmaker,
        create_schema,
    )
    from chat_engine.infrastructure.db.uow import SqlStore

    engine = build_engine(settings)
    if settings.DB_CREATE_SCHEMA:
        await create_schema(engine)
    logger.info("Using SQL store")
    return SqlStore(engine, build_sessionmaker(engine))


async def build_runtime(
    settings: Settings,
    *,
    store: Store | None = None,
    clock: Clock | None = None,
) -> ChatRuntime:
    clock = clock or SystemClock()
    store = store or await build_store(settings)
    presence = PresenceTracker(clock)
    router = EventRouter(presence)
    typing = TypingTracker(router, timeout=settings.TYPING_TIMEOUT_SECONDS)

    redis = None
    publisher = None
    if settings.REDIS_ENABLED:
        redis = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
        publisher = RedisPubSubPublisher(redis)
        logger.info("Redis connection pool created")

    engine = DeliveryEngine(
        store.unit_of_work,
        presence,
        router,
        clock=clock,
        publisher=publisher,
        typing=typing,
        integration_channel=settings.INTEGRATION_EVENTS_CHANNEL,
    )
    runtime = ChatRuntime(
        settings=settings,
        store=store,
        presence=presence,
        router=router,
        typing=typing,
        engine=engine,
        redis=redis,
    )
    if redis is not None:
        runtime.subscriber = RedisPubSubSubscriber(
            redis, settings.NOTIFICATIONS_CHANNEL, runtime.on_notification,
        )
    return runtime
