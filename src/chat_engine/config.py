from __future__ import annotations

from typing import Literal

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    STORE_BACKEND: Literal["memory", "sql"] = "memory"
    DATABASE_URL: str | None = None
    DB_CREATE_SCHEMA: bool = True

    POSTGRES_USER: str = "chat"
    POSTGRES_PASSWORD: str = "chat"
    POSTGRES_DB: str = "chat"
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432

    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_RECYCLE: int = 300

    REDIS_ENABLED: bool = False
    REDIS_URL: str = "redis://localhost:6379/0"
    INTEGRATION_EVENTS_CHANNEL: str = "chat.integration"
    NOTIFICATIONS_CHANNEL: str = "chat.notifications"

    JWT_SECRET: str = ""
    JWT_ALGORITHM: str = "HS256"

    CORS_ORIGINS: list[str] = ["*"]

    TYPING_TIMEOUT_SECONDS: float = 6.0
    WS_HEARTBEAT_SECONDS: int = 30
    WS_IDLE_TIMEOUT_SECONDS: int = 90
    SESSION_OUTBOX_SIZE: int = 256

    PAGE_DEFAULT_LIMIT: int = 50
    PAGE_MAX_LIMIT: int = 200

    LOG_LEVEL: str = "INFO"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.POSTGRES_DB}"
        )

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
