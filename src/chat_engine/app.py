from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chat_engine.api.middleware.correlation_id import CorrelationIdMiddleware
from chat_engine.api.v1.routers import conversations, health, messages, ws
from chat_engine.application.exceptions import (
    AppError,
    ForbiddenError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    UnavailableError,
)
from chat_engine.config import Settings, settings as default_settings
from chat_engine.infrastructure.auth.hs256_verifier import HS256Verifier
from chat_engine.logging_setup import configure_logging
from chat_engine.runtime import build_runtime

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: dict[type[AppError], int] = {
    NotFoundError: 404,
    ForbiddenError: 403,
    InvalidArgumentError: 422,
    InvalidStateError: 409,
    UnavailableError: 503,
}


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Startup / shutdown lifecycle."""
        runtime = await build_runtime(settings)
        await runtime.start()
        app.state.runtime = runtime
        logger.info("Chat runtime started (store=%s)", settings.STORE_BACKEND)

        yield

        await runtime.stop()

    app = FastAPI(
        title="Chat Engine",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.verifier = HS256Verifier(settings.JWT_SECRET, settings.JWT_ALGORITHM)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationIdMiddleware)

    _register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(conversations.router)
    app.include_router(messages.router)
    app.include_router(ws.router)

    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def _app_error(_req: Request, exc: AppError) -> JSONResponse:
        status_code = _STATUS_BY_ERROR.get(type(exc), 400)
        if status_code == 503:
            logger.warning("Request failed: %s", exc.detail)
        return JSONResponse(status_code=status_code, content={"detail": exc.detail})
