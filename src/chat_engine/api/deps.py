"""FastAPI dependency injection helpers."""
from __future__ import annotations

from typing import Annotated, AsyncIterator

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.requests import HTTPConnection

from chat_engine.application.dto.principal import Principal
from chat_engine.application.ports.auth import TokenVerifier
from chat_engine.application.uow import UnitOfWork
from chat_engine.runtime import ChatRuntime

_bearer_scheme = HTTPBearer()


def get_runtime(conn: HTTPConnection) -> ChatRuntime:
    return conn.app.state.runtime


RuntimeDep = Annotated[ChatRuntime, Depends(get_runtime)]


async def get_uow(runtime: RuntimeDep) -> AsyncIterator[UnitOfWork]:
    async with runtime.uow() as uow:
        yield uow


UoWDep = Annotated[UnitOfWork, Depends(get_uow)]


def get_verifier(conn: HTTPConnection) -> TokenVerifier:
    return conn.app.state.verifier


async def get_current_principal(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(_bearer_scheme)],
    verifier: Annotated[TokenVerifier, Depends(get_verifier)],
) -> Principal:
    try:
        return await verifier.verify(credentials.credentials)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]


def page_limit(runtime: ChatRuntime, limit: int | None) -> int:
    """Apply the default page size and clamp to the configured maximum."""
    settings = runtime.settings
    return min(limit or settings.PAGE_DEFAULT_LIMIT, settings.PAGE_MAX_LIMIT)
