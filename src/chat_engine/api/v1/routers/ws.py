from __future__ import annotations

import asyncio
import contextlib
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from chat_engine.api.deps import get_runtime, get_verifier
from chat_engine.application.dto.principal import Principal
from chat_engine.domain.value_objects.enums import Namespace
from chat_engine.infrastructure.ws.transport import WebSocketTransport
from chat_engine.realtime import events
from chat_engine.realtime.session import ClientSession

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])


async def _authenticate(websocket: WebSocket, token: str) -> Principal | None:
    try:
        return await get_verifier(websocket).verify(token)
    except Exception:
        logger.debug("WS auth failed", exc_info=True)
        return None


def _parse_namespaces(raw: str | None) -> frozenset[str] | None:
    if not raw:
        return None
    wanted = {part.strip() for part in raw.split(",") if part.strip()}
    return frozenset(ns for ns in Namespace if ns.value in wanted)


@router.websocket("/ws/chat")
async def ws_chat(
    websocket: WebSocket,
    token: str = Query(...),
    namespaces: str | None = Query(None),
) -> None:
    principal = await _authenticate(websocket, token)
    if principal is None:
        await websocket.close(code=4001, reason="Authentication failed")
        return

    runtime = get_runtime(websocket)
    settings = runtime.settings
    await websocket.accept()

    session = ClientSession(
        principal.user_id,
        WebSocketTransport(websocket),
        engine=runtime.engine,
        presence=runtime.presence,
        router=runtime.router,
        typing=runtime.typing,
        namespaces=_parse_namespaces(namespaces),
        outbox_size=settings.SESSION_OUTBOX_SIZE,
    )
    async with session:
        heartbeat_task = asyncio.create_task(
            _heartbeat(session, settings.WS_HEARTBEAT_SECONDS),
            name=f"ws-heartbeat-{session.session_id}",
        )
        try:
            await _read_loop(websocket, session, settings.WS_IDLE_TIMEOUT_SECONDS)
        except WebSocketDisconnect:
            pass
        except Exception:
            logger.exception("WS error for session %s", session.session_id)
        finally:
            await _cancel(heartbeat_task)


async def _cancel(task: asyncio.Task) -> None:
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


async def _heartbeat(session: ClientSession, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        session.reply(events.ping())


async def _read_loop(ws: WebSocket, session: ClientSession, idle_timeout: float) -> None:
    while True:
        try:
            raw = await asyncio.wait_for(ws.receive_text(), timeout=idle_timeout)
        except asyncio.TimeoutError:
            logger.info("Session %s idle for %ss, closing", session.session_id, idle_timeout)
            await ws.close(code=1001, reason="Idle timeout")
            return
        await session.handle_raw(raw)
