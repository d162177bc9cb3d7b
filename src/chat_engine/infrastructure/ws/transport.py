from __future__ import annotations

from fastapi import WebSocket
from starlette.websockets import WebSocketState


class WebSocketTransport:
    """Implements application.ports.transport.SessionTransport over Starlette."""

    def __init__(self, websocket: WebSocket) -> None:
        self._ws = websocket

    async def send_text(self, data: str) -> None:
        await self._ws.send_text(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self._ws.application_state != WebSocketState.DISCONNECTED:
            await self._ws.close(code=code, reason=reason)
