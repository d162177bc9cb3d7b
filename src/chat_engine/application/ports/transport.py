from __future__ import annotations

from typing import Protocol


class SessionTransport(Protocol):
    """Outbound half of one physical client connection."""

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...
