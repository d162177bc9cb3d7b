from __future__ import annotations

import asyncio
import contextlib
import logging

from chat_engine.application.ports.transport import SessionTransport

logger = logging.getLogger(__name__)


class SessionOutbox:
    """Bounded per-session queue of serialized frames.

    ``offer`` never blocks, so fan-out can run inside a synchronous critical
    section. A writer task drains the queue into the transport.
    """

    def __init__(self, session_id: str, transport: SessionTransport, *, maxsize: int = 256) -> None:
        self.session_id = session_id
        self._transport = transport
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize)
        self._task: asyncio.Task[None] | None = None
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(
                self._drain(), name=f"session-outbox-{self.session_id}",
            )

    def offer(self, raw: str) -> bool:
        if self._closed:
            return False
        try:
            self._queue.put_nowait(raw)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Outbox full for session %s, dropped frame (dropped=%d)",
                self.session_id, self.dropped,
            )
            return False
        return True

    async def flush(self) -> None:
        """Wait until every queued frame has been handed to the transport."""
        await self._queue.join()

    async def aclose(self) -> None:
        self._closed = True
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def _drain(self) -> None:
        while True:
            raw = await self._queue.get()
            try:
                await self._transport.send_text(raw)
            except Exception:
                logger.warning(
                    "Send failed for session %s, closing outbox", self.session_id, exc_info=True,
                )
                self._closed = True
                self._discard_pending()
                return
            finally:
                self._queue.task_done()

    def _discard_pending(self) -> None:
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
