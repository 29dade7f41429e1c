"""Serialized writer for the story websocket.

Every component of a story run (narrative producer, synthesis consumer,
illustration task, context task) writes through one ``OutputMultiplexer`` per
connection. Writes never interleave on the socket.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import WebSocket, WebSocketDisconnect

from ..schemas.story import StoryEvent

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Raised when a frame can no longer be written to the websocket."""


class OutputMultiplexer:
    """Mutex-guarded gate over a single websocket connection."""

    def __init__(self, websocket: WebSocket):
        self._websocket = websocket
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send_event(self, event: StoryEvent) -> None:
        """Send one JSON event as a text frame."""
        await self._write(text=event.to_json())

    async def send_audio(self, chunk: bytes) -> None:
        """Send raw synthesized audio as a binary frame."""
        await self._write(data=chunk)

    async def _write(
        self, *, text: str | None = None, data: bytes | None = None
    ) -> None:
        async with self._lock:
            if self._closed:
                raise TransportError("websocket is closed")
            try:
                if text is not None:
                    await self._websocket.send_text(text)
                else:
                    await self._websocket.send_bytes(data or b"")
            except (WebSocketDisconnect, RuntimeError, OSError) as exc:
                self._closed = True
                logger.warning("Websocket write failed: %s", exc)
                raise TransportError(str(exc) or type(exc).__name__) from exc


__all__ = ["OutputMultiplexer", "TransportError"]
