"""Pushes EventBus events to UI clients over WebSocket."""

import asyncio
import logging
from typing import Any, Callable

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel

logger = logging.getLogger(__name__)

# Returns (event, data) pairs replayed to a client right after it connects.
InitialState = Callable[[], list[tuple[str, Any]]]


class EventEnvelope(BaseModel):
    event: str
    data: Any = None


class EventBroadcaster:
    """Tracks UI sockets and fans every event out to them."""

    def __init__(self, initial_state: InitialState | None = None) -> None:
        self._sockets: set[WebSocket] = set()
        self._lock = asyncio.Lock()
        self._initial_state = initial_state

    @property
    def client_count(self) -> int:
        return len(self._sockets)

    async def serve(self, websocket: WebSocket) -> None:
        """Run one client connection until it goes away."""
        await websocket.accept()
        try:
            # Held across the replay so live events cannot overtake it.
            async with self._lock:
                if self._initial_state is not None:
                    for event, data in self._initial_state():
                        envelope = EventEnvelope(event=event, data=data)
                        await websocket.send_text(envelope.model_dump_json())
                self._sockets.add(websocket)
            logger.info(f"UI client connected ({len(self._sockets)} total)")

            # Clients only listen; incoming frames are read to notice the close.
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            async with self._lock:
                self._sockets.discard(websocket)
            logger.info(f"UI client disconnected ({len(self._sockets)} total)")

    async def __call__(self, event: str, data: Any) -> None:
        """EventBus subscriber."""
        message = EventEnvelope(event=event, data=data).model_dump_json()
        async with self._lock:
            targets = list(self._sockets)

        stale = []
        for ws in targets:
            try:
                await ws.send_text(message)
            except Exception as e:
                logger.debug(f"Dropping UI client after send failure: {e}")
                stale.append(ws)

        if stale:
            async with self._lock:
                self._sockets.difference_update(stale)
