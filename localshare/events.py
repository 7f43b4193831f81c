"""
Event sink for the UI layer.

The core publishes peer-list updates and transfer lifecycle events here;
the UI transport (see api.websocket) subscribes and forwards them.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from localshare.errors import ConfirmationChannelError

logger = logging.getLogger(__name__)

# --- Event names (wire contract with the UI) ---
PEERS_UPDATE = "peers-update"
ALIAS_CHANGED = "alias-changed"
FILE_TRANSFER_REQUEST = "file-transfer-request"
TRANSFER_PROGRESS = "transfer-progress"
FILE_RECEIVE_START = "file-receive-start"
FILE_RECEIVE_COMPLETE = "file-receive-complete"
FILE_RECEIVE_ERROR = "file-receive-error"
FILE_TRANSFER_REJECTED = "file-transfer-rejected"
FILE_TRANSFER_TIMEOUT = "file-transfer-timeout"
MESSAGE_RECEIVED = "message-received"

EventCallback = Callable[[str, Any], Awaitable[None]]


class EventBus:
    """Fans events out to registered async callbacks."""

    def __init__(self) -> None:
        self._callbacks: list[EventCallback] = []
        self._loop: asyncio.AbstractEventLoop | None = None

    def subscribe(self, callback: EventCallback) -> None:
        """Register callback: async fn(event: str, data)."""
        self._callbacks.append(callback)

    def unsubscribe(self, callback: EventCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Set the loop that emit_threadsafe() schedules onto."""
        self._loop = loop

    async def emit(self, event: str, data: Any = None, *, required: bool = False) -> None:
        """
        Deliver an event to every subscriber.

        With required=True the event must reach at least one subscriber,
        otherwise ConfirmationChannelError is raised.
        """
        delivered = 0
        for cb in list(self._callbacks):
            try:
                await cb(event, data)
                delivered += 1
            except Exception as e:
                logger.error(f"Event callback error for {event}: {e}")

        if required and delivered == 0:
            raise ConfirmationChannelError(f"No listener accepted {event}")

    def emit_threadsafe(self, event: str, data: Any = None) -> None:
        """Schedule an emit from a thread that does not own the event loop."""
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug(f"Dropping {event}: no event loop bound")
            return
        asyncio.run_coroutine_threadsafe(self.emit(event, data), loop)
