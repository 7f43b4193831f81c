"""
Registry of transfers waiting for a human accept/reject decision.

Each entry is a single-use asyncio Future. It resolves to True/False when
the UI responds, to None when the slot is dropped without a decision, and
is removed again once the waiting handler is done with it.
"""

import asyncio
import logging
import threading

from localshare.config import CONFIRM_TIMEOUT
from localshare.errors import TransferNotFoundError, TransferTimeout

logger = logging.getLogger(__name__)


def _resolve(future: asyncio.Future, value: bool | None) -> None:
    if not future.done():
        future.set_result(value)


class PendingTransferRegistry:
    """Maps transfer ids to their response slot."""

    def __init__(self) -> None:
        self._slots: dict[str, asyncio.Future] = {}
        self._lock = threading.Lock()

    def register(self, transfer_id: str) -> asyncio.Future:
        """Create the response slot. Must be called from the server's event loop."""
        future = asyncio.get_running_loop().create_future()
        with self._lock:
            if transfer_id in self._slots:
                raise ValueError(f"Transfer {transfer_id} is already pending")
            self._slots[transfer_id] = future
        return future

    def respond(self, transfer_id: str, accepted: bool) -> None:
        """Fulfil a slot. Each slot accepts exactly one response."""
        with self._lock:
            future = self._slots.pop(transfer_id, None)
        if future is None:
            raise TransferNotFoundError(f"Transfer {transfer_id} not found")
        # Safe from any thread; resolves on the loop that owns the future.
        future.get_loop().call_soon_threadsafe(_resolve, future, accepted)

    def discard(self, transfer_id: str) -> None:
        """Drop a slot without a decision."""
        with self._lock:
            future = self._slots.pop(transfer_id, None)
        if future is not None:
            future.get_loop().call_soon_threadsafe(_resolve, future, None)

    async def wait_for_response(
        self,
        transfer_id: str,
        future: asyncio.Future,
        timeout: float = CONFIRM_TIMEOUT,
    ) -> bool:
        """
        Wait for the decision on `future`.

        Returns False when rejected or dropped; raises TransferTimeout when
        nobody answered within `timeout` seconds.
        """
        try:
            result = await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            raise TransferTimeout(
                f"No response for transfer {transfer_id} within {timeout:g}s"
            ) from None
        finally:
            with self._lock:
                if self._slots.get(transfer_id) is future:
                    del self._slots[transfer_id]

        if result is None:
            logger.info(f"Confirmation slot for {transfer_id} closed without a decision")
            return False
        return result

    def __contains__(self, transfer_id: str) -> bool:
        with self._lock:
            return transfer_id in self._slots

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)

    def pending_ids(self) -> list[str]:
        with self._lock:
            return list(self._slots)
