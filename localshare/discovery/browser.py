"""
mDNS browse session backed by zeroconf.

The zeroconf browser thread only enqueues raw state changes; services are
resolved when the discovery loop pulls them with recv(), so all blocking
work happens on the discovery thread.
"""

import logging
import queue
from typing import Protocol

from zeroconf import ServiceBrowser, ServiceStateChange, Zeroconf

from localshare.config import RESOLVE_TIMEOUT, SERVICE_TYPE
from localshare.discovery.models import (
    DiscoveryEvent,
    ResolvedService,
    ServiceFound,
    ServiceRemoved,
    ServiceResolved,
)
from localshare.errors import DiscoveryInitError

logger = logging.getLogger(__name__)


class BrowseSession(Protocol):
    """Source of discovery events for one browse session."""

    def recv(self, timeout: float) -> DiscoveryEvent | None: ...

    def close(self) -> None: ...


class ZeroconfBrowseSession:
    """Browses one service type with its own zeroconf daemon."""

    def __init__(
        self,
        service_type: str = SERVICE_TYPE,
        resolve_timeout: int = RESOLVE_TIMEOUT,
    ) -> None:
        self._service_type = service_type
        self._resolve_timeout = resolve_timeout
        self._events: queue.Queue = queue.Queue()

        try:
            self._zeroconf = Zeroconf()
        except Exception as e:
            raise DiscoveryInitError(f"Failed to create mDNS daemon: {e}") from e

        try:
            self._browser = ServiceBrowser(
                self._zeroconf,
                service_type,
                handlers=[self._on_service_state_change],
            )
        except Exception as e:
            self._zeroconf.close()
            raise DiscoveryInitError(f"Failed to start browse for {service_type}: {e}") from e

    def _on_service_state_change(
        self,
        zeroconf: Zeroconf,
        service_type: str,
        name: str,
        state_change: ServiceStateChange,
    ) -> None:
        self._events.put((state_change, service_type, name))

    def recv(self, timeout: float) -> DiscoveryEvent | None:
        """Wait up to `timeout` seconds for the next event."""
        try:
            state_change, service_type, name = self._events.get(timeout=timeout)
        except queue.Empty:
            return None

        if state_change is ServiceStateChange.Removed:
            return ServiceRemoved(fullname=name)

        try:
            info = self._zeroconf.get_service_info(
                service_type, name, timeout=self._resolve_timeout
            )
        except Exception as e:
            logger.warning(f"Failed to resolve {name}: {e}")
            info = None

        if info is None:
            return ServiceFound(fullname=name)

        return ServiceResolved(
            service=ResolvedService(
                fullname=info.name,
                addresses=info.parsed_addresses(),
                port=info.port or 0,
                properties=dict(info.properties),
            )
        )

    def close(self) -> None:
        try:
            self._browser.cancel()
        finally:
            self._zeroconf.close()
