"""
mDNS peer discovery engine.

Runs one browse session on a dedicated thread and keeps a live PeerTable,
dropping our own advertisement and stale entries. The session lifecycle is
an explicit state machine:

    STARTING -> BROWSING -> RESTARTING -> STARTING   (refresh / identity change)
    STARTING -> DEGRADED -> STARTING                 (start failure, after a backoff)

There is no terminal state; a failing network is retried forever.
"""

import logging
import queue
import threading
from enum import Enum
from typing import Callable

from pydantic import BaseModel

from localshare.config import ALIAS_PROPERTY, POLL_INTERVAL, RESTART_GRACE, RETRY_DELAY
from localshare.discovery.browser import BrowseSession, ZeroconfBrowseSession
from localshare.discovery.models import (
    DiscoveryEvent,
    Identity,
    Peer,
    ResolvedService,
    ServiceRemoved,
    ServiceResolved,
)
from localshare.discovery.peers import PeerTable
from localshare.errors import DiscoveryInitError, DiscoveryNotRunningError

logger = logging.getLogger(__name__)

PublishCallback = Callable[[list[Peer]], None]
SessionFactory = Callable[[], BrowseSession]


class BrowseState(str, Enum):
    """All states of a browse session."""
    STARTING = "starting"
    BROWSING = "browsing"
    RESTARTING = "restarting"
    DEGRADED = "degraded"


# --- Control commands ---

class RefreshCommand(BaseModel):
    pass


class UpdateIdentityCommand(BaseModel):
    alias: str


DiscoveryCommand = RefreshCommand | UpdateIdentityCommand


class DiscoveryEngine:
    """Owns the browse session, the peer table and the command queue."""

    def __init__(
        self,
        identity: Identity,
        publish: PublishCallback,
        session_factory: SessionFactory = ZeroconfBrowseSession,
        poll_interval: float = POLL_INTERVAL,
        retry_delay: float = RETRY_DELAY,
        restart_grace: float = RESTART_GRACE,
    ) -> None:
        self._alias = identity.alias
        self._publish = publish
        self._session_factory = session_factory
        self._poll_interval = poll_interval
        self._retry_delay = retry_delay
        self._restart_grace = restart_grace

        self._table = PeerTable()
        self._commands: queue.SimpleQueue = queue.SimpleQueue()
        self._stop_event = threading.Event()
        self._state = BrowseState.STARTING
        self._session: BrowseSession | None = None
        self._thread: threading.Thread | None = None

    @property
    def alias(self) -> str:
        """The alias currently used for self-filtering."""
        return self._alias

    @property
    def state(self) -> BrowseState:
        return self._state

    @property
    def peers(self) -> list[Peer]:
        return self._table.snapshot()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # --- Lifecycle ---

    def start(self) -> "DiscoveryHandle":
        """Spawn the discovery thread and return a handle to control it."""
        if self.is_running:
            return DiscoveryHandle(self)

        logger.info(f"Starting discovery - filtering out self: {self._alias}")
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="mdns-discovery", daemon=True
        )
        self._thread.start()
        return DiscoveryHandle(self)

    def stop(self, timeout: float | None = None) -> None:
        """Stop the loop at process shutdown."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
        if not self.is_running:
            self._close_session()

    def send(self, command: DiscoveryCommand) -> None:
        """Queue a command for the discovery thread; picked up on the next BROWSING step."""
        thread_gone = self._thread is not None and not self._thread.is_alive()
        if self._stop_event.is_set() or thread_gone:
            raise DiscoveryNotRunningError("Discovery is not running")
        self._commands.put(command)

    def _run(self) -> None:
        logger.info("mDNS discovery thread started")
        try:
            while not self._stop_event.is_set():
                try:
                    self.step()
                except Exception as e:
                    logger.error(f"mDNS browse failed: {e}", exc_info=True)
                    self._close_session()
                    self._state = BrowseState.DEGRADED
        finally:
            self._close_session()
            logger.info("mDNS discovery thread stopped")

    # --- State machine ---

    def step(self) -> BrowseState:
        """Run one transition of the state machine and return the new state."""
        handlers = {
            BrowseState.STARTING: self._on_starting,
            BrowseState.BROWSING: self._on_browsing,
            BrowseState.RESTARTING: self._on_restarting,
            BrowseState.DEGRADED: self._on_degraded,
        }
        self._state = handlers[self._state]()
        return self._state

    def _on_starting(self) -> BrowseState:
        logger.info("Starting new mDNS browse...")
        try:
            self._session = self._session_factory()
        except DiscoveryInitError as e:
            logger.error(f"Failed to start mDNS browse: {e}")
            return BrowseState.DEGRADED
        logger.info("mDNS browse started successfully")
        return BrowseState.BROWSING

    def _on_browsing(self) -> BrowseState:
        commands = self._drain_commands()
        if commands:
            self._apply_commands(commands)
            return BrowseState.RESTARTING

        event = self._session.recv(self._poll_interval)
        if event is not None:
            self.handle_event(event)
        return BrowseState.BROWSING

    def _on_restarting(self) -> BrowseState:
        self._close_session()
        self._stop_event.wait(self._restart_grace)
        return BrowseState.STARTING

    def _on_degraded(self) -> BrowseState:
        logger.info(f"Retrying mDNS browse in {self._retry_delay}s")
        self._stop_event.wait(self._retry_delay)
        return BrowseState.STARTING

    def _drain_commands(self) -> list[DiscoveryCommand]:
        commands = []
        while True:
            try:
                commands.append(self._commands.get_nowait())
            except queue.Empty:
                return commands

    def _apply_commands(self, commands: list[DiscoveryCommand]) -> None:
        for command in commands:
            if isinstance(command, UpdateIdentityCommand):
                logger.info(f"Discovery alias changed: {self._alias!r} -> {command.alias!r}")
                self._alias = command.alias
            else:
                logger.info("Refresh command received")

        # Publish the empty table now so the UI drops stale peers during the restart.
        self._table.clear()
        self._publish_snapshot()

    def _close_session(self) -> None:
        session, self._session = self._session, None
        if session is None:
            return
        try:
            session.close()
        except Exception as e:
            logger.warning(f"Error closing mDNS session: {e}")

    # --- Event handling ---

    def handle_event(self, event: DiscoveryEvent) -> None:
        if isinstance(event, ServiceResolved):
            self._on_resolved(event.service)
        elif isinstance(event, ServiceRemoved):
            logger.info(f"Service removed: {event.fullname}")
            self._table.remove(event.fullname)
            self._publish_snapshot()
        else:
            logger.debug(f"Ignoring mDNS event: {event!r}")

    def _on_resolved(self, service: ResolvedService) -> None:
        alias = service.txt_property(ALIAS_PROPERTY).or_default()

        if alias == self._alias:
            logger.debug(f"Skipping {service.fullname} - this is our own device")
            return

        ip = next((addr for addr in service.addresses if addr), None)
        if ip is None:
            logger.debug(f"Skipping {service.fullname} - no valid IP found")
            return

        peer = Peer(ip=ip, port=service.port, alias=alias, hostname=service.fullname)
        evicted = self._table.upsert(service.fullname, peer)
        for old in evicted:
            logger.info(f"Evicted stale peer {old.alias} ({old.ip})")

        logger.info(f"Adding peer: {alias} ({ip}:{service.port})")
        self._publish_snapshot()

    def _publish_snapshot(self) -> None:
        peers = self._table.snapshot()
        try:
            self._publish(peers)
        except Exception as e:
            logger.error(f"Failed to publish peers: {e}")


class DiscoveryHandle:
    """Caller-side reference to a running DiscoveryEngine."""

    def __init__(self, engine: DiscoveryEngine) -> None:
        self._engine = engine

    @property
    def alias(self) -> str:
        return self._engine.alias

    @property
    def state(self) -> BrowseState:
        return self._engine.state

    @property
    def is_running(self) -> bool:
        return self._engine.is_running

    def peers(self) -> list[Peer]:
        return self._engine.peers

    def refresh(self) -> None:
        """Tear down the browse session and restart it from an empty table."""
        logger.info("Manual discovery refresh triggered...")
        self._engine.send(RefreshCommand())

    def update_identity(self, alias: str) -> None:
        """Change the self-filter alias; also clears and restarts the browse."""
        self._engine.send(UpdateIdentityCommand(alias=alias))

    def stop(self, timeout: float | None = 2.0) -> None:
        self._engine.stop(timeout)


def start_discovery(identity: Identity, publish: PublishCallback, **kwargs) -> DiscoveryHandle:
    """Create a DiscoveryEngine for `identity` and start it."""
    return DiscoveryEngine(identity, publish, **kwargs).start()
