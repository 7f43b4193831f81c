"""
LocalShare controller: the command interface the UI layer drives.

Owns the settings, the mDNS advertisement, the discovery handle and the
transfer components, and turns their failures into CommandError messages.
"""

import asyncio
import logging
from pathlib import Path
from typing import Callable

from localshare.config import DOWNLOAD_DIR, REREGISTER_GRACE
from localshare.discovery.advertise import Advertisement, register_advertisement
from localshare.discovery.engine import DiscoveryHandle, start_discovery
from localshare.discovery.models import Peer
from localshare.errors import (
    AdvertisementError,
    CommandError,
    DiscoveryNotRunningError,
    NetworkError,
    SettingsError,
    TransferNotFoundError,
)
from localshare.events import ALIAS_CHANGED, PEERS_UPDATE, EventBus
from localshare.settings import AppSettings, SettingsStore
from localshare.transfer.client import TransferClient
from localshare.transfer.pending import PendingTransferRegistry
from localshare.transfer.server import TransferServer
from localshare.transfer.sniffer import infer, is_placeholder_name

logger = logging.getLogger(__name__)


class LocalShareController:
    """Wires discovery and transfer together behind UI commands."""

    def __init__(
        self,
        settings_store: SettingsStore | None = None,
        events: EventBus | None = None,
        download_dir: Path | str = DOWNLOAD_DIR,
        client: TransferClient | None = None,
        discovery_factory: Callable[..., DiscoveryHandle] = start_discovery,
        advertiser: Callable[[str, int], Advertisement] = register_advertisement,
        reregister_grace: float = REREGISTER_GRACE,
    ) -> None:
        self.settings_store = settings_store or SettingsStore()
        self.events = events or EventBus()
        self.registry = PendingTransferRegistry()
        self.server = TransferServer(self.events, self.registry, download_dir)
        self.client = client or TransferClient(self.events)

        self._discovery_factory = discovery_factory
        self._advertiser = advertiser
        self._reregister_grace = reregister_grace
        self._settings: AppSettings | None = None
        self._advertisement: Advertisement | None = None
        self._discovery: DiscoveryHandle | None = None
        self._listening_port: int | None = None
        self._lock = asyncio.Lock()

    @property
    def settings(self) -> AppSettings:
        if self._settings is None:
            self._settings = self.settings_store.load()
        return self._settings

    @property
    def discovery(self) -> DiscoveryHandle | None:
        return self._discovery

    # --- Lifecycle ---

    async def start(self) -> None:
        """Advertise this device and start browsing for peers."""
        self.events.bind_loop(asyncio.get_running_loop())
        settings = self.settings
        logger.info(f"Starting LocalShare on port {settings.port} as {settings.alias!r}")
        self._listening_port = settings.port

        self._advertisement = await self._advertise(settings.alias, settings.port)
        self._discovery = self._discovery_factory(settings.identity(), self._publish_peers)

    async def stop(self) -> None:
        if self._discovery is not None:
            await asyncio.to_thread(self._discovery.stop)
            self._discovery = None
        if self._advertisement is not None:
            await asyncio.to_thread(self._advertisement.close)
            self._advertisement = None

    async def _advertise(self, alias: str, port: int) -> Advertisement | None:
        try:
            return await asyncio.to_thread(self._advertiser, alias, port)
        except AdvertisementError as e:
            logger.error(f"Failed to register service, running undiscoverable: {e}")
            return None

    def _publish_peers(self, peers: list[Peer]) -> None:
        # Called on the discovery thread.
        self.events.emit_threadsafe(PEERS_UPDATE, [p.model_dump() for p in peers])

    # --- Commands ---

    def get_settings(self) -> AppSettings:
        return self.settings.model_copy()

    async def save_settings(self, alias: str, port: int) -> AppSettings:
        """Persist new settings; an alias change re-advertises and restarts discovery."""
        try:
            new_settings = AppSettings(alias=alias, port=port)
        except ValueError as e:
            raise CommandError(f"Invalid settings: {e}") from e

        async with self._lock:
            old = self.settings
            try:
                self.settings_store.save(new_settings)
            except SettingsError as e:
                raise CommandError(str(e)) from e
            self._settings = new_settings

            if new_settings.port != old.port:
                logger.info(f"Port changed to {new_settings.port}; takes effect after restart")

            if new_settings.alias != old.alias:
                await self._change_alias(old.alias, new_settings)

        return new_settings.model_copy()

    async def _change_alias(self, old_alias: str, settings: AppSettings) -> None:
        logger.info(f"Alias changed from {old_alias!r} to {settings.alias!r}, re-registering service...")

        if self._advertisement is not None:
            await asyncio.to_thread(self._advertisement.close)
            self._advertisement = None
            # Let the goodbye packets reach the network before re-announcing.
            await asyncio.sleep(self._reregister_grace)

        # Keep advertising the port the server is actually bound to.
        port = self._listening_port or settings.port
        self._advertisement = await self._advertise(settings.alias, port)

        if self._discovery is not None:
            try:
                self._discovery.update_identity(settings.alias)
            except DiscoveryNotRunningError as e:
                raise CommandError(str(e), status_code=503) from e

        await self.events.emit(ALIAS_CHANGED, settings.alias)

    async def send_file(self, peer_ip: str, peer_port: int, file_path: str) -> None:
        try:
            await self.client.send_file(peer_ip, peer_port, file_path)
        except NetworkError as e:
            raise CommandError(str(e), status_code=502) from e

    async def send_file_bytes(
        self, peer_ip: str, peer_port: int, file_name: str, data: bytes
    ) -> None:
        if is_placeholder_name(file_name):
            # Android content-URI ids carry no usable name; derive one from the content.
            sniffed = infer("", data)
            if sniffed.file_name:
                logger.info(f"Using inferred filename {sniffed.file_name} for {file_name}")
                file_name = sniffed.file_name

        try:
            await self.client.send_file_bytes(peer_ip, peer_port, file_name, data)
        except NetworkError as e:
            raise CommandError(str(e), status_code=502) from e

    async def send_text(self, peer_ip: str, peer_port: int, text: str) -> None:
        try:
            await self.client.send_text(peer_ip, peer_port, text, self.settings.alias)
        except NetworkError as e:
            raise CommandError(str(e), status_code=502) from e

    def refresh_peers(self) -> None:
        if self._discovery is None:
            raise CommandError("Discovery control not initialized", status_code=503)
        try:
            self._discovery.refresh()
        except DiscoveryNotRunningError as e:
            raise CommandError(str(e), status_code=503) from e

    def respond_to_transfer(self, transfer_id: str, accepted: bool) -> None:
        try:
            self.registry.respond(transfer_id, accepted)
        except TransferNotFoundError as e:
            raise CommandError(str(e), status_code=404) from e
        logger.info(f"Transfer {transfer_id} {'accepted' if accepted else 'rejected'}")

    def peers(self) -> list[Peer]:
        if self._discovery is None:
            return []
        return self._discovery.peers()
