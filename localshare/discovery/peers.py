"""Thread-safe table of discovered peers."""

import logging
import threading

from localshare.discovery.models import Peer

logger = logging.getLogger(__name__)


class PeerTable:
    """
    Peers keyed by their mDNS full name.

    At most one entry per IP is kept: inserting a peer evicts any other
    entry for the same address (e.g. the device restarted under a new alias).
    """

    def __init__(self) -> None:
        self._peers: dict[str, Peer] = {}
        self._lock = threading.Lock()

    def upsert(self, key: str, peer: Peer) -> list[Peer]:
        """Insert or replace a peer. Returns the entries evicted for sharing its IP."""
        with self._lock:
            stale_keys = [
                k for k, p in self._peers.items()
                if p.ip == peer.ip and k != key
            ]
            evicted = [self._peers.pop(k) for k in stale_keys]
            self._peers[key] = peer
        return evicted

    def remove(self, key: str) -> Peer | None:
        with self._lock:
            return self._peers.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._peers.clear()

    def snapshot(self) -> list[Peer]:
        """Copy of the current peers, safe to publish without the lock."""
        with self._lock:
            return [p.model_copy() for p in self._peers.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._peers)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._peers
