"""In-memory table of discovered peers keyed by peer id."""

import threading
import time
from typing import Callable

from lanshare.config import PEER_TIMEOUT
from lanshare.discovery.models import Peer


class PeerRegistry:
    """Thread-safe peer table with staleness eviction.

    All operations are non-blocking; the lock only guards dict mutation and
    is never held across I/O. Readers always get a point-in-time copy.
    """

    def __init__(
        self,
        timeout: float = PEER_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._peers: dict[str, Peer] = {}
        self._lock = threading.Lock()
        self._timeout = timeout
        self._clock = clock

    @property
    def timeout(self) -> float:
        return self._timeout

    def upsert(self, peer: Peer, now: float | None = None) -> bool:
        """Insert or replace the entry with ``peer.id`` and refresh last_seen.

        Returns True if the id was not known before.
        """
        seen = self._clock() if now is None else now
        peer = peer.model_copy(update={"last_seen": seen})
        with self._lock:
            is_new = peer.id not in self._peers
            self._peers[peer.id] = peer
        return is_new

    def evict_stale(self, now: float | None = None) -> list[Peer]:
        """Remove and return every entry older than the timeout."""
        now = self._clock() if now is None else now
        with self._lock:
            stale = [p for p in self._peers.values() if now - p.last_seen > self._timeout]
            for peer in stale:
                del self._peers[peer.id]
        return stale

    def snapshot(self, now: float | None = None) -> list[Peer]:
        """Online peers ordered by display name, then id."""
        now = self._clock() if now is None else now
        with self._lock:
            peers = list(self._peers.values())
        online = [p for p in peers if now - p.last_seen < self._timeout]
        return sorted(online, key=lambda p: (p.name.lower(), p.id))

    def get(self, peer_id: str) -> Peer | None:
        with self._lock:
            return self._peers.get(peer_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._peers)
