"""
UDP-based LAN discovery service.

Broadcasts a periodic beacon and listens for beacons from other
LanShare instances on the same LAN.
"""

import asyncio
import logging
import socket
import time
from typing import Callable

from pydantic import ValidationError

from lanshare.config import (
    BROADCAST_INTERVAL,
    DISCOVERY_PORT,
    SWEEP_INTERVAL,
)
from lanshare.discovery.identity import LocalIdentity
from lanshare.discovery.models import DiscoveryBeacon, Peer
from lanshare.discovery.registry import PeerRegistry
from lanshare.events import EventCallback, EventEmitter

logger = logging.getLogger(__name__)

# Bound the backlog of unprocessed datagrams; beacons are periodic anyway.
_QUEUE_SIZE = 256


class DiscoveryProtocol(asyncio.DatagramProtocol):
    """asyncio UDP protocol for receiving discovery beacons."""

    def __init__(self, service: "DiscoveryService"):
        self.service = service

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        self.service.enqueue_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        logger.warning(f"Discovery UDP error: {exc}")


class DiscoveryService:
    """Manages LAN device discovery via UDP broadcast.

    Lifecycle is construct -> start -> stop. Three tasks run while started:
    the broadcast loop, the listen loop (which drains datagrams handed over
    by the protocol) and the sweep loop that evicts stale peers.
    """

    def __init__(
        self,
        identity: LocalIdentity,
        transfer_port: int = 0,
        port: int = DISCOVERY_PORT,
        registry: PeerRegistry | None = None,
        broadcast_addresses: list[str] | None = None,
        broadcast_interval: float = BROADCAST_INTERVAL,
        sweep_interval: float = SWEEP_INTERVAL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.identity = identity
        self.registry = registry if registry is not None else PeerRegistry(clock=clock)
        self.events = EventEmitter()
        self._transfer_port = transfer_port
        self._port = port
        self._broadcast_addresses = broadcast_addresses
        self._broadcast_interval = broadcast_interval
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._manual_peers: dict[str, Peer] = {}
        self._queue: asyncio.Queue[tuple[bytes, tuple[str, int]]] | None = None
        self._transport: asyncio.DatagramTransport | None = None
        self._tasks: list[asyncio.Task] = []
        self._running = False

    @property
    def transfer_port(self) -> int:
        return self._transfer_port

    @transfer_port.setter
    def transfer_port(self, port: int) -> None:
        self._transfer_port = port

    @property
    def device_name(self) -> str:
        return self.identity.name

    @device_name.setter
    def device_name(self, name: str) -> None:
        self.identity.name = name

    @property
    def port(self) -> int:
        """The UDP port actually bound (useful when constructed with 0)."""
        if self._transport:
            return self._transport.get_extra_info("sockname")[1]
        return self._port

    @property
    def is_running(self) -> bool:
        return self._running

    def on_peer_change(self, callback: EventCallback) -> Callable[[], None]:
        """Register a callback for peer_discovered/peer_lost/peers_changed events."""
        return self.events.on(callback)

    async def start(self) -> None:
        """Start the discovery broadcaster, listener and sweeper.

        Failing to bind the discovery socket is fatal and propagates.
        """
        if self._running:
            return
        logger.info(f"Starting discovery on UDP port {self._port}")

        loop = asyncio.get_running_loop()

        # SO_REUSEADDR must be set BEFORE binding so several instances
        # on one host can share the discovery port
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.setblocking(False)
            sock.bind(("0.0.0.0", self._port))
        except OSError:
            sock.close()
            raise

        self._queue = asyncio.Queue(maxsize=_QUEUE_SIZE)
        transport, _ = await loop.create_datagram_endpoint(
            lambda: DiscoveryProtocol(self),
            sock=sock,
        )
        self._transport = transport
        self._running = True

        self._tasks = [
            asyncio.create_task(self._broadcast_loop(), name="discovery-broadcast"),
            asyncio.create_task(self._listen_loop(), name="discovery-listen"),
            asyncio.create_task(self._sweep_loop(), name="discovery-sweep"),
        ]
        logger.info(f"Discovery service started on UDP port {self.port}")

    async def stop(self) -> None:
        """Stop all loops and release the socket.

        Once this returns no further notifications are emitted.
        """
        if not self._running:
            return
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        if self._transport:
            self._transport.close()
            self._transport = None
        self._queue = None
        logger.info("Discovery service stopped")

    def get_peers(self) -> list[Peer]:
        """Online discovered peers followed by manually added ones."""
        peers = self.registry.snapshot()
        known = {p.id for p in peers}
        manual = [p for p in self._manual_peers.values() if p.id not in known]
        return peers + sorted(manual, key=lambda p: (p.name.lower(), p.id))

    def find_peer(self, peer_id: str) -> Peer | None:
        return next((p for p in self.get_peers() if p.id == peer_id), None)

    def set_manual_peers(self, peers: list[Peer]) -> None:
        """Merge a list of manually added peers into the visible set.

        Manual peers are never evicted; a discovered peer with the same id
        takes precedence.
        """
        self._manual_peers = {
            p.id: p.model_copy(update={"is_manual": True}) for p in peers
        }

    def enqueue_datagram(self, data: bytes, addr: tuple[str, int]) -> None:
        """Hand a raw datagram to the listen loop (called from the protocol)."""
        if not self._running or self._queue is None:
            return
        try:
            self._queue.put_nowait((data, addr))
        except asyncio.QueueFull:
            logger.debug(f"Discovery queue full, dropping datagram from {addr}")

    async def handle_datagram(self, data: bytes, addr: tuple[str, int]) -> Peer | None:
        """Parse one beacon and update the registry.

        Returns the resulting peer, or None if the datagram was ignored.
        """
        try:
            beacon = DiscoveryBeacon.from_bytes(data)
        except (ValidationError, UnicodeDecodeError, ValueError) as e:
            logger.debug(f"Ignoring invalid discovery packet from {addr}: {e}")
            return None

        # Ignore our own beacons
        if beacon.id == self.identity.id:
            return None

        peer = Peer(
            id=beacon.id,
            name=beacon.name,
            ip_address=addr[0],
            transfer_port=beacon.transfer_port,
            last_seen=self._clock(),
        )
        previous = self.registry.get(peer.id)
        is_new = self.registry.upsert(peer, now=peer.last_seen)

        if is_new:
            logger.info(f"Discovered peer: {peer.name} ({peer.ip_address})")
            await self.events.emit("peer_discovered", peer.model_copy())

        changed = previous is None or (
            (previous.name, previous.ip_address, previous.transfer_port)
            != (peer.name, peer.ip_address, peer.transfer_port)
        )
        if changed:
            await self.events.emit("peers_changed", self.get_peers())
        return peer

    async def sweep(self, now: float | None = None) -> list[Peer]:
        """Evict stale peers and notify about each one."""
        stale = self.registry.evict_stale(now)
        for peer in stale:
            logger.info(f"Peer lost: {peer.name} ({peer.ip_address})")
            await self.events.emit("peer_lost", peer)
        if stale:
            await self.events.emit("peers_changed", self.get_peers())
        return stale

    def _broadcast_targets(self) -> set[str]:
        if self._broadcast_addresses is not None:
            return set(self._broadcast_addresses)

        targets = {"<broadcast>", "255.255.255.255"}
        try:
            host_name = socket.gethostname()
            _, _, ips = socket.gethostbyname_ex(host_name)
            for ip in ips:
                if not ip.startswith("127."):
                    # Simple heuristic for /24 subnets
                    parts = ip.split(".")
                    if len(parts) == 4:
                        parts[3] = "255"
                        targets.add(".".join(parts))
        except OSError as e:
            logger.debug(f"Error resolving local IPs: {e}")
        return targets

    async def announce(self) -> None:
        """Send one beacon to every broadcast target."""
        beacon = DiscoveryBeacon(
            id=self.identity.id,
            name=self.identity.name,
            transfer_port=self._transfer_port,
        )
        data = beacon.to_bytes()
        if not self._transport:
            return

        sent = 0
        for target in self._broadcast_targets():
            try:
                self._transport.sendto(data, (target, self.port))
                sent += 1
            except OSError as e:
                # Some interfaces might not support broadcast
                logger.debug(f"Broadcast to {target} failed: {e}")
        if not sent:
            logger.warning("Broadcast failed: no reachable broadcast address")

    async def _broadcast_loop(self) -> None:
        """Periodically send a discovery beacon."""
        while True:
            try:
                await self.announce()
            except Exception as e:
                logger.warning(f"Broadcast failed: {e}")
            await asyncio.sleep(self._broadcast_interval)

    async def _listen_loop(self) -> None:
        """Process datagrams received by the protocol, in arrival order."""
        queue = self._queue
        while True:
            data, addr = await queue.get()
            await self.handle_datagram(data, addr)

    async def _sweep_loop(self) -> None:
        """Remove stale peers that haven't been seen recently."""
        while True:
            await asyncio.sleep(self._sweep_interval)
            await self.sweep()
