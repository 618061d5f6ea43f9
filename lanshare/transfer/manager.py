"""
Transfer Manager — owns the receiving listener and outgoing sends.

Tracks every transfer's latest snapshot, resolves accept/reject decisions
and republishes transfer state on a single event feed.
"""

import asyncio
import logging
import os
import uuid
from typing import Awaitable, Callable

from lanshare.config import (
    ACCEPT_TIMEOUT,
    AUTO_ACCEPT,
    CONNECT_TIMEOUT,
    DEFAULT_SAVE_DIR,
    TRANSFER_HOST,
    TRANSFER_PORT,
)
from lanshare.discovery.identity import LocalIdentity
from lanshare.discovery.models import Peer
from lanshare.errors import LanShareError
from lanshare.events import EventCallback, EventEmitter
from lanshare.transfer.models import (
    FINAL_STATES,
    TransferDirection,
    TransferProgress,
    TransferRequest,
    TransferState,
)
from lanshare.transfer.service import receive_file, send_file

logger = logging.getLogger(__name__)

DecisionHandler = Callable[[TransferRequest], Awaitable[bool]]


class TransferManager:
    """Manages all active and completed file transfers."""

    def __init__(
        self,
        identity: LocalIdentity,
        save_dir: str = DEFAULT_SAVE_DIR,
        host: str = TRANSFER_HOST,
        port: int = TRANSFER_PORT,
        auto_accept: bool = AUTO_ACCEPT,
        accept_timeout: float = ACCEPT_TIMEOUT,
        connect_timeout: float = CONNECT_TIMEOUT,
    ) -> None:
        self.identity = identity
        self.events = EventEmitter()
        self.auto_accept = auto_accept
        self._host = host
        self._port = port
        self._save_dir = save_dir
        self._accept_timeout = accept_timeout
        self._connect_timeout = connect_timeout
        self._transfers: dict[str, TransferProgress] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._connections: set[asyncio.Task] = set()
        self._accept_futures: dict[str, asyncio.Future] = {}
        self._decision_handler: DecisionHandler | None = None
        self._receiver_server: asyncio.Server | None = None
        self._receiver_port = 0

    @property
    def save_dir(self) -> str:
        return self._save_dir

    @save_dir.setter
    def save_dir(self, path: str) -> None:
        os.makedirs(path, exist_ok=True)
        self._save_dir = path

    @property
    def receiver_port(self) -> int:
        return self._receiver_port

    @property
    def is_listening(self) -> bool:
        return self._receiver_server is not None

    def on_event(self, callback: EventCallback) -> Callable[[], None]:
        """Register callback: async fn(event_type: str, data: dict)."""
        return self.events.on(callback)

    def set_decision_handler(self, handler: DecisionHandler | None) -> None:
        """Install the accept/reject decision for inbound transfers.

        Without a handler, transfers are accepted when ``auto_accept`` is
        set and otherwise wait for ``respond_to_request``.
        """
        self._decision_handler = handler

    async def start(self) -> None:
        """Start the receiver listener. A bind failure propagates."""
        if self._receiver_server:
            return
        os.makedirs(self._save_dir, exist_ok=True)
        self._receiver_server = await asyncio.start_server(
            self._handle_incoming_connection,
            self._host,
            self._port,
        )
        self._receiver_port = self._receiver_server.sockets[0].getsockname()[1]
        logger.info(f"Transfer receiver listening on port {self._receiver_port}")

    async def stop(self) -> None:
        """Stop the receiver listener and cancel every active transfer."""
        if self._receiver_server:
            self._receiver_server.close()

        tasks = list(self._tasks.values()) + list(self._connections)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._connections.clear()

        if self._receiver_server:
            await self._receiver_server.wait_closed()
            self._receiver_server = None
            self._receiver_port = 0

        logger.info("Transfer manager stopped")

    def get_transfers(self) -> list[TransferProgress]:
        """Return all transfers."""
        return list(self._transfers.values())

    def _new_outgoing(self, peer: Peer, path: str) -> TransferProgress:
        info = TransferProgress(
            transfer_id=str(uuid.uuid4()),
            file_name=os.path.basename(os.path.abspath(path)),
            total_bytes=0,
            direction=TransferDirection.SENDING,
            peer_id=peer.id,
            peer_name=peer.name,
        )
        self._transfers[info.transfer_id] = info.snapshot()
        return info

    async def send(self, peer: Peer, path: str, transfer_info: TransferProgress | None = None) -> bool:
        """Send one file or folder to ``peer``.

        Returns False if the peer rejected it. Failures raise; cancelling the
        calling task aborts the transfer.
        """
        info = transfer_info or self._new_outgoing(peer, path)
        return await send_file(
            peer_ip=peer.ip_address,
            peer_port=peer.transfer_port,
            path=path,
            identity=self.identity,
            progress_callback=self._on_progress,
            state_callback=self._on_state_change,
            transfer_info=info,
            connect_timeout=self._connect_timeout,
        )

    async def send_many(self, peer: Peer, paths: list[str]) -> int:
        """Send each path in turn, continuing past failures.

        Returns the number of transfers the peer accepted and received.
        """
        success_count = 0
        for path in paths:
            try:
                if await self.send(peer, path):
                    success_count += 1
            except (LanShareError, OSError, ValueError) as e:
                logger.warning(f"Failed to send {path}: {e}")
        return success_count

    async def queue_send(self, peer: Peer, paths: list[str]) -> list[TransferProgress]:
        """Start one background send per path; returns their initial snapshots."""
        infos = []
        for path in paths:
            info = self._new_outgoing(peer, path)
            task = asyncio.create_task(self._send_file_task(peer, path, info))
            self._tasks[info.transfer_id] = task
            infos.append(info.snapshot())
            await self.events.emit("transfer_state", info.to_event())
        return infos

    async def _send_file_task(self, peer: Peer, path: str, info: TransferProgress) -> None:
        """Task wrapper for sending a single file in the background."""
        try:
            await self.send(peer, path, transfer_info=info)
        except asyncio.CancelledError:
            pass
        except (LanShareError, OSError, ValueError) as e:
            # Already reported through the transfer_failed event
            logger.debug(f"Background send of {path} failed: {e}")
        finally:
            self._tasks.pop(info.transfer_id, None)

    async def _handle_incoming_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Handle a new incoming TCP connection for file reception."""
        task = asyncio.current_task()
        self._connections.add(task)
        try:
            await receive_file(
                reader=reader,
                writer=writer,
                save_dir=self._save_dir,
                accept_callback=self._decide,
                progress_callback=self._on_progress,
                state_callback=self._on_state_change,
            )
        finally:
            self._connections.discard(task)

    async def _decide(self, request: TransferRequest) -> bool:
        info = self._transfers.get(request.transfer_id)
        await self.events.emit(
            "transfer_request",
            info.to_event() if info else request.model_dump(),
        )
        if self._decision_handler is not None:
            return await self._decision_handler(request)
        if self.auto_accept:
            return True
        return await self._prompt_accept(request)

    async def _prompt_accept(self, request: TransferRequest) -> bool:
        """
        Wait for ``respond_to_request`` to accept or reject an inbound transfer.
        Rejects after the accept timeout.
        """
        future: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._accept_futures[request.transfer_id] = future
        try:
            return await asyncio.wait_for(future, timeout=self._accept_timeout)
        except asyncio.TimeoutError:
            logger.info(f"Transfer {request.transfer_id} timed out waiting for acceptance")
            return False
        finally:
            self._accept_futures.pop(request.transfer_id, None)

    def pending_requests(self) -> list[str]:
        return list(self._accept_futures)

    async def respond_to_request(self, transfer_id: str, accept: bool) -> bool:
        """Resolve a pending acceptance prompt. Returns False if none is pending."""
        future = self._accept_futures.get(transfer_id)
        if future and not future.done():
            future.set_result(accept)
            return True
        return False

    async def cancel_transfer(self, transfer_id: str) -> bool:
        """Cancel an active transfer in either direction."""
        info = self._transfers.get(transfer_id)
        if not info or info.state in FINAL_STATES:
            return False

        future = self._accept_futures.get(transfer_id)
        if future and not future.done():
            future.set_result(False)
            return True

        task = self._tasks.get(transfer_id)
        if task:
            task.cancel()
            return True
        return False

    async def _on_progress(self, info: TransferProgress) -> None:
        """Called by transfer service on progress updates."""
        self._transfers[info.transfer_id] = info
        await self.events.emit("transfer_progress", info.to_event())

    async def _on_state_change(self, info: TransferProgress) -> None:
        """Called by transfer service on state changes."""
        self._transfers[info.transfer_id] = info

        # Receiving handlers become cancellable once their id is known
        if info.direction == TransferDirection.RECEIVING:
            if info.state in FINAL_STATES:
                self._tasks.pop(info.transfer_id, None)
            else:
                task = asyncio.current_task()
                if task is not None:
                    self._tasks.setdefault(info.transfer_id, task)

        await self.events.emit("transfer_state", info.to_event())

        # Generate user-facing notifications
        notification = None
        if info.state == TransferState.COMPLETED:
            await self.events.emit("transfer_completed", info.to_event())
            direction = "sent" if info.direction == TransferDirection.SENDING else "received"
            notification = {
                "type": "success",
                "message": f"'{info.file_name}' {direction} successfully!",
            }
        elif info.state == TransferState.FAILED:
            await self.events.emit("transfer_failed", {
                "transfer_id": info.transfer_id,
                "file_name": info.file_name,
                "error": info.error_message,
            })
            notification = {
                "type": "error",
                "message": f"Transfer of '{info.file_name}' failed: {info.error_message}",
            }
        elif info.state == TransferState.CANCELLED:
            notification = {
                "type": "info",
                "message": f"Transfer of '{info.file_name}' cancelled.",
            }
        elif info.state == TransferState.REJECTED:
            notification = {
                "type": "warning",
                "message": f"Transfer of '{info.file_name}' was rejected.",
            }

        if notification:
            await self.events.emit("notification", notification)
