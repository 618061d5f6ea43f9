"""
TCP-based file transfer service.

Runs the receive-side and send-side state machines of the transfer wire
protocol (see ``transfer.protocol``): length-prefixed metadata, one
accept/reject byte, then the raw payload streamed in fixed-size chunks.
Directories travel as folder archives.
"""

import asyncio
import logging
import os
import uuid
from typing import Awaitable, Callable

from lanshare.config import CHUNK_SIZE, CONNECT_TIMEOUT, PROGRESS_INTERVAL
from lanshare.discovery.identity import LocalIdentity
from lanshare.errors import ArchiveError, ConnectTimeoutError, ProtocolError
from lanshare.transfer.archiver import (
    archive_folder,
    archive_name_for,
    extract_archive,
    folder_name_of,
    is_folder_archive,
)
from lanshare.transfer.models import (
    TransferDirection,
    TransferMetadata,
    TransferProgress,
    TransferRequest,
    TransferState,
)
from lanshare.transfer.protocol import (
    ACCEPT,
    REJECT,
    RateMeter,
    encode_metadata,
    read_metadata,
    sanitize_file_name,
    unique_path,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[TransferProgress], Awaitable[None]]
AcceptCallback = Callable[[TransferRequest], Awaitable[bool]]


async def _ignore(_: TransferProgress) -> None:
    return None


async def _close_writer(writer: asyncio.StreamWriter) -> None:
    writer.close()
    try:
        await writer.wait_closed()
    except OSError as e:
        logger.debug(f"Error while closing connection: {e}")


def _discard_archive(task: asyncio.Future) -> None:
    if task.cancelled() or task.exception() is not None:
        return
    try:
        os.remove(task.result())
    except OSError as e:
        logger.warning(f"Could not remove temporary archive: {e}")


async def _archive_for_send(path: str) -> str:
    """Archive a folder in a worker thread.

    If the caller is cancelled while the thread is still zipping, the
    archive is deleted as soon as the thread finishes.
    """
    task = asyncio.ensure_future(asyncio.to_thread(archive_folder, path))
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        task.add_done_callback(_discard_archive)
        raise


async def receive_file(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    save_dir: str,
    accept_callback: AcceptCallback,
    progress_callback: ProgressCallback = _ignore,
    state_callback: ProgressCallback = _ignore,
    chunk_size: int = CHUNK_SIZE,
    progress_interval: float = PROGRESS_INTERVAL,
) -> TransferProgress:
    """
    Handle an incoming file transfer connection.

    Args:
        reader, writer: The TCP connection streams.
        save_dir: Directory to save the received file.
        accept_callback: async fn(TransferRequest) -> bool.
        progress_callback: async fn(TransferProgress) called on throttled progress.
        state_callback: async fn(TransferProgress) called on state change.

    Returns:
        The final TransferProgress (completed, rejected, failed or cancelled).
        Callbacks only ever receive snapshots of it.
    """
    file_name = "unknown"
    transfer_info: TransferProgress | None = None
    temp_path: str | None = None

    try:
        # 1. Receive metadata
        metadata = await read_metadata(reader)
        file_name = sanitize_file_name(metadata.file_name)

        transfer_info = TransferProgress(
            file_name=file_name,
            total_bytes=metadata.file_size,
            direction=TransferDirection.RECEIVING,
            peer_id=metadata.sender_id,
            peer_name=metadata.sender_name,
            state=TransferState.AWAITING_ACCEPTANCE,
        )
        await state_callback(transfer_info.snapshot())

        # 2. Ask whether to accept
        request = TransferRequest(
            transfer_id=transfer_info.transfer_id,
            sender_id=metadata.sender_id,
            sender_name=metadata.sender_name,
            file_name=file_name,
            file_size=metadata.file_size,
        )
        accepted = bool(await accept_callback(request))

        if not accepted:
            writer.write(REJECT)
            await writer.drain()
            logger.info(f"Transfer rejected: {file_name}")
            transfer_info.state = TransferState.REJECTED
            await state_callback(transfer_info.snapshot())
            return transfer_info

        writer.write(ACCEPT)
        await writer.drain()

        # 3. Stream the payload into a temporary file
        os.makedirs(save_dir, exist_ok=True)
        # Fixed-length name: a long file name must not overflow NAME_MAX here
        temp_path = os.path.join(save_dir, f".lanshare-{uuid.uuid4().hex}.part")

        transfer_info.state = TransferState.TRANSFERRING
        await state_callback(transfer_info.snapshot())

        meter = RateMeter(progress_interval)
        total = metadata.file_size
        received = 0

        with open(temp_path, "wb") as f:
            while received < total:
                chunk = await reader.read(min(chunk_size, total - received))
                if not chunk:
                    raise ProtocolError("Connection closed unexpectedly")

                await asyncio.to_thread(f.write, chunk)
                received += len(chunk)

                rate = meter.tick(received)
                if rate is not None:
                    transfer_info.transferred_bytes = received
                    transfer_info.bytes_per_second = rate
                    await progress_callback(transfer_info.snapshot())

        # 4. Publish under a free name
        final_path = unique_path(save_dir, file_name)
        os.replace(temp_path, final_path)
        temp_path = None
        result_path = str(final_path)

        # 5. Unpack folder archives; the archive is kept if that fails
        if is_folder_archive(file_name):
            try:
                logger.info(f"Extracting folder: {file_name}")
                extracted = await asyncio.to_thread(extract_archive, final_path, save_dir)
                os.remove(final_path)
                result_path = extracted
                logger.info(f"Folder extracted to: {extracted}")
            except (ArchiveError, OSError) as e:
                logger.error(f"Failed to extract folder {file_name}: {e}")

        # 6. Complete
        transfer_info.transferred_bytes = total
        transfer_info.bytes_per_second = 0.0
        await progress_callback(transfer_info.snapshot())

        transfer_info.state = TransferState.COMPLETED
        transfer_info.result_path = result_path
        await state_callback(transfer_info.snapshot())
        logger.info(f"Transfer complete: {result_path}")
        return transfer_info

    except asyncio.CancelledError:
        logger.info(f"Transfer cancelled: {file_name}")
        if transfer_info:
            transfer_info.state = TransferState.CANCELLED
            transfer_info.error_message = "Transfer cancelled"
            await state_callback(transfer_info.snapshot())
    except Exception as e:
        logger.error(f"Receive error for {file_name}: {e}")
        if transfer_info is None:
            transfer_info = TransferProgress(
                file_name=file_name,
                total_bytes=0,
                direction=TransferDirection.RECEIVING,
            )
        transfer_info.state = TransferState.FAILED
        transfer_info.error_message = str(e) or type(e).__name__
        await state_callback(transfer_info.snapshot())
    finally:
        if temp_path and os.path.exists(temp_path):
            try:
                os.remove(temp_path)
            except OSError as e:
                logger.warning(f"Could not remove temporary file {temp_path}: {e}")
        await _close_writer(writer)

    return transfer_info


async def send_file(
    peer_ip: str,
    peer_port: int,
    path: str,
    identity: LocalIdentity,
    progress_callback: ProgressCallback = _ignore,
    state_callback: ProgressCallback = _ignore,
    transfer_info: TransferProgress | None = None,
    connect_timeout: float = CONNECT_TIMEOUT,
    chunk_size: int = CHUNK_SIZE,
    progress_interval: float = PROGRESS_INTERVAL,
) -> bool:
    """
    Send a single file or folder to a peer.

    Args:
        peer_ip: IP address of the receiver.
        peer_port: TCP port the receiver is listening on.
        path: Local file or directory to send.
        identity: Sender id and display name carried in the header.
        transfer_info: TransferProgress to drive (created if omitted).
        progress_callback: async fn(TransferProgress) called on throttled progress.
        state_callback: async fn(TransferProgress) called on state change.

    Returns:
        True if the peer accepted and the payload was fully written,
        False if the peer rejected. Connection, IO and archive failures
        raise; cancelling the task aborts the connect or stream. A
        temporary folder archive is always deleted.
    """
    reader: asyncio.StreamReader | None = None
    writer: asyncio.StreamWriter | None = None
    archive_path: str | None = None

    if transfer_info is None:
        transfer_info = TransferProgress(
            file_name=os.path.basename(os.path.abspath(path)),
            total_bytes=0,
            direction=TransferDirection.SENDING,
        )

    try:
        # 1. Resolve the payload; folders are archived before connecting
        if os.path.isdir(path):
            archive_path = await _archive_for_send(path)
            send_path = archive_path
            display_name = archive_name_for(folder_name_of(path))
        elif os.path.isfile(path):
            send_path = path
            display_name = os.path.basename(path)
        else:
            raise FileNotFoundError(f"File not found: {path}")

        file_size = os.path.getsize(send_path)
        header = encode_metadata(TransferMetadata(
            file_name=display_name,
            file_size=file_size,
            sender_id=identity.id,
            sender_name=identity.name,
        ))

        transfer_info.file_name = display_name
        transfer_info.total_bytes = file_size
        transfer_info.state = TransferState.CONNECTING
        await state_callback(transfer_info.snapshot())

        # 2. Connect with a bounded timeout
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(peer_ip, peer_port),
                timeout=connect_timeout,
            )
        except asyncio.TimeoutError as e:
            raise ConnectTimeoutError(
                f"Connection to {peer_ip}:{peer_port} timed out"
            ) from e

        # 3. Send metadata and wait for accept/reject
        writer.write(header)
        await writer.drain()

        transfer_info.state = TransferState.AWAITING_ACCEPTANCE
        await state_callback(transfer_info.snapshot())

        response = await reader.read(1)
        if not response or response == REJECT:
            logger.info(f"Transfer rejected by {peer_ip}: {display_name}")
            transfer_info.state = TransferState.REJECTED
            await state_callback(transfer_info.snapshot())
            return False

        # 4. Stream the payload
        transfer_info.state = TransferState.TRANSFERRING
        await state_callback(transfer_info.snapshot())

        meter = RateMeter(progress_interval)
        sent = 0

        with open(send_path, "rb") as f:
            while sent < file_size:
                chunk = await asyncio.to_thread(f.read, min(chunk_size, file_size - sent))
                if not chunk:
                    raise OSError("Unexpected end of file")

                writer.write(chunk)
                await writer.drain()
                sent += len(chunk)

                rate = meter.tick(sent)
                if rate is not None:
                    transfer_info.transferred_bytes = sent
                    transfer_info.bytes_per_second = rate
                    await progress_callback(transfer_info.snapshot())

        await writer.drain()

        # 5. Complete
        transfer_info.transferred_bytes = file_size
        transfer_info.bytes_per_second = 0.0
        await progress_callback(transfer_info.snapshot())

        transfer_info.state = TransferState.COMPLETED
        await state_callback(transfer_info.snapshot())
        logger.info(f"Transfer complete: {display_name} -> {peer_ip}:{peer_port}")
        return True

    except asyncio.CancelledError:
        transfer_info.state = TransferState.CANCELLED
        transfer_info.error_message = "Transfer cancelled"
        await state_callback(transfer_info.snapshot())
        raise
    except Exception as e:
        logger.error(f"Send error for {transfer_info.file_name}: {e}")
        transfer_info.state = TransferState.FAILED
        transfer_info.error_message = str(e) or type(e).__name__
        await state_callback(transfer_info.snapshot())
        raise
    finally:
        if writer:
            await _close_writer(writer)
        if archive_path and os.path.exists(archive_path):
            try:
                os.remove(archive_path)
            except OSError as e:
                logger.warning(f"Could not remove temporary archive {archive_path}: {e}")
