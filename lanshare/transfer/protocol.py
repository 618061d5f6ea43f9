"""
Transfer wire protocol helpers.

A transfer connection carries, strictly in order:

    <4-byte little-endian length N>
    <N bytes of UTF-8 "fileName|fileSize|senderId|senderName">
    <1 response byte: 1 = accept, 0 = reject>
    <if accepted: fileSize raw bytes>

The header fields are not escaped, so a file name or sender id containing
the delimiter cannot be sent. The sender name is the last field and may
contain it.
"""

import asyncio
import os
import struct
import time
from pathlib import Path
from typing import Callable

from lanshare.config import MAX_METADATA_SIZE, PLACEHOLDER_FILE_NAME, PROGRESS_INTERVAL
from lanshare.errors import InvalidFileNameError, ProtocolError
from lanshare.transfer.models import TransferMetadata

HEADER_FORMAT = "<I"  # 4-byte length (little-endian)
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)
DELIMITER = "|"

ACCEPT = b"\x01"
REJECT = b"\x00"

# Characters never allowed in a received file name on any supported platform
_INVALID_CHARS = frozenset('<>:"/\\|?*') | frozenset(chr(c) for c in range(32))


def encode_metadata(metadata: TransferMetadata) -> bytes:
    """Length-prefixed header for ``metadata``."""
    for field in (metadata.file_name, metadata.sender_id):
        if DELIMITER in field:
            raise InvalidFileNameError(
                f"{field!r} contains the reserved delimiter {DELIMITER!r}"
            )
    text = DELIMITER.join((
        metadata.file_name,
        str(metadata.file_size),
        metadata.sender_id,
        metadata.sender_name,
    ))
    payload = text.encode("utf-8")
    return struct.pack(HEADER_FORMAT, len(payload)) + payload


def decode_metadata(payload: bytes) -> TransferMetadata:
    """Parse the header body. Missing sender fields default to "Unknown"."""
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ProtocolError(f"Metadata is not valid UTF-8: {e}") from e

    parts = text.split(DELIMITER, 3)
    if len(parts) < 2:
        raise ProtocolError(f"Malformed metadata: {text!r}")
    try:
        file_size = int(parts[1])
    except ValueError as e:
        raise ProtocolError(f"Invalid file size: {parts[1]!r}") from e
    if file_size < 0:
        raise ProtocolError(f"Invalid file size: {file_size}")

    return TransferMetadata(
        file_name=parts[0],
        file_size=file_size,
        sender_id=parts[2] if len(parts) > 2 else "Unknown",
        sender_name=parts[3] if len(parts) > 3 else "Unknown",
    )


async def read_exactly(reader: asyncio.StreamReader, count: int) -> bytes:
    try:
        return await reader.readexactly(count)
    except asyncio.IncompleteReadError as e:
        raise ProtocolError("Connection closed unexpectedly") from e


async def read_metadata(
    reader: asyncio.StreamReader, max_size: int = MAX_METADATA_SIZE
) -> TransferMetadata:
    """Read the length prefix and the header it announces."""
    (length,) = struct.unpack(HEADER_FORMAT, await read_exactly(reader, HEADER_SIZE))
    if length > max_size:
        raise ProtocolError(f"Metadata too large: {length} bytes")
    return decode_metadata(await read_exactly(reader, length))


async def write_metadata(writer: asyncio.StreamWriter, metadata: TransferMetadata) -> None:
    writer.write(encode_metadata(metadata))
    await writer.drain()


def sanitize_file_name(file_name: str) -> str:
    """Strip characters that are illegal in a file name.

    The result never contains a path separator and never resolves outside
    the directory it is joined to.
    """
    sanitized = "".join(c for c in file_name if c not in _INVALID_CHARS)
    if not sanitized.strip() or set(sanitized) == {"."}:
        return PLACEHOLDER_FILE_NAME
    return sanitized


def unique_path(directory: str | os.PathLike, file_name: str) -> Path:
    """``directory/file_name``, or ``name (n).ext`` with the first free n."""
    directory = Path(directory)
    candidate = directory / file_name
    if not candidate.exists():
        return candidate

    stem, ext = os.path.splitext(file_name)
    counter = 1
    while True:
        candidate = directory / f"{stem} ({counter}){ext}"
        if not candidate.exists():
            return candidate
        counter += 1


class RateMeter:
    """Throttles progress updates and measures recent throughput.

    ``tick`` returns the bytes/sec since the previous emitted update when an
    update is due, otherwise None.
    """

    def __init__(
        self,
        interval: float = PROGRESS_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._interval = interval
        self._clock = clock
        self._last_time = clock()
        self._last_bytes = 0

    def tick(self, transferred: int) -> float | None:
        now = self._clock()
        elapsed = now - self._last_time
        if elapsed < self._interval:
            return None
        rate = (transferred - self._last_bytes) / elapsed if elapsed > 0 else 0.0
        self._last_time = now
        self._last_bytes = transferred
        return rate
