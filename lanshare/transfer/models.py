"""Pydantic models for file transfer."""

import uuid
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def format_bytes(count: float) -> str:
    """Human-readable byte count, e.g. ``1.5 MB``."""
    sizes = ["B", "KB", "MB", "GB", "TB"]
    order = 0
    while count >= 1024 and order < len(sizes) - 1:
        order += 1
        count /= 1024
    return f"{count:.2f}".rstrip("0").rstrip(".") + f" {sizes[order]}"


class TransferState(str, Enum):
    """All possible states for a file transfer."""
    PENDING = "pending"
    AWAITING_ACCEPTANCE = "awaiting_acceptance"
    REJECTED = "rejected"
    CONNECTING = "connecting"
    TRANSFERRING = "transferring"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


FINAL_STATES = (
    TransferState.REJECTED,
    TransferState.COMPLETED,
    TransferState.FAILED,
    TransferState.CANCELLED,
)


class TransferDirection(str, Enum):
    SENDING = "sending"
    RECEIVING = "receiving"


class TransferMetadata(BaseModel):
    """Header sent before file data: ``fileName|fileSize|senderId|senderName``."""
    model_config = ConfigDict(frozen=True)

    file_name: str
    file_size: int = Field(ge=0)
    sender_id: str = "Unknown"
    sender_name: str = "Unknown"


class TransferRequest(BaseModel):
    """An inbound proposal handed to the accept/reject decision."""
    model_config = ConfigDict(frozen=True)

    transfer_id: str
    sender_id: str
    sender_name: str
    file_name: str
    file_size: int

    @property
    def file_size_formatted(self) -> str:
        return format_bytes(self.file_size)


class TransferProgress(BaseModel):
    """Full state of a single file transfer, exposed to observers.

    Owned by the task driving the transfer; observers only ever receive
    copies.
    """
    transfer_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    file_name: str
    total_bytes: int
    transferred_bytes: int = 0
    bytes_per_second: float = 0.0
    state: TransferState = TransferState.PENDING
    direction: TransferDirection
    peer_id: str = ""
    peer_name: str = ""
    result_path: str | None = None
    error_message: str | None = None

    @property
    def is_complete(self) -> bool:
        return self.transferred_bytes == self.total_bytes

    @property
    def progress_percent(self) -> float:
        if self.total_bytes <= 0:
            return 100.0 if self.state == TransferState.COMPLETED else 0.0
        return self.transferred_bytes / self.total_bytes * 100

    @property
    def eta_seconds(self) -> float:
        if self.bytes_per_second <= 0:
            return 0.0
        return (self.total_bytes - self.transferred_bytes) / self.bytes_per_second

    @property
    def speed_formatted(self) -> str:
        return format_bytes(self.bytes_per_second) + "/s"

    def snapshot(self) -> "TransferProgress":
        return self.model_copy()

    def to_event(self) -> dict:
        data = self.model_dump(mode="json")
        data["progress_percent"] = self.progress_percent
        data["eta_seconds"] = self.eta_seconds
        return data


class SendRequest(BaseModel):
    """API body for initiating a transfer."""
    peer_id: str
    file_paths: list[str]
