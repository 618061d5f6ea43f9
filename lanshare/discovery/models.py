"""Pydantic models for peer discovery."""

import time

from pydantic import BaseModel, ConfigDict, Field

from lanshare.config import PEER_TIMEOUT


class Peer(BaseModel):
    """Represents a reachable LanShare instance.

    Two peers are the same entity iff their ids match; the address is not
    part of the identity (a peer may change network interface).
    """
    id: str
    name: str
    ip_address: str
    transfer_port: int
    last_seen: float = Field(default_factory=time.time)  # Unix timestamp
    is_manual: bool = False

    def age(self, now: float | None = None) -> float:
        return (time.time() if now is None else now) - self.last_seen

    def is_online(self, now: float | None = None) -> bool:
        return self.age(now) < PEER_TIMEOUT

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Peer):
            return self.id == other.id
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.id)

    def __str__(self) -> str:
        return f"{self.name} ({self.ip_address})"


class DiscoveryBeacon(BaseModel):
    """The JSON payload broadcast over UDP."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    name: str
    transfer_port: int = Field(alias="transferPort", ge=0, le=65535)

    def to_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "DiscoveryBeacon":
        return cls.model_validate_json(data)
