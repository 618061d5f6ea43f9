"""Pydantic models for the share-code signaling service."""

from pydantic import BaseModel, ConfigDict, Field

from lanshare.discovery.models import Peer


class Registration(BaseModel):
    """A live share code held by the registry."""
    code: str
    ip: str
    port: int
    name: str
    timestamp: float  # Unix timestamp of registration or last refresh


class RegisterResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str
    expires_in: int = Field(alias="expiresIn")


class SignalingPeer(BaseModel):
    """Lookup result: where the owner of a code accepts transfers."""
    ip: str
    port: int = Field(ge=1, le=65535)
    name: str = "Unknown"

    def to_peer(self, code: str) -> Peer:
        return Peer(
            id=f"code-{code.upper()}",
            name=self.name,
            ip_address=self.ip,
            transfer_port=self.port,
            is_manual=True,
        )
