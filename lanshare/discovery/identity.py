"""
Ephemeral identity of the running instance.
"""

import logging
import platform
import uuid

from lanshare.config import DEVICE_NAME

logger = logging.getLogger(__name__)


def generate_instance_id() -> str:
    """A fresh id per process run: hostname prefix plus random suffix, 16 chars."""
    host = platform.node() or "lanshare"
    return f"{host}-{uuid.uuid4().hex}"[:16]


class LocalIdentity:
    """Id and display name this instance announces and sends with transfers.

    The id is never persisted; a restart produces a new one.
    """

    def __init__(self, name: str | None = None, instance_id: str | None = None):
        self.id = instance_id or generate_instance_id()
        self.name = name or DEVICE_NAME
        logger.info(f"Local identity: {self.name} ({self.id})")

    def __repr__(self) -> str:
        return f"LocalIdentity(id={self.id!r}, name={self.name!r})"
