"""Application-wide configuration constants."""

import os
import platform
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# --- Identity ---
DEVICE_NAME = os.environ.get("LANSHARE_DEVICE_NAME") or platform.node() or "Unknown"

# --- Discovery (UDP broadcast) ---
DISCOVERY_PORT = _env_int("LANSHARE_DISCOVERY_PORT", 45454)
BROADCAST_INTERVAL = 2  # seconds
SWEEP_INTERVAL = 5  # seconds
PEER_TIMEOUT = 10  # seconds before a peer is considered offline

# --- Transfer (TCP) ---
TRANSFER_HOST = "0.0.0.0"
TRANSFER_PORT = _env_int("LANSHARE_TRANSFER_PORT", 0)  # 0 = ephemeral
CHUNK_SIZE = 8192  # 8 KB
CONNECT_TIMEOUT = 5  # seconds
PROGRESS_INTERVAL = 0.1  # seconds between progress updates
MAX_METADATA_SIZE = 64 * 1024
ACCEPT_TIMEOUT = 60  # seconds to wait for an interactive decision
AUTO_ACCEPT = _env_bool("LANSHARE_AUTO_ACCEPT", True)

FOLDER_ARCHIVE_SUFFIX = ".folder.zip"
PLACEHOLDER_FILE_NAME = "file"

# --- Signaling ---
SIGNALING_URL = os.environ.get("LANSHARE_SIGNALING_URL", "http://localhost:3000")
SIGNALING_TIMEOUT = 10  # seconds per HTTP request
REFRESH_INTERVAL = 120  # seconds, well inside REGISTRATION_TTL

SIGNALING_HOST = "0.0.0.0"
SIGNALING_PORT = _env_int("PORT", 3000)
REGISTRATION_TTL = 300  # seconds
REGISTRY_SWEEP_INTERVAL = 60  # seconds
CODE_LENGTH = 6
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no 0/O, 1/I

# --- Local API ---
API_HOST = "127.0.0.1"
API_PORT = _env_int("LANSHARE_API_PORT", 8765)

# --- Storage ---
DEFAULT_SAVE_DIR = os.environ.get(
    "LANSHARE_SAVE_DIR",
    str(Path.home() / "Downloads" / "LanShare"),
)
