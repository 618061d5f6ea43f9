"""REST API routes for LanShare."""

import logging
import os
import uuid

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from lanshare.discovery.models import Peer
from lanshare.transfer.models import SendRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# These will be injected by main.py at startup
_discovery_service = None
_transfer_manager = None
_signaling_client = None


def init_routes(discovery_service, transfer_manager, signaling_client) -> None:
    """Inject service dependencies into the routes module."""
    global _discovery_service, _transfer_manager, _signaling_client
    _discovery_service = discovery_service
    _transfer_manager = transfer_manager
    _signaling_client = signaling_client


def _valid_paths(paths: list[str]) -> list[str]:
    valid = []
    for path in paths:
        if os.path.exists(path):
            valid.append(path)
        else:
            logger.warning(f"Skipping invalid path: {path}")
    if not valid:
        raise HTTPException(status_code=400, detail="No valid files selected")
    return valid


# --- Device Discovery ---

@router.get("/devices")
async def list_devices():
    """Return discovered and manually added peers."""
    peers = _discovery_service.get_peers()
    return {"devices": [p.model_dump() for p in peers]}


class ManualPeerBody(BaseModel):
    id: str | None = None
    name: str
    ip_address: str
    transfer_port: int = Field(ge=1, le=65535)


class ManualPeersBody(BaseModel):
    peers: list[ManualPeerBody]


@router.put("/manual-peers")
async def set_manual_peers(body: ManualPeersBody):
    """Replace the list of manually added peers."""
    peers = [
        Peer(
            id=p.id or uuid.uuid4().hex[:16],
            name=p.name,
            ip_address=p.ip_address,
            transfer_port=p.transfer_port,
        )
        for p in body.peers
    ]
    _discovery_service.set_manual_peers(peers)
    return {"devices": [p.model_dump() for p in _discovery_service.get_peers()]}


# --- Transfers ---

@router.get("/transfers")
async def list_transfers():
    """Return all transfers (active + completed)."""
    transfers = _transfer_manager.get_transfers()
    return {"transfers": [t.to_event() for t in transfers]}


@router.post("/transfers")
async def create_transfer(body: SendRequest):
    """Send files or folders to a known peer using absolute paths.

    The backend reads files directly from disk.
    """
    peer = _discovery_service.find_peer(body.peer_id)
    if not peer:
        raise HTTPException(status_code=404, detail="Peer not found")

    infos = await _transfer_manager.queue_send(peer, _valid_paths(body.file_paths))
    return {
        "transfers": [i.to_event() for i in infos],
        "message": f"Queued {len(infos)} item(s) for transfer",
    }


@router.post("/transfers/{transfer_id}/cancel")
async def cancel_transfer(transfer_id: str):
    if not await _transfer_manager.cancel_transfer(transfer_id):
        raise HTTPException(status_code=404, detail="No active transfer with that id")
    return {"status": "cancelled"}


@router.post("/transfers/{transfer_id}/accept")
async def accept_transfer(transfer_id: str):
    if not await _transfer_manager.respond_to_request(transfer_id, accept=True):
        raise HTTPException(status_code=404, detail="No pending request with that id")
    return {"status": "accepted"}


@router.post("/transfers/{transfer_id}/reject")
async def reject_transfer(transfer_id: str):
    if not await _transfer_manager.respond_to_request(transfer_id, accept=False):
        raise HTTPException(status_code=404, detail="No pending request with that id")
    return {"status": "rejected"}


# --- Share codes ---

@router.get("/share-code")
async def get_share_code():
    return {"code": _signaling_client.current_code}


@router.post("/share-code")
async def create_share_code():
    """Register with the signaling server and return our share code."""
    code = await _signaling_client.register(
        _transfer_manager.receiver_port, _discovery_service.device_name
    )
    if code is None:
        raise HTTPException(status_code=502, detail="Signaling server unavailable")
    return {"code": code}


@router.delete("/share-code")
async def delete_share_code():
    await _signaling_client.unregister()
    return {"status": "unregistered"}


class ConnectBody(BaseModel):
    code: str
    file_paths: list[str]


@router.post("/connect")
async def send_by_code(body: ConnectBody):
    """Resolve a share code and send files or folders to its owner."""
    paths = _valid_paths(body.file_paths)
    result = await _signaling_client.lookup(body.code)
    if result is None:
        raise HTTPException(status_code=404, detail="Code not found")

    infos = await _transfer_manager.queue_send(result.to_peer(body.code), paths)
    return {
        "peer": result.model_dump(),
        "transfers": [i.to_event() for i in infos],
    }


# --- Settings ---

class SettingsBody(BaseModel):
    device_name: str | None = None
    save_dir: str | None = None
    auto_accept: bool | None = None


@router.get("/settings")
async def get_settings():
    return {
        "device_id": _discovery_service.identity.id,
        "device_name": _discovery_service.device_name,
        "save_dir": _transfer_manager.save_dir,
        "auto_accept": _transfer_manager.auto_accept,
        "transfer_port": _transfer_manager.receiver_port,
        "signaling_url": _signaling_client.server_url,
    }


@router.put("/settings")
async def update_settings(body: SettingsBody):
    if body.device_name is not None:
        if not body.device_name.strip():
            raise HTTPException(status_code=400, detail="Invalid device name")
        _discovery_service.device_name = body.device_name
    if body.save_dir is not None:
        try:
            _transfer_manager.save_dir = body.save_dir
        except OSError as e:
            raise HTTPException(
                status_code=400, detail=f"Invalid directory: {e}"
            )
    if body.auto_accept is not None:
        _transfer_manager.auto_accept = body.auto_accept
    return {"status": "updated"}
