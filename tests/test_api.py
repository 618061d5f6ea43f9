from __future__ import annotations

import time

import httpx
import pytest
from fastapi.testclient import TestClient

from lanshare.discovery.identity import LocalIdentity
from lanshare.discovery.service import DiscoveryService
from lanshare.main import create_app
from lanshare.signaling.client import SignalingClient
from lanshare.signaling.registry import ShareCodeRegistry, create_registry_app
from lanshare.transfer.manager import TransferManager


@pytest.fixture
def registry():
    return ShareCodeRegistry()


@pytest.fixture
def inbox(tmp_path):
    return tmp_path / "inbox"


@pytest.fixture
def client(tmp_path, inbox, registry):
    identity = LocalIdentity(name="Desk", instance_id="D1")
    app = create_app(
        identity=identity,
        discovery_service=DiscoveryService(identity, port=0, broadcast_addresses=[]),
        transfer_manager=TransferManager(
            identity, save_dir=str(inbox), host="127.0.0.1", port=0, auto_accept=True,
        ),
        signaling_client=SignalingClient(
            "http://registry.test",
            transport=httpx.ASGITransport(app=create_registry_app(registry)),
        ),
    )
    with TestClient(app) as c:
        yield c


@pytest.fixture
def outgoing(tmp_path):
    path = tmp_path / "out" / "hello.txt"
    path.parent.mkdir()
    path.write_text("hello over the wire", encoding="utf-8")
    return path


def wait_until_settled(client, count: int) -> list[dict]:
    for _ in range(100):
        transfers = client.get("/api/transfers").json()["transfers"]
        if len(transfers) >= count and all(t["state"] in ("completed", "failed", "rejected") for t in transfers):
            return transfers
        time.sleep(0.05)
    raise AssertionError(f"transfers did not settle: {transfers}")


def self_peer(client) -> dict:
    port = client.get("/api/settings").json()["transfer_port"]
    return {"id": "SELF", "name": "Me", "ip_address": "127.0.0.1", "transfer_port": port}


def test_settings_roundtrip(client, tmp_path, inbox):
    settings = client.get("/api/settings").json()
    assert settings["device_id"] == "D1"
    assert settings["device_name"] == "Desk"
    assert settings["save_dir"] == str(inbox)
    assert settings["auto_accept"] is True
    assert settings["transfer_port"] > 0
    assert settings["signaling_url"] == "http://registry.test"

    new_dir = tmp_path / "elsewhere"
    response = client.put("/api/settings", json={
        "device_name": "Laptop", "save_dir": str(new_dir), "auto_accept": False,
    })
    assert response.status_code == 200
    assert new_dir.is_dir()

    settings = client.get("/api/settings").json()
    assert (settings["device_name"], settings["save_dir"], settings["auto_accept"]) == (
        "Laptop", str(new_dir), False,
    )


def test_settings_validation(client, tmp_path):
    assert client.put("/api/settings", json={"device_name": "   "}).status_code == 400

    blocker = tmp_path / "a-file"
    blocker.write_text("x")
    response = client.put("/api/settings", json={"save_dir": str(blocker / "sub")})
    assert response.status_code == 400
    assert "Invalid directory" in response.json()["detail"]


def test_manual_peers_show_up_as_devices(client):
    assert client.get("/api/devices").json() == {"devices": []}

    response = client.put("/api/manual-peers", json={"peers": [
        {"id": "F1", "name": "Friend", "ip_address": "203.0.113.7", "transfer_port": 7000},
        {"name": "Anon", "ip_address": "203.0.113.8", "transfer_port": 7001},
    ]})
    assert response.status_code == 200

    devices = {d["name"]: d for d in client.get("/api/devices").json()["devices"]}
    assert set(devices) == {"Friend", "Anon"}
    assert devices["Friend"]["id"] == "F1"
    assert devices["Anon"]["id"]
    assert all(d["is_manual"] for d in devices.values())


def test_manual_peer_port_is_validated(client):
    response = client.put("/api/manual-peers", json={"peers": [
        {"name": "Bad", "ip_address": "203.0.113.7", "transfer_port": 0},
    ]})
    assert response.status_code == 422


def test_send_errors(client, outgoing):
    response = client.post("/api/transfers", json={"peer_id": "ghost", "file_paths": [str(outgoing)]})
    assert response.status_code == 404

    client.put("/api/manual-peers", json={"peers": [self_peer(client)]})
    response = client.post("/api/transfers", json={"peer_id": "SELF", "file_paths": ["/no/such/file"]})
    assert response.status_code == 400


def test_send_to_manual_peer(client, outgoing, inbox):
    client.put("/api/manual-peers", json={"peers": [self_peer(client)]})

    response = client.post("/api/transfers", json={"peer_id": "SELF", "file_paths": [str(outgoing)]})
    assert response.status_code == 200
    [queued] = response.json()["transfers"]
    assert queued["direction"] == "sending"

    transfers = wait_until_settled(client, 2)
    assert {t["state"] for t in transfers} == {"completed"}
    assert {t["direction"] for t in transfers} == {"sending", "receiving"}
    assert (inbox / "hello.txt").read_text(encoding="utf-8") == "hello over the wire"


def test_unknown_transfer_actions_are_404(client):
    for action in ("cancel", "accept", "reject"):
        assert client.post(f"/api/transfers/nope/{action}").status_code == 404


def test_share_code_lifecycle(client, registry):
    assert client.get("/api/share-code").json() == {"code": None}

    code = client.post("/api/share-code").json()["code"]
    assert client.get("/api/share-code").json() == {"code": code}

    entry = registry.lookup(code)
    assert entry.name == "Desk"
    assert entry.port == client.get("/api/settings").json()["transfer_port"]

    assert client.delete("/api/share-code").status_code == 200
    assert client.get("/api/share-code").json() == {"code": None}
    assert registry.lookup(code) is None


def test_send_by_share_code(client, outgoing, inbox):
    code = client.post("/api/share-code").json()["code"]

    response = client.post("/api/connect", json={"code": code.lower(), "file_paths": [str(outgoing)]})
    assert response.status_code == 200
    assert response.json()["peer"]["port"] == client.get("/api/settings").json()["transfer_port"]

    wait_until_settled(client, 2)
    assert (inbox / "hello.txt").exists()


def test_connect_with_unknown_code(client, outgoing):
    response = client.post("/api/connect", json={"code": "ZZZZZZ", "file_paths": [str(outgoing)]})
    assert response.status_code == 404


def test_events_reach_websocket_clients(client):
    with client.websocket_connect("/ws") as ws:
        time.sleep(0.1)
        code = client.post("/api/share-code").json()["code"]
        message = ws.receive_json()
    assert message == {"event": "share_code", "data": {"code": code}}
