from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from lanshare.config import CODE_ALPHABET
from lanshare.signaling.registry import ShareCodeRegistry, create_registry_app


@pytest.fixture
def registry(clock):
    return ShareCodeRegistry(clock=clock)


@pytest.fixture
def client(registry):
    with TestClient(create_registry_app(registry)) as c:
        yield c


def test_generated_codes_use_unambiguous_alphabet(registry):
    for _ in range(200):
        code = registry.generate_code()
        assert len(code) == 6
        assert set(code) <= set(CODE_ALPHABET)
    assert not set("01IO") & set(CODE_ALPHABET)


def test_registration_expires_after_ttl(registry, clock):
    entry = registry.register("10.0.0.2", 5001, "Alice")

    clock.advance(300)
    assert registry.lookup(entry.code) is not None

    clock.advance(0.001)
    assert registry.lookup(entry.code) is None
    assert registry.refresh(entry.code, "10.0.0.2") is False
    assert len(registry) == 0
    assert registry.sweep() == [entry.code]


def test_refresh_extends_lifetime_and_updates_address(registry, clock):
    entry = registry.register("10.0.0.2", 5001, "Alice")
    clock.advance(200)
    assert registry.refresh(entry.code.lower(), "10.0.0.9")

    clock.advance(200)
    found = registry.lookup(entry.code)
    assert found is not None
    assert (found.ip, found.port) == ("10.0.0.9", 5001)


def test_sweep_keeps_live_entries(registry, clock):
    old = registry.register("10.0.0.2", 5001, "Old")
    clock.advance(250)
    fresh = registry.register("10.0.0.3", 5002, "Fresh")
    clock.advance(100)

    assert registry.sweep() == [old.code]
    assert registry.lookup(fresh.code) is not None


def test_codes_are_unique_among_live_entries(clock):
    registry = ShareCodeRegistry(clock=clock, code_length=1, alphabet="AB")
    first = registry.register("10.0.0.2", 5001, "A")
    second = registry.register("10.0.0.3", 5002, "B")
    assert {first.code, second.code} == {"A", "B"}

    assert registry.unregister(first.code)
    assert registry.register("10.0.0.4", 5003, "C").code == first.code


def test_expired_codes_can_be_reissued(clock):
    registry = ShareCodeRegistry(clock=clock, code_length=1, alphabet="A")
    first = registry.register("10.0.0.2", 5001, "A")
    clock.advance(301)
    second = registry.register("10.0.0.3", 5002, "B")

    assert second.code == first.code
    assert registry.lookup("A").ip == "10.0.0.3"


def test_register_and_lookup_over_http(client):
    response = client.post("/register", params={"port": 5001, "name": "Alice"})
    assert response.status_code == 200
    body = response.json()
    assert body["expiresIn"] == 300
    assert len(body["code"]) == 6

    response = client.get("/lookup", params={"code": body["code"].lower()})
    assert response.status_code == 200
    assert response.json() == {"ip": "testclient", "port": 5001, "name": "Alice"}


def test_register_without_name_is_unknown(client):
    code = client.post("/register", params={"port": 5001}).json()["code"]
    assert client.get("/lookup", params={"code": code}).json()["name"] == "Unknown"


@pytest.mark.parametrize("params", [{}, {"port": "0"}, {"port": "70000"}, {"port": "abc"}, {"port": "-1"}])
def test_register_rejects_invalid_port(client, params):
    response = client.post("/register", params=params)
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid port"}


def test_forwarded_for_header_is_ignored(client):
    code = client.post(
        "/register",
        params={"port": 5001},
        headers={"X-Forwarded-For": "6.6.6.6"},
    ).json()["code"]
    assert client.get("/lookup", params={"code": code}).json()["ip"] == "testclient"


def test_lookup_errors(client):
    response = client.get("/lookup")
    assert response.status_code == 400
    assert response.json() == {"error": "Missing code"}

    response = client.get("/lookup", params={"code": "ZZZZZZ"})
    assert response.status_code == 404
    assert response.json() == {"error": "Code not found"}


def test_refresh_over_http(client, clock):
    code = client.post("/register", params={"port": 5001}).json()["code"]
    clock.advance(250)
    assert client.post("/refresh", params={"code": code}).json() == {"success": True}
    clock.advance(250)
    assert client.get("/lookup", params={"code": code}).status_code == 200

    response = client.post("/refresh", params={"code": "ZZZZZZ"})
    assert response.status_code == 404
    assert response.json() == {"error": "Code not found"}
    assert client.post("/refresh").status_code == 404


def test_unregister_always_succeeds(client):
    code = client.post("/register", params={"port": 5001}).json()["code"]
    assert client.post("/unregister", params={"code": code}).json() == {"success": True}
    assert client.get("/lookup", params={"code": code}).status_code == 404

    assert client.post("/unregister", params={"code": code}).json() == {"success": True}
    assert client.post("/unregister").json() == {"success": True}


def test_health_counts_live_codes(client, clock):
    client.post("/register", params={"port": 5001})
    assert client.get("/health").json() == {"status": "ok", "peers": 1}
    clock.advance(301)
    assert client.get("/health").json()["peers"] == 0


def test_cors_allows_any_origin(client):
    response = client.options(
        "/register",
        headers={"Origin": "http://example.com", "Access-Control-Request-Method": "POST"},
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"


def test_unknown_route_uses_error_shape(client):
    response = client.get("/nope")
    assert response.status_code == 404
    assert response.json() == {"error": "Not Found"}
