"""
Signaling Registry — maps short share codes to (address, port, name).

Runs as its own process (see ``signaling.server``). State is in memory
only; registrations expire when not refreshed within the TTL.
"""

import asyncio
import logging
import secrets
import time
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from lanshare.config import (
    CODE_ALPHABET,
    CODE_LENGTH,
    REGISTRATION_TTL,
    REGISTRY_SWEEP_INTERVAL,
)
from lanshare.signaling.models import Registration

logger = logging.getLogger(__name__)


def normalize_code(code: str) -> str:
    return code.strip().upper()


class ShareCodeRegistry:
    """In-memory code table. Codes are unique among live registrations."""

    def __init__(
        self,
        ttl: float = REGISTRATION_TTL,
        clock: Callable[[], float] = time.time,
        code_length: int = CODE_LENGTH,
        alphabet: str = CODE_ALPHABET,
    ) -> None:
        self._entries: dict[str, Registration] = {}
        self._ttl = ttl
        self._clock = clock
        self._code_length = code_length
        self._alphabet = alphabet

    @property
    def ttl(self) -> float:
        return self._ttl

    def _is_live(self, entry: Registration, now: float) -> bool:
        return now - entry.timestamp <= self._ttl

    def _live_entry(self, code: str) -> Registration | None:
        entry = self._entries.get(normalize_code(code))
        if entry and self._is_live(entry, self._clock()):
            return entry
        return None

    def generate_code(self) -> str:
        return "".join(secrets.choice(self._alphabet) for _ in range(self._code_length))

    def register(self, ip: str, port: int, name: str) -> Registration:
        """Create a registration under a fresh code, retrying on collision."""
        code = self.generate_code()
        while self._live_entry(code):
            code = self.generate_code()

        entry = Registration(code=code, ip=ip, port=port, name=name, timestamp=self._clock())
        self._entries[code] = entry
        logger.info(f"[Register] {code} -> {ip}:{port} ({name})")
        return entry

    def refresh(self, code: str, ip: str) -> bool:
        """Restart a live code's TTL and record the caller's current address."""
        entry = self._live_entry(code)
        if not entry:
            return False
        entry.timestamp = self._clock()
        entry.ip = ip
        logger.info(f"[Refresh] {entry.code} -> {ip}:{entry.port}")
        return True

    def lookup(self, code: str) -> Registration | None:
        entry = self._live_entry(code)
        if entry:
            logger.info(f"[Lookup] {entry.code} -> {entry.ip}:{entry.port}")
        return entry

    def unregister(self, code: str) -> bool:
        entry = self._entries.pop(normalize_code(code), None)
        if entry:
            logger.info(f"[Unregister] {entry.code}")
        return entry is not None

    def sweep(self, now: float | None = None) -> list[str]:
        """Delete registrations idle beyond the TTL; returns their codes."""
        now = self._clock() if now is None else now
        stale = [c for c, e in self._entries.items() if not self._is_live(e, now)]
        for code in stale:
            del self._entries[code]
            logger.info(f"[Cleanup] Removed stale peer: {code}")
        return stale

    def __len__(self) -> int:
        now = self._clock()
        return sum(1 for e in self._entries.values() if self._is_live(e, now))


def _client_ip(request: Request) -> str:
    # Only the connection's source address counts; forwarding headers
    # are client-controlled.
    return request.client.host if request.client else "unknown"


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_registry_app(
    registry: ShareCodeRegistry | None = None,
    sweep_interval: float = REGISTRY_SWEEP_INTERVAL,
) -> FastAPI:
    """Build the Signaling Registry HTTP app around ``registry``."""
    if registry is None:
        registry = ShareCodeRegistry()

    async def sweep_loop() -> None:
        while True:
            await asyncio.sleep(sweep_interval)
            registry.sweep()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start/stop the expiry sweep."""
        task = asyncio.create_task(sweep_loop())
        try:
            yield
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    app = FastAPI(title="LanShare Signaling", version="1.0.0", lifespan=lifespan)
    app.state.registry = registry

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.get("/health")
    async def health():
        return {"status": "ok", "peers": len(registry)}

    @app.post("/register")
    async def register(request: Request, port: str | None = None, name: str | None = None):
        try:
            port_number = int(port) if port else 0
        except ValueError:
            port_number = 0
        if not 1 <= port_number <= 65535:
            return _error(400, "Invalid port")

        entry = registry.register(_client_ip(request), port_number, name or "Unknown")
        return {"code": entry.code, "expiresIn": int(registry.ttl)}

    @app.post("/refresh")
    async def refresh(request: Request, code: str | None = None):
        if not code or not registry.refresh(code, _client_ip(request)):
            return _error(404, "Code not found")
        return {"success": True}

    @app.get("/lookup")
    async def lookup(code: str | None = None):
        if not code:
            return _error(400, "Missing code")
        entry = registry.lookup(code)
        if not entry:
            return _error(404, "Code not found")
        return {"ip": entry.ip, "port": entry.port, "name": entry.name}

    @app.post("/unregister")
    async def unregister(code: str | None = None):
        if code:
            registry.unregister(code)
        return {"success": True}

    return app
