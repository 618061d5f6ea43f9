"""
Client for the Signaling Registry.

Registers this instance under a short share code, keeps the code alive
with a background refresh loop and resolves other people's codes.
"""

import asyncio
import logging

import httpx
from pydantic import ValidationError

from lanshare.config import REFRESH_INTERVAL, SIGNALING_TIMEOUT, SIGNALING_URL
from lanshare.events import EventEmitter
from lanshare.signaling.models import RegisterResponse, SignalingPeer

logger = logging.getLogger(__name__)


class SignalingClient:
    """Talks to the registry over HTTP.

    Network and HTTP failures are logged and reported as ``None``/``False``
    results; they never raise out of the public methods.
    """

    def __init__(
        self,
        server_url: str = SIGNALING_URL,
        timeout: float = SIGNALING_TIMEOUT,
        refresh_interval: float = REFRESH_INTERVAL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.events = EventEmitter()
        self._server_url = server_url.rstrip("/")
        self._refresh_interval = refresh_interval
        self._http = httpx.AsyncClient(
            base_url=self._server_url,
            timeout=timeout,
            transport=transport,
        )
        self._current_code: str | None = None
        self._refresh_task: asyncio.Task | None = None

    @property
    def server_url(self) -> str:
        return self._server_url

    @property
    def current_code(self) -> str | None:
        """Current share code, or None if not registered."""
        return self._current_code

    async def __aenter__(self) -> "SignalingClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def register(self, port: int, name: str) -> str | None:
        """Obtain a share code for ``port`` and start refreshing it."""
        try:
            response = await self._http.post("/register", params={"port": port, "name": name})
            response.raise_for_status()
            result = RegisterResponse.model_validate(response.json())
        except (httpx.HTTPError, ValidationError, ValueError) as e:
            logger.warning(f"[Signaling] Registration failed: {e}")
            return None

        self._current_code = result.code
        logger.info(f"[Signaling] Registered with code: {result.code}")
        self._start_refresh_loop()
        await self.events.emit("share_code", {"code": result.code})
        return result.code

    async def lookup(self, code: str) -> SignalingPeer | None:
        """Resolve a share code. Returns None if unknown or unreachable."""
        try:
            response = await self._http.get("/lookup", params={"code": code.strip().upper()})
            if response.status_code == 404:
                logger.info(f"[Signaling] Code not found: {code}")
                return None
            response.raise_for_status()
            peer = SignalingPeer.model_validate(response.json())
        except (httpx.HTTPError, ValidationError, ValueError) as e:
            logger.warning(f"[Signaling] Lookup failed: {e}")
            return None

        logger.info(f"[Signaling] Found peer: {peer.name} at {peer.ip}:{peer.port}")
        return peer

    async def refresh(self, code: str | None = None) -> bool:
        """Restart the registry TTL for ``code`` (default: our own code)."""
        code = code or self._current_code
        if not code:
            return False
        try:
            response = await self._http.post("/refresh", params={"code": code})
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"[Signaling] Refresh failed for {code}: {e}")
            return False
        logger.debug(f"[Signaling] Refreshed: {code}")
        return True

    async def unregister(self) -> None:
        """Stop refreshing and release the current code."""
        await self._stop_refresh_loop()
        code = self._current_code
        if code is None:
            return
        self._current_code = None
        try:
            response = await self._http.post("/unregister", params={"code": code})
            response.raise_for_status()
            logger.info(f"[Signaling] Unregistered: {code}")
        except httpx.HTTPError as e:
            logger.warning(f"[Signaling] Unregister failed for {code}: {e}")

    async def close(self) -> None:
        await self._stop_refresh_loop()
        await self._http.aclose()

    def _start_refresh_loop(self) -> None:
        if self._refresh_task:
            self._refresh_task.cancel()
        self._refresh_task = asyncio.create_task(self._refresh_loop(), name="signaling-refresh")

    async def _stop_refresh_loop(self) -> None:
        task, self._refresh_task = self._refresh_task, None
        if task and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def _refresh_loop(self) -> None:
        """Keep the registration alive until unregistered."""
        while self._current_code is not None:
            await asyncio.sleep(self._refresh_interval)
            # Failures are retried on the next interval
            await self.refresh()
