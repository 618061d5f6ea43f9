"""WebSocket handler for real-time events."""

import asyncio
import json
import logging
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages WebSocket connections and broadcasts events."""

    def __init__(self) -> None:
        self._connections: list[WebSocket] = []
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections.append(websocket)
        logger.info(f"WebSocket client connected. Total: {len(self._connections)}")

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            if websocket in self._connections:
                self._connections.remove(websocket)
        logger.info(f"WebSocket client disconnected. Total: {len(self._connections)}")

    async def broadcast(self, event: str, data: Any) -> None:
        """Broadcast an event to all connected WebSocket clients."""
        message = json.dumps({"event": event, "data": jsonable_encoder(data)})
        async with self._lock:
            dead: list[WebSocket] = []
            for ws in self._connections:
                try:
                    await ws.send_text(message)
                except (WebSocketDisconnect, RuntimeError, OSError) as e:
                    logger.debug(f"Dropping WebSocket client: {e}")
                    dead.append(ws)
            for ws in dead:
                self._connections.remove(ws)

    async def handle_event(self, event_type: str, data: Any) -> None:
        """
        Event handler compatible with every service's EventEmitter.
        """
        await self.broadcast(event_type, data)
