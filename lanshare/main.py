"""
LanShare — FastAPI application entry point.

Starts the Transfer Manager, Discovery Service and Signaling Client on
startup, serves the local REST API and WebSocket event feed.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from lanshare.api.routes import init_routes, router
from lanshare.api.websocket import ConnectionManager
from lanshare.config import API_HOST, API_PORT
from lanshare.discovery.identity import LocalIdentity
from lanshare.discovery.service import DiscoveryService
from lanshare.signaling.client import SignalingClient
from lanshare.transfer.manager import TransferManager

logger = logging.getLogger(__name__)


def create_app(
    identity: LocalIdentity | None = None,
    discovery_service: DiscoveryService | None = None,
    transfer_manager: TransferManager | None = None,
    signaling_client: SignalingClient | None = None,
) -> FastAPI:
    """Wire the services into a FastAPI app whose lifespan starts and stops them."""
    identity = identity or LocalIdentity()
    transfer_manager = transfer_manager or TransferManager(identity)
    discovery_service = discovery_service or DiscoveryService(identity)
    signaling_client = signaling_client or SignalingClient()
    ws_manager = ConnectionManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start/stop background services."""
        logger.info("Starting LanShare services...")

        transfer_manager.on_event(ws_manager.handle_event)
        discovery_service.on_peer_change(ws_manager.handle_event)
        signaling_client.events.on(ws_manager.handle_event)

        try:
            # The transfer port must be known before the first beacon goes out
            await transfer_manager.start()
            discovery_service.transfer_port = transfer_manager.receiver_port
            await discovery_service.start()

            logger.info(
                f"LanShare ready — "
                f"API: {API_HOST}:{API_PORT}, "
                f"Receiver port: {transfer_manager.receiver_port}"
            )
            yield
        except Exception as e:
            logger.error(f"Startup failed: {e}", exc_info=True)
            raise
        finally:
            logger.info("Shutting down LanShare services...")
            await signaling_client.unregister()
            await signaling_client.close()
            await discovery_service.stop()
            await transfer_manager.stop()

    app = FastAPI(
        title="LanShare",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173", "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Inject services into routes
    init_routes(discovery_service, transfer_manager, signaling_client)
    app.include_router(router)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await ws_manager.connect(websocket)
        try:
            while True:
                # Keep the connection alive; we don't expect client messages
                await websocket.receive_text()
        except WebSocketDisconnect:
            await ws_manager.disconnect(websocket)

    return app


def run() -> None:
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    uvicorn.run(
        create_app(),
        host=API_HOST,
        port=API_PORT,
        log_level="info",
    )


if __name__ == "__main__":
    run()
