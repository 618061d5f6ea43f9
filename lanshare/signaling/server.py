"""
Signaling Registry entry point.

    lanshare-signaling            # listens on $PORT (default 3000)
"""

import logging

import uvicorn

from lanshare.config import SIGNALING_HOST, SIGNALING_PORT
from lanshare.signaling.registry import create_registry_app

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = create_registry_app()


def run() -> None:
    logger.info(f"LanShare signaling server running on port {SIGNALING_PORT}")
    uvicorn.run(app, host=SIGNALING_HOST, port=SIGNALING_PORT, log_level="info")


if __name__ == "__main__":
    run()
