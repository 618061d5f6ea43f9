"""
Observer hub shared by the discovery, transfer and signaling services.

Subscribers are ``async fn(event: str, data)`` callables. A failing
subscriber is logged and never affects the publisher or other subscribers.
"""

import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

EventCallback = Callable[[str, Any], Awaitable[None]]


class EventEmitter:
    """Fan-out of named events to any number of async subscribers."""

    def __init__(self) -> None:
        self._callbacks: list[EventCallback] = []

    def on(self, callback: EventCallback) -> Callable[[], None]:
        """Register a callback. Returns a function that unsubscribes it."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    async def emit(self, event: str, data: Any = None) -> None:
        """Emit an event to all registered callbacks."""
        for cb in list(self._callbacks):
            try:
                await cb(event, data)
            except Exception as e:
                logger.error(f"Event callback error ({event}): {e}")
