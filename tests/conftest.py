from __future__ import annotations

import asyncio
import socket

import pytest

from lanshare.discovery.identity import LocalIdentity


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class EventLog:
    """Collects (event, data) pairs from an EventEmitter subscription."""

    def __init__(self):
        self.events: list[tuple[str, object]] = []
        self._waiters: dict[str, asyncio.Event] = {}

    async def __call__(self, event: str, data) -> None:
        self.events.append((event, data))
        if event in self._waiters:
            self._waiters[event].set()

    def named(self, event: str) -> list:
        return [data for name, data in self.events if name == event]

    async def wait_for(self, event: str, timeout: float = 5.0):
        if not self.named(event):
            waiter = self._waiters.setdefault(event, asyncio.Event())
            await asyncio.wait_for(waiter.wait(), timeout)
        return self.named(event)[-1]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def alice():
    return LocalIdentity(name="Alice", instance_id="A1")


@pytest.fixture
def bob():
    return LocalIdentity(name="Bob", instance_id="B1")


@pytest.fixture
def free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def event_log():
    """Factory for fresh EventLog subscribers."""
    return EventLog
