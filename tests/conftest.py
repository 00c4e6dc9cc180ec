"""Shared fixtures: in-memory connections and a coordinator with manual pairing."""
from __future__ import annotations

import itertools
import json

import pytest
import pytest_asyncio

from stranger_chat.core.config import Settings
from stranger_chat.core.session_manager import SessionCoordinator
from stranger_chat.security.rate_limiter import RateLimiter


class DummyConnection:
    """Stand-in for ClientConnection that records outbound payloads."""

    def __init__(self, identity: str, origin: str) -> None:
        self.identity = identity
        self.origin = origin
        self.open = True
        self.sent: list[dict] = []
        self.closed_with: tuple[int, str] | None = None

    def is_open(self) -> bool:
        return self.open

    async def send(self, payload: dict) -> bool:
        if not self.open:
            return False
        self.sent.append(payload)
        return True

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.open = False
        self.closed_with = (code, reason)

    def of_type(self, kind: str) -> list[dict]:
        return [payload for payload in self.sent if payload["type"] == kind]


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    # Deferred pairing is pushed out of reach; tests call attempt_pairing() themselves
    return Settings(login_pairing_delay=3600, skip_pairing_delay=3600)


@pytest_asyncio.fixture
async def coordinator(settings, clock):
    limiter = RateLimiter(
        max_messages=settings.message_rate_limit,
        max_connections=settings.connection_rate_limit,
        period=settings.rate_window_seconds,
        clock=clock,
    )
    coord = SessionCoordinator(settings, rate_limiter=limiter)
    yield coord
    await coord.shutdown()


@pytest.fixture
def make_connection():
    counter = itertools.count(1)

    def factory(identity: str | None = None, origin: str | None = None) -> DummyConnection:
        n = next(counter)
        return DummyConnection(identity or f"conn-{n}", origin or f"10.0.0.{n}")

    return factory


@pytest.fixture
def join(coordinator, make_connection):
    """Connect and log in a participant; returns its connection."""

    async def _join(name: str) -> DummyConnection:
        connection = make_connection()
        assert await coordinator.connect(connection)
        await coordinator.handle_frame(connection, json.dumps({"type": "login", "username": name}))
        return connection

    return _join


@pytest.fixture
def send(coordinator):
    async def _send(connection: DummyConnection, payload: dict) -> None:
        await coordinator.handle_frame(connection, json.dumps(payload))

    return _send
