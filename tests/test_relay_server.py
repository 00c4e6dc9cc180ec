"""Tests for the WebSocket handler, HTTP probes and the connection wrapper."""
from __future__ import annotations

import json
from http import HTTPStatus
from types import SimpleNamespace

import pytest
from websockets.datastructures import Headers
from websockets.exceptions import ConnectionClosedError
from websockets.http11 import Response
from websockets.protocol import State

from stranger_chat.core.config import Settings
from stranger_chat.network.connection import ClientConnection, resolve_origin
from stranger_chat.relay_server import handler, make_process_request


class DummyWebSocket:
    """Minimal stand-in for websockets' ServerConnection."""

    def __init__(self, frames=(), remote_address=("198.51.100.4", 50000), headers=None, fail_send=False) -> None:
        self.frames = list(frames)
        self.remote_address = remote_address
        self.request = SimpleNamespace(headers=headers or {})
        self.state = State.OPEN
        self.sent: list[dict] = []
        self.fail_send = fail_send

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self.frames:
            yield frame

    async def send(self, text: str) -> None:
        if self.fail_send:
            raise ConnectionClosedError(None, None)
        self.sent.append(json.loads(text))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.state = State.CLOSED


class DummyHttpConnection:
    def respond(self, status: HTTPStatus, text: str) -> Response:
        headers = Headers([("Content-Type", "text/plain; charset=utf-8")])
        return Response(status.value, status.phrase, headers, text.encode())


@pytest.mark.asyncio
async def test_handler_runs_frames_and_cleans_up(coordinator):
    websocket = DummyWebSocket(
        frames=[
            json.dumps({"type": "login", "username": "alice"}),
            json.dumps({"type": "message", "content": "x" * 20000}),
        ]
    )

    await handler(websocket, coordinator)

    kinds = [payload["type"] for payload in websocket.sent]
    assert "login_success" in kinds
    assert kinds[-1] == "error"
    assert len(coordinator.registry) == 0
    assert len(coordinator.queue) == 0


@pytest.mark.asyncio
async def test_handler_rejects_rate_limited_origin(coordinator):
    for _ in range(10):
        await handler(DummyWebSocket(), coordinator)

    rejected = DummyWebSocket(frames=[json.dumps({"type": "login", "username": "alice"})])
    await handler(rejected, coordinator)

    assert rejected.state is State.CLOSED
    assert rejected.sent == []


@pytest.mark.asyncio
async def test_status_probe_returns_json(coordinator):
    process_request = make_process_request(coordinator)

    response = process_request(DummyHttpConnection(), SimpleNamespace(path="/api/status?verbose=1"))

    assert response.status_code == 200
    assert response.headers.get_all("Content-Type") == ["application/json"]
    assert json.loads(response.body) == {"status": "online", "waitingUsers": 0, "activeRooms": 0, "connections": 0}


@pytest.mark.asyncio
async def test_health_probe_and_upgrade_passthrough(coordinator):
    process_request = make_process_request(coordinator)

    assert process_request(DummyHttpConnection(), SimpleNamespace(path="/healthz")).body == b"ok\n"
    assert process_request(DummyHttpConnection(), SimpleNamespace(path="/")) is None


def test_resolve_origin():
    websocket = DummyWebSocket(headers={"X-Forwarded-For": "203.0.113.5, 10.0.0.1"})

    assert resolve_origin(websocket) == "198.51.100.4"
    assert resolve_origin(websocket, trust_forwarded_for=True) == "203.0.113.5"
    assert resolve_origin(DummyWebSocket(remote_address=None)) == "unknown"


@pytest.mark.asyncio
async def test_client_connection_swallows_send_failures():
    websocket = DummyWebSocket(fail_send=True)
    connection = ClientConnection(websocket, origin="198.51.100.4")

    assert connection.is_open()
    assert await connection.send({"type": "online_count", "count": 1}) is False

    await connection.close(1000)
    assert not connection.is_open()
    assert await connection.send({"type": "online_count", "count": 1}) is False


def test_client_connection_identities_are_unique():
    first = ClientConnection(DummyWebSocket(), origin="a")
    second = ClientConnection(DummyWebSocket(), origin="a")

    assert first.identity != second.identity


def test_transport_limit_sits_above_frame_limit():
    settings = Settings()

    # Frames between the two limits get an error reply; above transport_max_size websockets closes with 1009
    assert settings.transport_max_size == 1 << 20
    assert settings.transport_max_size > settings.max_frame_bytes
