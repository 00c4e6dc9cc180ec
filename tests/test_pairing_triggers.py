"""Timer-driven pairing: deferred after login and skip, and the periodic sweep."""
from __future__ import annotations

import asyncio
import json

import pytest

from stranger_chat.core.config import Settings
from stranger_chat.core.session_manager import SessionCoordinator


async def _wait_for(predicate, timeout: float = 1.0) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return bool(predicate())


async def _join(coordinator: SessionCoordinator, connection, name: str):
    assert await coordinator.connect(connection)
    await coordinator.handle_frame(connection, json.dumps({"type": "login", "username": name}))
    return connection


@pytest.mark.asyncio
async def test_login_schedules_pairing(make_connection):
    coordinator = SessionCoordinator(Settings(login_pairing_delay=0.01))
    try:
        alice = await _join(coordinator, make_connection(), "alice")
        bob = await _join(coordinator, make_connection(), "bob")

        assert await _wait_for(lambda: bob.of_type("matched"))
        assert alice.of_type("matched")[0]["partner"] == "bob"
        assert bob.of_type("matched")[0]["partner"] == "alice"
        assert alice.of_type("matched")[0]["roomId"] == bob.of_type("matched")[0]["roomId"]
    finally:
        await coordinator.shutdown()


@pytest.mark.asyncio
async def test_skip_schedules_pairing(make_connection):
    coordinator = SessionCoordinator(Settings(login_pairing_delay=3600, skip_pairing_delay=0.01))
    try:
        alice = await _join(coordinator, make_connection(), "alice")
        bob = await _join(coordinator, make_connection(), "bob")
        await coordinator.attempt_pairing()
        carol = await _join(coordinator, make_connection(), "carol")

        await coordinator.handle_frame(alice, json.dumps({"type": "skip"}))

        assert await _wait_for(lambda: carol.of_type("matched"))
        assert carol.of_type("matched")[0]["partner"] == "bob"
        assert bob.of_type("matched")[-1]["partner"] == "carol"
    finally:
        await coordinator.shutdown()


@pytest.mark.asyncio
async def test_pairing_sweep_needs_two_waiting(coordinator, join):
    await join("alice")

    await coordinator._pairing_sweep()
    assert len(coordinator.rooms) == 0
    assert len(coordinator.queue) == 1

    await join("bob")
    await coordinator._pairing_sweep()
    assert len(coordinator.rooms) == 1
    assert len(coordinator.queue) == 0


@pytest.mark.asyncio
async def test_started_coordinator_sweeps_queue(make_connection):
    coordinator = SessionCoordinator(Settings(login_pairing_delay=3600, pairing_sweep_interval=0.02))
    coordinator.start()
    try:
        alice = await _join(coordinator, make_connection(), "alice")
        bob = await _join(coordinator, make_connection(), "bob")

        assert await _wait_for(lambda: alice.of_type("matched") and bob.of_type("matched"))
        assert len(coordinator.rooms) == 1
    finally:
        await coordinator.shutdown()
