import asyncio
import json
import time
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from app import create_app
from backend import RoomRegistry
from constants import Settings
from peer import Peer


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWebSocket:
    """Just enough of Starlette's WebSocket for Peer.

    ``gate``, when given, holds every write until it is set.
    """

    def __init__(self, gate: Optional[asyncio.Event] = None):
        self.sent = []
        self.raw = []
        self.close_code = None
        self.fail_sends = False
        self.gate = gate

    async def send_text(self, data: str) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_sends or self.close_code is not None:
            raise RuntimeError("socket is closed")
        self.raw.append(data)
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_code = code

    def types(self) -> list:
        return [m["type"] for m in self.sent]


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def registry(clock):
    return RoomRegistry(clock=clock)


@pytest.fixture()
def make_peer():
    def _make(peer_id=None, gate=None):
        return Peer(FakeWebSocket(gate=gate), peer_id=peer_id)
    return _make


@pytest.fixture()
def test_settings():
    return Settings(
        env="development",
        log_level="DEBUG",
        max_rooms=None,
        enable_stats=True,
        room_max_age=3600,
        # keep the background tasks out of the way; tests drive sweeps directly
        room_cleanup_interval=3600,
        stats_interval=3600,
    )


@pytest.fixture()
def server_registry(clock):
    return RoomRegistry(clock=clock)


@pytest.fixture()
def relay_app(test_settings, server_registry):
    return create_app(test_settings, registry=server_registry)


@pytest.fixture()
def client(relay_app):
    with TestClient(relay_app) as test_client:
        yield test_client


@pytest.fixture()
def eventually():
    """Poll ``predicate`` until it holds; server-side cleanup finishes after the client socket exits."""
    def _wait(predicate, timeout: float = 2.0) -> None:
        deadline = time.monotonic() + timeout
        while not predicate():
            assert time.monotonic() < deadline, "condition not reached in time"
            time.sleep(0.01)
    return _wait
