"""Shared test fixtures and configuration for backend tests."""
import asyncio
from typing import Any, Dict, List

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketState

from planning_poker.config import AppConfig, PresenceSettings
from planning_poker.main import create_app
from planning_poker.rooms.sessions import ConnectionSession


class FakeWebSocket:
    """Stand-in for a Starlette WebSocket that records what is sent to it."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.close_code = None
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def send_json(self, data: Dict[str, Any]) -> None:
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.close_code = code
        self.application_state = WebSocketState.DISCONNECTED

    def drop(self) -> None:
        """Simulate the peer vanishing without a close event."""
        self.client_state = WebSocketState.DISCONNECTED


def drain_frames(session: ConnectionSession) -> List[Dict[str, Any]]:
    """Pop every queued outbound frame from a session's outbox."""
    frames = []
    while True:
        try:
            item = session.outbox.get_nowait()
        except asyncio.QueueEmpty:
            return frames
        if isinstance(item, dict):
            frames.append(item)


@pytest.fixture
def make_session():
    """Factory for sessions backed by a FakeWebSocket."""
    def _make(send_queue_size: int = 64) -> ConnectionSession:
        return ConnectionSession(FakeWebSocket(), send_queue_size=send_queue_size)
    return _make


@pytest.fixture
def drain():
    return drain_frames


@pytest.fixture
def test_config() -> AppConfig:
    """Config with the background sweep disabled so tests drive it explicitly."""
    return AppConfig(presence=PresenceSettings(sweep_interval_seconds=0))


@pytest.fixture
def poker_app(test_config):
    return create_app(test_config)


@pytest.fixture
def api_client(poker_app):
    """TestClient running the app lifespan.

    Entering the client as a context manager keeps every WebSocket opened
    through it on the same event loop as the room service.
    """
    with TestClient(poker_app) as client:
        yield client
