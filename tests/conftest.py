"""Shared test fixtures and configuration for JustJio tests."""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Union

import pytest
from fastapi.testclient import TestClient

from justjio.auth.service import create_access_token
from justjio.main import app
from justjio.realtime.hub import hub
from justjio.rooms.service import room_service


@pytest.fixture
def api_client():
    """Provide a TestClient for the main FastAPI app.

    Entered as a context manager so REST calls and websocket sessions share
    one event loop.
    """
    with TestClient(app) as client:
        yield client


@pytest.fixture(autouse=True)
def reset_server_state():
    """Clear rooms and live connections after each test."""
    yield
    room_service.clear()
    hub.clear()


def make_token(user_id: str, username: str = "") -> str:
    return create_access_token(user_id, username or f"user{user_id}")


def auth_headers(user_id: str, username: str = "") -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, username)}"}


BASE_TIME = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def message_data(message_id: int, minute: int = 0, room_id: str = "42", seq: Optional[int] = None) -> dict:
    """Wire-form message payload sent ``minute`` minutes after BASE_TIME."""
    data = {
        "id": message_id,
        "roomId": room_id,
        "senderId": "1",
        "senderName": "alice",
        "content": f"message {message_id}",
        "sentAt": (BASE_TIME + timedelta(minutes=minute)).isoformat(),
    }
    if seq is not None:
        data["seq"] = seq
    return data


class FakeTransport:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self) -> None:
        self.queue: "asyncio.Queue[Optional[Union[str, bytes]]]" = asyncio.Queue()
        self.closed = False

    def push(self, frame: Union[str, bytes]) -> None:
        self.queue.put_nowait(frame)

    def drop(self) -> None:
        """Simulate the server closing the connection."""
        self.queue.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        frame = await self.queue.get()
        if frame is None:
            raise StopAsyncIteration
        return frame

    async def close(self) -> None:
        self.closed = True
        self.queue.put_nowait(None)


class FakeConnector:
    """Records connect URLs and hands out FakeTransports (or failures)."""

    def __init__(self) -> None:
        self.urls: List[str] = []
        self.transports: List[FakeTransport] = []
        self.failures_left = 0
        # when set, every socket receives this frame and is closed at once
        self.reject_with: Optional[str] = None

    async def __call__(self, url: str) -> FakeTransport:
        self.urls.append(url)
        if self.failures_left > 0:
            self.failures_left -= 1
            raise OSError("connection refused")
        transport = FakeTransport()
        if self.reject_with is not None:
            transport.push(self.reject_with)
            transport.drop()
        self.transports.append(transport)
        return transport

    @property
    def latest(self) -> FakeTransport:
        return self.transports[-1]


@pytest.fixture
def connector():
    return FakeConnector()


async def wait_for(predicate, timeout: float = 1.0) -> None:
    """Yield to the event loop until ``predicate()`` is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)
