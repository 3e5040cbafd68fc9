"""Shared test fixtures and configuration for backend tests."""
from typing import List

import pytest
from fastapi.testclient import TestClient

from app.chat.hub import ChatHub
from app.main import app
from app.storage.service import MessageStore


class FakeConnection:
    """Stands in for a WebSocket: records every frame sent to it."""

    def __init__(self, name: str = "", fail: bool = False) -> None:
        self.name = name
        self.fail = fail
        self.sent: List[dict] = []

    async def send_json(self, data: dict) -> None:
        if self.fail:
            raise RuntimeError(f"connection {self.name} is closed")
        self.sent.append(data)

    def events(self, name: str) -> List[dict]:
        return [frame for frame in self.sent if frame.get("event") == name]

    def __repr__(self) -> str:
        return f"FakeConnection({self.name!r})"


@pytest.fixture
def store():
    """In-memory message store, closed after the test."""
    message_store = MessageStore(db_path=":memory:")
    yield message_store
    message_store.close()


@pytest.fixture
def hub(store):
    return ChatHub(store)


@pytest.fixture
def make_connection():
    """Factory for FakeConnection objects."""
    return FakeConnection


@pytest.fixture
def api_client(hub):
    """Provide a TestClient for the main FastAPI app backed by *hub*.

    The lifespan is not run, so the hub is installed on app.state directly.
    """
    app.state.chat_hub = hub
    yield TestClient(app)
    del app.state.chat_hub
