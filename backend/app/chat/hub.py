"""Lifecycle-scoped owner of the chat core.

One ChatHub is built per application (in the FastAPI lifespan) and stored on
``app.state.chat_hub``. Tests build their own with an in-memory store and
fake connections.
"""
import asyncio
import logging
from typing import Optional

from fastapi import WebSocket

from app.config import AppConfig
from app.storage.service import MessageStore

from .delivery import MessageRouter
from .history import HistoryLoader
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class ChatHub:
    """Bundles the registry, the message router and the history loader.

    Attributes:
        store: Persistence gateway shared by router and loader.
        registry: Live username -> connections map.
        router: Handles sendMessage.
        history: Handles getMessages.
    """

    def __init__(self, store: MessageStore, timestamp_format: str = "%H:%M") -> None:
        self.store = store
        self.registry = ConnectionRegistry()
        self.router = MessageRouter(self.registry, store, timestamp_format=timestamp_format)
        self.history = HistoryLoader(store)

    @classmethod
    def from_config(cls, config: AppConfig) -> "ChatHub":
        store = MessageStore(db_path=config.database.path)
        return cls(store, timestamp_format=config.chat.timestamp_format)

    def join(self, connection: WebSocket, username: str) -> None:
        self.registry.join(connection, username)

    def leave(self, connection: WebSocket) -> Optional[str]:
        return self.registry.leave(connection)

    async def rename_user(self, old_username: str, new_username: str) -> int:
        """Cascade a username change into stored messages and live connections.

        This is the entry point for the profile-update service that owns user
        records; the chat transport itself never renames anyone. The store is
        updated first; if that fails the registry is left untouched and
        PersistenceError propagates.

        Returns:
            Number of stored messages rewritten.
        """
        loop = asyncio.get_running_loop()
        touched = await loop.run_in_executor(
            None, self.store.rename_username, old_username, new_username
        )
        self.registry.rename(old_username, new_username)
        return touched

    def close(self) -> None:
        self.store.close()
        logger.info("Chat hub closed")
