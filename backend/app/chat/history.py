"""Conversation history for a single requesting connection.

History is always returned in full, oldest first. There is no pagination:
a long-lived global room grows without bound and every request reads all of
it back.
"""
import asyncio
import logging
from typing import List

from fastapi import WebSocket

from app.storage.schemas import ChatMessage
from app.storage.service import MessageStore, PersistenceError

from .schemas import HistoryRequest

logger = logging.getLogger(__name__)

HISTORY_EVENT = "history"


class HistoryLoader:
    """Reads global or two-party history from the message store."""

    def __init__(self, store: MessageStore) -> None:
        self._store = store

    async def load_history(self, request: HistoryRequest) -> List[ChatMessage]:
        """Fetch the requested conversation, ordered by id.

        Raises:
            PersistenceError: If the store cannot be queried.
        """
        message_filter = request.to_filter()
        loop = asyncio.get_running_loop()
        messages = await loop.run_in_executor(
            None, self._store.query_messages, message_filter
        )
        logger.debug(f"[History] {message_filter.scope.value} history: {len(messages)} messages")
        return messages

    async def send_history(self, connection: WebSocket, request: HistoryRequest) -> bool:
        """Load history and send it to *connection* only.

        A store failure is logged and nothing is sent.

        Returns:
            True if a history frame was sent.
        """
        try:
            messages = await self.load_history(request)
        except PersistenceError as e:
            logger.error(f"[History] Could not load {request.type.value} history: {e}")
            return False

        await connection.send_json({
            "event": HISTORY_EVENT,
            "messages": [msg.model_dump(mode="json") for msg in messages],
        })
        return True
