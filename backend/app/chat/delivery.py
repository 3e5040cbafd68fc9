"""Message routing: persist first, then fan out to live connections.

Delivery contract:
    - A message is dispatched only after the store has assigned its id.
    - If the insert fails the message is dropped: nothing is delivered and
      the sender is not told (at-most-once, no acknowledgement).
    - A global message (no receiver) goes to every live connection.
    - A direct message goes to the sender's and the receiver's connections,
      so the sender's other devices see it too.
    - Sends to stale connections fail quietly and the connection is removed
      from the registry; other targets are unaffected.

Performance Notes:
    - The DuckDB insert runs in the default executor so the event loop keeps
      serving other connections while it waits.
    - Dispatch uses asyncio.gather() for concurrent delivery.
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from fastapi import WebSocket

from app.storage.schemas import ChatMessage
from app.storage.service import MessageStore, PersistenceError

from .registry import ConnectionRegistry
from .schemas import SendMessagePayload

logger = logging.getLogger(__name__)

RECEIVE_MESSAGE_EVENT = "receiveMessage"


class MessageRouter:
    """Accepts ``sendMessage`` events and delivers the stored result."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        store: MessageStore,
        timestamp_format: str = "%H:%M",
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._registry = registry
        self._store = store
        self._timestamp_format = timestamp_format
        self._clock = clock

    async def send_message(self, payload: SendMessagePayload) -> Optional[ChatMessage]:
        """Persist and deliver one message.

        Args:
            payload: Validated inbound message.

        Returns:
            The canonical stored message, or None if persistence failed.
        """
        # Server time is the only timestamp that counts
        timestamp = self._clock().strftime(self._timestamp_format)

        loop = asyncio.get_running_loop()
        try:
            message_id = await loop.run_in_executor(
                None,
                lambda: self._store.insert_message(
                    text=payload.text,
                    sender_username=payload.sender_username,
                    receiver_username=payload.receiver_username,
                    timestamp=timestamp,
                    kind=payload.type,
                    file_url=payload.file_url,
                ),
            )
        except PersistenceError as e:
            logger.error(
                f"[Router] Dropping message from {payload.sender_username}: {e}"
            )
            return None

        message = ChatMessage(
            id=message_id,
            text=payload.text,
            sender_username=payload.sender_username,
            receiver_username=payload.receiver_username,
            timestamp=timestamp,
            type=payload.type,
            file_url=payload.file_url,
        )

        targets = self.resolve_targets(message)
        logger.info(
            f"[Router] Message {message.id} from {message.sender_username} "
            f"to {message.receiver_username or 'everyone'}: {len(targets)} connections"
        )
        await self.dispatch(message, targets)
        return message

    def resolve_targets(self, message: ChatMessage) -> List[WebSocket]:
        """Return the live connections that should receive *message*."""
        if message.is_global:
            return self._registry.all_connections()
        targets = self._registry.connections_for(message.sender_username)
        targets |= self._registry.connections_for(message.receiver_username)
        return list(targets)

    async def dispatch(self, message: ChatMessage, targets: Iterable[WebSocket]) -> None:
        """Send *message* to each target concurrently, dropping dead ones."""
        connections = list(targets)
        if not connections:
            return

        frame = {"event": RECEIVE_MESSAGE_EVENT, "message": message.model_dump(mode="json")}
        results = await asyncio.gather(
            *[self._safe_send(conn, frame) for conn in connections],
            return_exceptions=True
        )

        for conn, success in zip(connections, results):
            if success is not True:
                username = self._registry.leave(conn)
                logger.debug(f"[Router] Removed dead connection of {username}")

    async def _safe_send(self, connection: WebSocket, frame: dict) -> bool:
        try:
            await connection.send_json(frame)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to connection: {e}")
            return False
