"""Live connection registry for the chat core.

Maps a username to the set of WebSocket connections currently joined under
it. A user may be connected from several devices at once, so one username
can own many connections; a connection belongs to at most one username.

Thread Safety:
    The chat core runs on a single event loop, but the maps are still
    guarded by a ``threading.Lock`` so the registry stays consistent if it
    is ever touched from a worker thread. No method awaits or blocks on I/O.
"""
import logging
import threading
from typing import Dict, List, Optional, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Tracks which live connections belong to which username."""

    def __init__(self) -> None:
        # username -> set of live connections
        self._rooms: Dict[str, Set[WebSocket]] = {}
        # connection -> username, for leave() on disconnect
        self._owners: Dict[WebSocket, str] = {}
        self._lock = threading.Lock()

    def join(self, connection: WebSocket, username: str) -> None:
        """Associate *connection* with *username*.

        Joining again under another username moves the connection (last
        write wins); joining again under the same username is a no-op.
        """
        with self._lock:
            previous = self._owners.get(connection)
            if previous == username:
                return
            if previous is not None:
                self._discard(connection, previous)
                logger.info(f"[Registry] Connection moved from {previous} to {username}")
            self._rooms.setdefault(username, set()).add(connection)
            self._owners[connection] = username
        logger.debug(f"[Registry] {username} joined ({self.connection_count(username)} connections)")

    def leave(self, connection: WebSocket) -> Optional[str]:
        """Forget *connection*.

        Returns:
            The username the connection was joined under, or None if it
            never joined (or already left).
        """
        with self._lock:
            username = self._owners.pop(connection, None)
            if username is not None:
                self._discard(connection, username)
        if username is not None:
            logger.debug(f"[Registry] {username} left one connection")
        return username

    def _discard(self, connection: WebSocket, username: str) -> None:
        room = self._rooms.get(username)
        if room is None:
            return
        room.discard(connection)
        if not room:
            del self._rooms[username]

    def connections_for(self, username: Optional[str]) -> Set[WebSocket]:
        """Return a copy of the connections joined under *username*.

        An offline (or None) username yields an empty set.
        """
        if not username:
            return set()
        with self._lock:
            return set(self._rooms.get(username, ()))

    def all_connections(self) -> List[WebSocket]:
        with self._lock:
            return list(self._owners)

    def username_of(self, connection: WebSocket) -> Optional[str]:
        with self._lock:
            return self._owners.get(connection)

    def connection_count(self, username: str) -> int:
        with self._lock:
            return len(self._rooms.get(username, ()))

    def online_usernames(self) -> List[str]:
        with self._lock:
            return sorted(self._rooms)

    def rename(self, old_username: str, new_username: str) -> int:
        """Move every connection of *old_username* under *new_username*.

        Returns:
            Number of connections moved.
        """
        if old_username == new_username:
            return 0
        with self._lock:
            moved = self._rooms.pop(old_username, set())
            if moved:
                self._rooms.setdefault(new_username, set()).update(moved)
                for connection in moved:
                    self._owners[connection] = new_username
        if moved:
            logger.info(f"[Registry] Moved {len(moved)} connections from {old_username} to {new_username}")
        return len(moved)

    def __len__(self) -> int:
        with self._lock:
            return len(self._owners)
