"""DuckDB-based chat message storage.

This module is the persistence gateway for the chat core. It only knows how
to append a message and how to read one conversation back; everything about
who is online and where a message goes lives in ``app.chat``.

Database Schema:
    messages table:
        - id: Sequence-assigned primary key (monotonic insertion order)
        - text: Message body ('' for pure attachments)
        - sender_username: Sender
        - receiver_username: Receiver, NULL for global messages
        - timestamp: Server display time ("HH:MM")
        - type: 'text' or 'file'
        - file_url: Attachment reference

Thread Safety:
    A single DuckDB connection is shared by the whole process and DuckDB
    connections are NOT thread-safe. The chat core calls into the store from
    the default executor, so every statement runs under ``self._lock``.
    That lock is also what makes id order equal completion order.

Usage:
    store = MessageStore(db_path=":memory:")
    message_id = store.insert_message("hi", "alice", "bob", "14:05")
    rows = store.query_messages(MessageFilter(scope="direct", me="alice", mate="bob"))
"""
import logging
import threading
from typing import List, Optional

import duckdb

from .schemas import ChatMessage, HistoryScope, MessageFilter, MessageKind

logger = logging.getLogger(__name__)

_SELECT_COLUMNS = (
    "id, text, sender_username, receiver_username, timestamp, type, file_url"
)


class PersistenceError(Exception):
    """Raised when the message store is unreachable or rejects a statement."""
    def __init__(self, message: str, operation: str = ""):
        self.message = message
        self.operation = operation
        super().__init__(f"{operation}: {message}" if operation else message)


class MessageStore:
    """Append-only message table in DuckDB.

    Attributes:
        _db_path: Path to the DuckDB database file, or ":memory:".
    """

    _db_path: str = "relay_messages.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        """Open the database and create the schema if needed.

        Args:
            db_path: Path to DuckDB file. Defaults to "relay_messages.duckdb".

        Raises:
            PersistenceError: If the database cannot be opened.
        """
        if db_path:
            self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.Lock()
        self._closed = False
        with self._lock:
            self._initialize_db()

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._closed:
            raise PersistenceError("message store is closed", operation="connect")
        if self._connection is None:
            try:
                self._connection = duckdb.connect(self._db_path)
            except duckdb.Error as e:
                raise PersistenceError(str(e), operation="connect") from e
        return self._connection

    def _initialize_db(self) -> None:
        """Create the messages table and its id sequence (idempotent)."""
        conn = self._get_connection()
        try:
            conn.execute("CREATE SEQUENCE IF NOT EXISTS messages_seq START 1")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER DEFAULT nextval('messages_seq') PRIMARY KEY,
                    text VARCHAR NOT NULL DEFAULT '',
                    sender_username VARCHAR NOT NULL,
                    receiver_username VARCHAR,
                    timestamp VARCHAR NOT NULL,
                    type VARCHAR NOT NULL DEFAULT 'text',
                    file_url VARCHAR
                )
            """)
        except duckdb.Error as e:
            raise PersistenceError(str(e), operation="initialize") from e
        logger.info("Message store ready at %s", self._db_path)

    def insert_message(
        self,
        text: str,
        sender_username: str,
        receiver_username: Optional[str],
        timestamp: str,
        kind: MessageKind = MessageKind.TEXT,
        file_url: Optional[str] = None,
    ) -> int:
        """Append one message and return its generated id.

        Raises:
            PersistenceError: On constraint violation or a lost connection.
        """
        with self._lock:
            try:
                row = self._get_connection().execute(
                    """
                    INSERT INTO messages
                        (text, sender_username, receiver_username, timestamp, type, file_url)
                    VALUES (?, ?, ?, ?, ?, ?)
                    RETURNING id
                    """,
                    [
                        text or "",
                        sender_username,
                        receiver_username,
                        timestamp,
                        MessageKind(kind).value,
                        file_url,
                    ],
                ).fetchone()
            except duckdb.Error as e:
                raise PersistenceError(str(e), operation="insert_message") from e
        return int(row[0])

    def query_messages(self, message_filter: MessageFilter) -> List[ChatMessage]:
        """Return every message matching *message_filter*, oldest first.

        There is no limit: the whole conversation is read on each call.

        Raises:
            PersistenceError: If the store cannot be queried.
        """
        if message_filter.scope == HistoryScope.GLOBAL:
            sql = f"""
                SELECT {_SELECT_COLUMNS} FROM messages
                WHERE receiver_username IS NULL
                ORDER BY id ASC
            """
            params: list = []
        else:
            sql = f"""
                SELECT {_SELECT_COLUMNS} FROM messages
                WHERE (sender_username = ? AND receiver_username = ?)
                   OR (sender_username = ? AND receiver_username = ?)
                ORDER BY id ASC
            """
            me, mate = message_filter.me, message_filter.mate
            params = [me, mate, mate, me]

        with self._lock:
            try:
                rows = self._get_connection().execute(sql, params).fetchall()
            except duckdb.Error as e:
                raise PersistenceError(str(e), operation="query_messages") from e

        return [
            ChatMessage(
                id=row[0],
                text=row[1] or "",
                sender_username=row[2],
                receiver_username=row[3],
                timestamp=row[4],
                type=MessageKind(row[5]),
                file_url=row[6],
            )
            for row in rows
        ]

    def rename_username(self, old_username: str, new_username: str) -> int:
        """Rewrite sender/receiver references after a profile rename.

        Both columns are updated in one transaction.

        Returns:
            Number of messages that referenced *old_username*.

        Raises:
            PersistenceError: If the update fails (nothing is changed).
        """
        if old_username == new_username:
            return 0

        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute("BEGIN TRANSACTION")
                touched = conn.execute(
                    """
                    SELECT COUNT(*) FROM messages
                    WHERE sender_username = ? OR receiver_username = ?
                    """,
                    [old_username, old_username],
                ).fetchone()[0]
                conn.execute(
                    "UPDATE messages SET sender_username = ? WHERE sender_username = ?",
                    [new_username, old_username],
                )
                conn.execute(
                    "UPDATE messages SET receiver_username = ? WHERE receiver_username = ?",
                    [new_username, old_username],
                )
                conn.execute("COMMIT")
            except duckdb.Error as e:
                try:
                    conn.execute("ROLLBACK")
                except duckdb.Error:
                    logger.debug("Rollback after failed rename also failed")
                raise PersistenceError(str(e), operation="rename_username") from e

        logger.info(
            "Renamed %s -> %s in %d stored messages", old_username, new_username, touched
        )
        return int(touched)

    def count_messages(self) -> int:
        with self._lock:
            try:
                return int(
                    self._get_connection().execute("SELECT COUNT(*) FROM messages").fetchone()[0]
                )
            except duckdb.Error as e:
                raise PersistenceError(str(e), operation="count_messages") from e

    def close(self) -> None:
        """Close the database connection. The store cannot be used afterwards."""
        with self._lock:
            self._closed = True
            if self._connection is not None:
                self._connection.close()
                self._connection = None
