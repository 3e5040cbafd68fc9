"""Message persistence for the chat core."""

from .schemas import ChatMessage, HistoryScope, MessageFilter, MessageKind
from .service import MessageStore, PersistenceError

__all__ = [
    "ChatMessage",
    "HistoryScope",
    "MessageFilter",
    "MessageKind",
    "MessageStore",
    "PersistenceError",
]
