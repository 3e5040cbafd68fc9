"""Pydantic schemas for stored chat messages.

These schemas are used by:
    - MessageStore: DuckDB storage layer
    - MessageRouter: builds the canonical record after insert
    - HistoryLoader: returns rows as ChatMessage objects
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class MessageKind(str, Enum):
    """What a message carries.

    Attributes:
        TEXT: Plain text body.
        FILE: Attachment reference (``file_url``), text is an optional caption.
    """
    TEXT = "text"
    FILE = "file"


class HistoryScope(str, Enum):
    """Which conversation a history query covers."""
    GLOBAL = "global"
    DIRECT = "direct"


class ChatMessage(BaseModel):
    """A persisted chat message, exactly as it is delivered to clients.

    Attributes:
        id: Store-assigned identifier, monotonic with insertion order.
        text: Message body ('' for pure attachments).
        sender_username: Who sent it.
        receiver_username: Recipient, or None for a global message.
        timestamp: Server-assigned display time (e.g. "14:05").
        type: Message kind.
        file_url: Attachment reference for file messages.
    """
    id: int = Field(..., description="Store-assigned message id")
    text: str = Field(default="", description="Message body")
    sender_username: str = Field(..., description="Sender username")
    receiver_username: Optional[str] = Field(
        None, description="Receiver username (None for global messages)"
    )
    timestamp: str = Field(..., description="Server-assigned display time")
    type: MessageKind = Field(default=MessageKind.TEXT, description="text or file")
    file_url: Optional[str] = Field(None, description="Attachment reference")

    @property
    def is_global(self) -> bool:
        return self.receiver_username is None


class MessageFilter(BaseModel):
    """Selects one conversation out of the message table.

    A GLOBAL filter matches every message without a receiver. A DIRECT
    filter matches both directions between ``me`` and ``mate``.
    """
    scope: HistoryScope = HistoryScope.GLOBAL
    me: Optional[str] = None
    mate: Optional[str] = None

    @model_validator(mode="after")
    def _require_pair_for_direct(self) -> "MessageFilter":
        if self.scope == HistoryScope.DIRECT and not (self.me and self.mate):
            raise ValueError("direct history needs both 'me' and 'mate'")
        return self
