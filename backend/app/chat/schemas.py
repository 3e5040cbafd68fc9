"""Inbound WebSocket payloads for the chat core.

Clients send lightweight structures; the server assigns id and timestamp.
Unknown keys (including any client-side timestamp) are ignored.
"""
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from app.storage.schemas import HistoryScope, MessageFilter, MessageKind


class SendMessagePayload(BaseModel):
    """Input schema for a ``sendMessage`` event.

    Attributes:
        text: Message body; missing or null becomes ''.
        sender_username: Who is sending.
        receiver_username: Recipient; missing or empty means global.
        type: Message kind (defaults to text).
        file_url: Attachment reference, required for file messages.
    """
    text: Optional[str] = Field(default="", description="Message body")
    sender_username: str = Field(..., min_length=1, description="Sender username")
    receiver_username: Optional[str] = Field(
        None, description="Receiver username (omit for a global message)"
    )
    type: MessageKind = Field(default=MessageKind.TEXT, description="text or file")
    file_url: Optional[str] = Field(None, description="Attachment reference")

    @field_validator("text", mode="before")
    @classmethod
    def _text_default(cls, value):
        return value or ""

    @field_validator("receiver_username", mode="before")
    @classmethod
    def _empty_receiver_is_global(cls, value):
        return value or None

    @model_validator(mode="after")
    def _file_needs_url(self) -> "SendMessagePayload":
        if self.type == MessageKind.FILE and not self.file_url:
            raise ValueError("file messages need a file_url")
        return self


class HistoryRequest(BaseModel):
    """Input schema for a ``getMessages`` event.

    ``type`` picks the conversation; ``me`` and ``mate`` are only read for
    direct history and their order does not matter.
    """
    type: HistoryScope = Field(default=HistoryScope.GLOBAL, description="global or direct")
    me: Optional[str] = None
    mate: Optional[str] = None

    @model_validator(mode="after")
    def _direct_needs_pair(self) -> "HistoryRequest":
        if self.type == HistoryScope.DIRECT and not (self.me and self.mate):
            raise ValueError("direct history needs both 'me' and 'mate'")
        return self

    def to_filter(self) -> MessageFilter:
        return MessageFilter(scope=self.type, me=self.me, mate=self.mate)
