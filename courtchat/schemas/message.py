"""Message schemas for API requests and responses."""

import enum
from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class MessageType(str, enum.Enum):
    TEXT = "text"
    IMAGE = "image"
    SYSTEM = "system"


class MessageCreate(BaseModel):
    """
    Create a new message. System messages are posted by other services only.
    Emptiness and length are checked after stripping, by the message log.
    """
    content: str
    message_type: Literal["text", "image"] = "text"
    client_message_id: str | None = Field(None, min_length=1, max_length=64)


class MessageResponse(BaseModel):
    """Message response."""
    id: UUID
    conversation_id: UUID
    sender_id: UUID
    content: str
    message_type: MessageType
    is_read: bool
    read_at: datetime | None = None
    created_at: datetime
    client_message_id: str | None = None

    model_config = ConfigDict(from_attributes=True)


class MessagePage(BaseModel):
    """One page of history, oldest first."""
    messages: list[MessageResponse]
    has_more: bool


class MarkReadResponse(BaseModel):
    marked_read: int


class UnreadCountResponse(BaseModel):
    """Unread messages count."""
    count: int
