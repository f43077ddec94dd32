from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from courtchat.schemas.message import MessageResponse
from courtchat.schemas.user import ChatUser


class ConversationCreate(BaseModel):
    """Start (or fetch) the conversation with another user"""

    user_id: UUID


class ConversationResponse(BaseModel):
    """Conversation details returned by API"""

    id: UUID
    participant_low: UUID
    participant_high: UUID
    last_message_id: UUID | None = None
    last_message_at: datetime | None = None
    created_at: datetime

    # Filled in for the caller's point of view
    other_user: ChatUser | None = None
    last_message: MessageResponse | None = None

    model_config = ConfigDict(from_attributes=True)


class ConversationListEntry(BaseModel):
    """One row of the conversation list"""

    id: UUID
    other_user: ChatUser | None
    last_message: MessageResponse | None
    last_message_at: datetime | None
    unread_count: int
    created_at: datetime


class ConversationListResponse(BaseModel):
    conversations: list[ConversationListEntry]
