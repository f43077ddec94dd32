"""Payloads carried by realtime events. Keys on the wire are camelCase."""

from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from courtchat.schemas.message import MessageResponse


class _EventPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class MessageSendPayload(_EventPayload):
    conversation_id: UUID = Field(alias="conversationId")
    # Emptiness and length are checked by the message log so both transports report them alike
    content: str
    message_type: Literal["text", "image"] = Field("text", alias="messageType")
    client_message_id: str | None = Field(None, alias="clientMessageId", max_length=64)


class TypingPayload(_EventPayload):
    conversation_id: UUID = Field(alias="conversationId")
    user_id: UUID = Field(alias="userId")


class ReadReceiptPayload(_EventPayload):
    conversation_id: UUID = Field(alias="conversationId")
    reader_id: UUID = Field(alias="readerId")


class ConversationUpdatedPayload(_EventPayload):
    conversation_id: UUID = Field(alias="conversationId")
    last_message: MessageResponse


class PresencePayload(_EventPayload):
    user_id: UUID = Field(alias="userId")
