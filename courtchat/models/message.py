"""Message model for one-to-one conversations."""

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from courtchat.core.ids import time_ordered_uuid
from courtchat.database import Base
from courtchat.schemas.message import MessageType


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[UUID] = mapped_column(
        Uuid, primary_key=True, default=time_ordered_uuid
    )
    conversation_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sender_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[MessageType] = mapped_column(
        Enum(
            MessageType,
            name="message_type",
            values_callable=lambda e: [member.value for member in e],
        ),
        default=MessageType.TEXT,
        nullable=False,
    )
    # Idempotency key chosen by the sending client, shared by its socket and REST attempts
    client_message_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("sender_id", "client_message_id", name="uq_messages_sender_client_id"),
        Index("ix_messages_conversation_created", "conversation_id", "created_at", "id"),
    )
