import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from courtchat.database import Base

if TYPE_CHECKING:
    from courtchat.models.user import User


class Conversation(Base):
    __tablename__ = "conversations"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # Two participants (participant_low < participant_high for consistency)
    participant_low: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    participant_high: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Denormalized preview pointer, written only by touch_last_message.
    # Weak reference: no foreign key into messages.
    last_message_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    last_message_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    # Relationships
    participant_low_user: Mapped["User"] = relationship("User", foreign_keys=[participant_low])
    participant_high_user: Mapped["User"] = relationship("User", foreign_keys=[participant_high])

    __table_args__ = (
        UniqueConstraint("participant_low", "participant_high", name="uq_conversations_participants"),
        CheckConstraint("participant_low < participant_high", name="participant_order_check"),
        Index("ix_conversations_last_message_at", "last_message_at"),
    )

    def has_participant(self, user_id: uuid.UUID) -> bool:
        return user_id in (self.participant_low, self.participant_high)

    def other_participant(self, user_id: uuid.UUID) -> uuid.UUID:
        if user_id == self.participant_low:
            return self.participant_high
        return self.participant_low
