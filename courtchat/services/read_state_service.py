"""Read receipts and unread counts. Counts are always derived from message rows."""

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from courtchat.core.exceptions import NotFoundError
from courtchat.models.conversation import Conversation
from courtchat.models.message import Message
from courtchat.realtime.events import ServerEvent, room_for
from courtchat.schemas.events import ReadReceiptPayload

if TYPE_CHECKING:
    from courtchat.realtime.hub import RealtimeHub

logger = logging.getLogger(__name__)


async def mark_conversation_read(
    db: AsyncSession,
    hub: "RealtimeHub",
    conversation: Conversation,
    reader_id: UUID,
) -> int:
    """
    Mark every message the reader received in a conversation as read.

    Runs as a single UPDATE so two read triggers firing together cannot lose
    each other's writes. Emits messages:read only when something changed,
    which makes repeated calls a no-op. Returns the number of flipped rows.
    """
    if not conversation.has_participant(reader_id):
        raise NotFoundError("Conversation not found", resource="conversation")

    result = await db.execute(
        update(Message)
        .where(
            and_(
                Message.conversation_id == conversation.id,
                Message.sender_id != reader_id,
                Message.is_read == False,
            )
        )
        .values(is_read=True, read_at=datetime.now(timezone.utc))
    )
    await db.commit()
    updated = result.rowcount or 0

    if updated:
        logger.debug("User %s read %d messages in %s", reader_id, updated, conversation.id)
        # The reader's own other sessions are told too, so their badges clear
        await hub.emit(
            ServerEvent.MESSAGES_READ,
            ReadReceiptPayload(conversation_id=conversation.id, reader_id=reader_id).to_wire(),
            rooms=[room_for(conversation.id)],
            users=[conversation.participant_low, conversation.participant_high],
        )
    return updated


async def unread_count(
    db: AsyncSession,
    conversation_id: UUID,
    user_id: UUID,
) -> int:
    """Count unread messages the user received in one conversation."""
    result = await db.execute(
        select(func.count(Message.id)).where(
            and_(
                Message.conversation_id == conversation_id,
                Message.sender_id != user_id,
                Message.is_read == False,
            )
        )
    )
    return result.scalar() or 0


async def unread_counts(
    db: AsyncSession,
    conversation_ids: Sequence[UUID],
    user_id: UUID,
) -> dict[UUID, int]:
    """Unread counts for many conversations in one grouped query."""
    if not conversation_ids:
        return {}
    result = await db.execute(
        select(Message.conversation_id, func.count(Message.id))
        .where(
            and_(
                Message.conversation_id.in_(conversation_ids),
                Message.sender_id != user_id,
                Message.is_read == False,
            )
        )
        .group_by(Message.conversation_id)
    )
    return {conversation_id: count for conversation_id, count in result.all()}


async def total_unread(
    db: AsyncSession,
    user_id: UUID,
) -> int:
    """Get total unread messages count for a user across conversations."""
    result = await db.execute(
        select(func.count(Message.id))
        .join(Conversation, Conversation.id == Message.conversation_id)
        .where(
            and_(
                or_(
                    Conversation.participant_low == user_id,
                    Conversation.participant_high == user_id,
                ),
                Message.sender_id != user_id,
                Message.is_read == False,
            )
        )
    )
    return result.scalar() or 0
