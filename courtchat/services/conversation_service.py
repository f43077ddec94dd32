"""Conversation directory: one row per unordered pair of participants."""

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from courtchat.core.exceptions import ConflictError, NotFoundError, ValidationError
from courtchat.models.conversation import Conversation
from courtchat.models.message import Message
from courtchat.schemas.conversation import ConversationListEntry
from courtchat.schemas.message import MessageResponse
from courtchat.schemas.user import ChatUser
from courtchat.services import read_state_service, user_service

logger = logging.getLogger(__name__)


def canonical_pair(user_a_id: UUID, user_b_id: UUID) -> tuple[UUID, UUID]:
    """Order a participant pair so that {A, B} and {B, A} map to the same row."""
    if user_a_id == user_b_id:
        raise ValidationError(
            "Cannot start a conversation with yourself",
            field="user_id",
        )
    if user_a_id < user_b_id:
        return user_a_id, user_b_id
    return user_b_id, user_a_id


async def get_conversation_by_id(
    db: AsyncSession,
    conversation_id: UUID,
) -> Conversation | None:
    result = await db.execute(
        select(Conversation).where(Conversation.id == conversation_id)
    )
    return result.scalar_one_or_none()


async def get_conversation_by_pair(
    db: AsyncSession,
    participant_low: UUID,
    participant_high: UUID,
) -> Conversation | None:
    result = await db.execute(
        select(Conversation).where(
            Conversation.participant_low == participant_low,
            Conversation.participant_high == participant_high,
        )
    )
    return result.scalar_one_or_none()


async def get_for_participant(
    db: AsyncSession,
    conversation_id: UUID,
    user_id: UUID,
) -> Conversation:
    """
    Load a conversation the user takes part in.
    Outsiders get the same NotFoundError as for an unknown id.
    """
    conversation = await get_conversation_by_id(db, conversation_id)
    if conversation is None or not conversation.has_participant(user_id):
        raise NotFoundError("Conversation not found", resource="conversation")
    return conversation


async def get_or_create(
    db: AsyncSession,
    user_a_id: UUID,
    user_b_id: UUID,
) -> tuple[Conversation, bool]:
    """
    Return the conversation between two users, creating it if needed.
    Returns (conversation, created).

    Two first messages sent from both sides at once race on the insert; the
    unique constraint on the canonical pair lets exactly one win and the
    loser re-reads the winner's row.
    """
    low, high = canonical_pair(user_a_id, user_b_id)

    existing = await get_conversation_by_pair(db, low, high)
    if existing is not None:
        return existing, False

    conversation = Conversation(participant_low=low, participant_high=high)
    db.add(conversation)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info("Conversation for pair (%s, %s) created concurrently, re-reading", low, high)
        existing = await get_conversation_by_pair(db, low, high)
        if existing is None:
            raise ConflictError("Could not create conversation")
        return existing, False

    await db.refresh(conversation)
    logger.info("Created conversation %s for pair (%s, %s)", conversation.id, low, high)
    return conversation, True


async def touch_last_message(
    db: AsyncSession,
    conversation_id: UUID,
    message_id: UUID,
    timestamp: datetime,
) -> None:
    """
    Point the conversation preview at a message. Concurrent appends settle on
    whichever update lands last. The caller commits.
    """
    await db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(last_message_id=message_id, last_message_at=timestamp)
    )


async def list_user_conversations(
    db: AsyncSession,
    user_id: UUID,
) -> list[Conversation]:
    """Conversations of a user, most recent activity first, silent ones last."""
    result = await db.execute(
        select(Conversation)
        .where(
            or_(
                Conversation.participant_low == user_id,
                Conversation.participant_high == user_id,
            )
        )
        .order_by(
            Conversation.last_message_at.desc().nulls_last(),
            Conversation.created_at.desc(),
        )
    )
    return list(result.scalars().all())


async def list_for_user(
    db: AsyncSession,
    user_id: UUID,
) -> list[ConversationListEntry]:
    """Build the conversation list for a user with previews and unread badges."""
    conversations = await list_user_conversations(db, user_id)
    if not conversations:
        return []

    users = await user_service.get_users_by_ids(
        db, (c.other_participant(user_id) for c in conversations)
    )

    last_message_ids = [c.last_message_id for c in conversations if c.last_message_id]
    last_messages: dict[UUID, Message] = {}
    if last_message_ids:
        result = await db.execute(select(Message).where(Message.id.in_(last_message_ids)))
        last_messages = {m.id: m for m in result.scalars().all()}

    unread = await read_state_service.unread_counts(db, [c.id for c in conversations], user_id)

    entries = []
    for conversation in conversations:
        other = users.get(conversation.other_participant(user_id))
        last_message = last_messages.get(conversation.last_message_id)
        entries.append(ConversationListEntry(
            id=conversation.id,
            other_user=ChatUser.model_validate(other) if other else None,
            last_message=MessageResponse.model_validate(last_message) if last_message else None,
            last_message_at=conversation.last_message_at,
            unread_count=unread.get(conversation.id, 0),
            created_at=conversation.created_at,
        ))
    return entries
