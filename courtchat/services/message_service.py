"""Message log: append-only, per-conversation ordered store of messages."""

import logging
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from courtchat.config import settings
from courtchat.core.exceptions import (
    ConflictError,
    ContentTooLongError,
    NotFoundError,
    RequiredFieldError,
)
from courtchat.models.conversation import Conversation
from courtchat.models.message import Message
from courtchat.realtime.events import ServerEvent, room_for
from courtchat.schemas.events import ConversationUpdatedPayload
from courtchat.schemas.message import MessageResponse, MessageType
from courtchat.services import conversation_service

if TYPE_CHECKING:
    from courtchat.realtime.hub import RealtimeHub

logger = logging.getLogger(__name__)


def clean_content(content: str | None, max_length: int | None = None) -> str:
    """Strip surrounding whitespace and enforce the non-empty and length rules."""
    max_length = max_length or settings.MESSAGE_MAX_LENGTH
    text = (content or "").strip()
    if not text:
        raise RequiredFieldError("Message content required", field="content")
    if len(text) > max_length:
        raise ContentTooLongError(max_length)
    return text


async def get_message_by_id(
    db: AsyncSession,
    message_id: UUID,
) -> Message | None:
    """Get a message by ID."""
    result = await db.execute(
        select(Message).where(Message.id == message_id)
    )
    return result.scalar_one_or_none()


async def get_message_by_client_id(
    db: AsyncSession,
    sender_id: UUID,
    client_message_id: str,
) -> Message | None:
    result = await db.execute(
        select(Message).where(
            and_(
                Message.sender_id == sender_id,
                Message.client_message_id == client_message_id,
            )
        )
    )
    return result.scalar_one_or_none()


def _check_replay(existing: Message, conversation_id: UUID) -> Message:
    if existing.conversation_id != conversation_id:
        raise ConflictError(
            "client_message_id was already used in another conversation",
            field="client_message_id",
        )
    logger.info("Replayed send of message %s, returning stored copy", existing.id)
    return existing


async def append(
    db: AsyncSession,
    hub: "RealtimeHub",
    conversation: Conversation,
    sender_id: UUID,
    content: str,
    message_type: MessageType = MessageType.TEXT,
    client_message_id: str | None = None,
) -> Message:
    """
    Append a message and fan it out.

    Both the socket handler and the REST endpoint land here, so persistence
    and broadcast behave the same whichever transport the client used. A
    repeated client_message_id from the same sender returns the stored
    message instead of writing a second row.
    """
    text = clean_content(content)
    if not conversation.has_participant(sender_id):
        raise NotFoundError("Conversation not found", resource="conversation")

    if client_message_id:
        existing = await get_message_by_client_id(db, sender_id, client_message_id)
        if existing is not None:
            return _check_replay(existing, conversation.id)

    conversation_id = conversation.id
    message = Message(
        conversation_id=conversation_id,
        sender_id=sender_id,
        content=text,
        message_type=message_type,
        client_message_id=client_message_id,
        is_read=False,
    )
    db.add(message)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        if not client_message_id:
            raise
        existing = await get_message_by_client_id(db, sender_id, client_message_id)
        if existing is None:
            raise
        return _check_replay(existing, conversation_id)

    await conversation_service.touch_last_message(
        db, conversation_id, message.id, message.created_at
    )
    await db.commit()
    await db.refresh(message)

    logger.debug("Appended message %s to conversation %s", message.id, conversation_id)
    await publish_new_message(hub, conversation, message)
    return message


async def publish_new_message(
    hub: "RealtimeHub",
    conversation: Conversation,
    message: Message,
) -> None:
    """Broadcast message:new to the room and conversation:updated to both participants."""
    payload = MessageResponse.model_validate(message)
    await hub.emit(
        ServerEvent.MESSAGE_NEW,
        payload.model_dump(mode="json"),
        rooms=[room_for(conversation.id)],
    )
    await hub.emit(
        ServerEvent.CONVERSATION_UPDATED,
        ConversationUpdatedPayload(
            conversation_id=conversation.id,
            last_message=payload,
        ).to_wire(),
        users=[conversation.participant_low, conversation.participant_high],
    )


async def post_system_message(
    db: AsyncSession,
    hub: "RealtimeHub",
    conversation: Conversation,
    sender_id: UUID,
    content: str,
) -> Message:
    """
    Post a notice on behalf of another service, e.g. when a match is made or
    ended. Allowed even when the pair is no longer matched.
    """
    return await append(
        db,
        hub,
        conversation,
        sender_id,
        content,
        message_type=MessageType.SYSTEM,
    )


async def fetch_page(
    db: AsyncSession,
    conversation_id: UUID,
    limit: int,
    before_id: UUID | None = None,
) -> tuple[list[Message], bool]:
    """
    Fetch up to ``limit`` messages strictly older than ``before_id`` (or the
    newest ones), oldest first. Returns (messages, has_more).

    The cursor compares (created_at, id) against the cursor message, so
    messages appended while a client pages backwards never shift a page.
    """
    query = select(Message).where(Message.conversation_id == conversation_id)

    if before_id is not None:
        cursor = await get_message_by_id(db, before_id)
        if cursor is None or cursor.conversation_id != conversation_id:
            raise NotFoundError("Message not found", resource="message")
        query = query.where(
            or_(
                Message.created_at < cursor.created_at,
                and_(
                    Message.created_at == cursor.created_at,
                    Message.id < cursor.id,
                ),
            )
        )

    # One extra row tells whether anything older exists
    result = await db.execute(
        query.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit + 1)
    )
    rows = list(result.scalars().all())
    has_more = len(rows) > limit
    messages = rows[:limit]
    # Reverse to get chronological order for display
    messages.reverse()
    return messages, has_more
