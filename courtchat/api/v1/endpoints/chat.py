from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from courtchat.api.deps import get_current_user, get_hub
from courtchat.config import settings
from courtchat.core.exceptions import NotFoundError, ValidationError
from courtchat.database import get_db
from courtchat.models.conversation import Conversation
from courtchat.realtime.hub import RealtimeHub
from courtchat.schemas.conversation import (
    ConversationCreate,
    ConversationListResponse,
    ConversationResponse,
)
from courtchat.schemas.message import (
    MarkReadResponse,
    MessageCreate,
    MessagePage,
    MessageResponse,
    MessageType,
    UnreadCountResponse,
)
from courtchat.schemas.user import ChatUser
from courtchat.services import conversation_service, message_service, read_state_service, user_service

router = APIRouter(prefix="", tags=["chat"])


async def _enrich_conversation(
    db: AsyncSession,
    conversation: Conversation,
    current_user_id: UUID,
) -> ConversationResponse:
    """Add the other participant and the last message to a conversation response."""
    response = ConversationResponse.model_validate(conversation)
    other = await user_service.get_user_by_id(db, conversation.other_participant(current_user_id))
    if other:
        response.other_user = ChatUser.model_validate(other)
    if conversation.last_message_id:
        last_message = await message_service.get_message_by_id(db, conversation.last_message_id)
        if last_message:
            response.last_message = MessageResponse.model_validate(last_message)
    return response


@router.get("/conversations", response_model=ConversationListResponse)
async def get_conversations(
    current_user: Annotated[ChatUser, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> ConversationListResponse:
    """Get all conversations of the current user, most recent first."""
    entries = await conversation_service.list_for_user(db, current_user.id)
    return ConversationListResponse(conversations=entries)


@router.post("/conversations", response_model=ConversationResponse)
async def start_conversation(
    data: ConversationCreate,
    response: Response,
    current_user: Annotated[ChatUser, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> ConversationResponse:
    """
    Start or fetch the conversation with another user.
    Responds 201 when the conversation was created by this call, 200 otherwise.
    """
    if data.user_id == current_user.id:
        raise ValidationError("Cannot start a conversation with yourself", field="user_id")

    if await user_service.get_user_by_id(db, data.user_id) is None:
        raise NotFoundError("User not found", resource="user")

    conversation, created = await conversation_service.get_or_create(
        db, current_user.id, data.user_id
    )
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return await _enrich_conversation(db, conversation, current_user.id)


@router.get("/conversations/{conversation_id}/messages", response_model=MessagePage)
async def get_messages(
    conversation_id: UUID,
    current_user: Annotated[ChatUser, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    limit: int = Query(settings.MESSAGES_PAGE_DEFAULT, ge=1, le=settings.MESSAGES_PAGE_MAX),
    before: UUID | None = Query(None, description="Return messages older than this message id"),
) -> MessagePage:
    """Get one page of history, oldest first."""
    conversation = await conversation_service.get_for_participant(db, conversation_id, current_user.id)
    messages, has_more = await message_service.fetch_page(db, conversation.id, limit, before)
    return MessagePage(
        messages=[MessageResponse.model_validate(m) for m in messages],
        has_more=has_more,
    )


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: UUID,
    data: MessageCreate,
    current_user: Annotated[ChatUser, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    hub: Annotated[RealtimeHub, Depends(get_hub)],
) -> MessageResponse:
    """Send a message. Used by clients when the realtime channel is unavailable."""
    conversation = await conversation_service.get_for_participant(db, conversation_id, current_user.id)
    message = await message_service.append(
        db,
        hub,
        conversation,
        current_user.id,
        data.content,
        message_type=MessageType(data.message_type),
        client_message_id=data.client_message_id,
    )
    return MessageResponse.model_validate(message)


@router.post("/conversations/{conversation_id}/read", response_model=MarkReadResponse)
async def mark_conversation_read(
    conversation_id: UUID,
    current_user: Annotated[ChatUser, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    hub: Annotated[RealtimeHub, Depends(get_hub)],
) -> MarkReadResponse:
    """Mark every message received in the conversation as read."""
    conversation = await conversation_service.get_for_participant(db, conversation_id, current_user.id)
    updated = await read_state_service.mark_conversation_read(db, hub, conversation, current_user.id)
    return MarkReadResponse(marked_read=updated)


@router.get("/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(
    current_user: Annotated[ChatUser, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> UnreadCountResponse:
    """Total unread messages across all conversations, for the app badge."""
    count = await read_state_service.total_unread(db, current_user.id)
    return UnreadCountResponse(count=count)
