"""
Realtime gateway: the websocket endpoint and the per-event handlers behind it.

A connection authenticates once with the ``token`` query parameter, then
sends JSON frames (see ``courtchat.realtime.events``). Each frame is handled
with its own database session, the same way a REST request would be.
"""

import json
import logging
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from typing import Any
from uuid import UUID

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from courtchat.core.exception_handlers import error_ack
from courtchat.core.exceptions import AppException, ErrorCode, ValidationError
from courtchat.core.security import user_id_from_token
from courtchat.realtime.events import ACK_EVENT, ClientEvent, ServerEvent, build_frame, room_for
from courtchat.realtime.hub import Connection, RealtimeHub
from courtchat.schemas.events import MessageSendPayload, TypingPayload
from courtchat.schemas.message import MessageResponse, MessageType
from courtchat.services import conversation_service, message_service, read_state_service, user_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

# Close code sent when the connect-time token does not verify
WS_CLOSE_UNAUTHORIZED = 4401

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]
Handler = Callable[[Connection, AsyncSession, Any], Awaitable[dict[str, Any] | None]]


def _parse_conversation_id(data: Any) -> UUID:
    if isinstance(data, dict):
        data = data.get("conversationId")
    try:
        return UUID(str(data))
    except ValueError:
        raise ValidationError("Invalid conversation id", field="conversationId")


class ChatGateway:
    def __init__(self, hub: RealtimeHub, session_factory: SessionFactory):
        self.hub = hub
        self._session_factory = session_factory
        self._handlers: dict[str, Handler] = {
            ClientEvent.CONVERSATION_JOIN.value: self.on_conversation_join,
            ClientEvent.CONVERSATION_LEAVE.value: self.on_conversation_leave,
            ClientEvent.MESSAGE_SEND.value: self.on_message_send,
            ClientEvent.TYPING_START.value: self.on_typing_start,
            ClientEvent.TYPING_STOP.value: self.on_typing_stop,
            ClientEvent.MESSAGES_READ.value: self.on_messages_read,
            ClientEvent.USERS_ONLINE.value: self.on_users_online,
        }

    async def authenticate(self, token: str | None) -> UUID | None:
        user_id = user_id_from_token(token)
        if user_id is None:
            return None
        async with self._session_factory() as db:
            user = await user_service.get_user_by_id(db, user_id)
        return user.id if user else None

    async def handle_frame(self, connection: Connection, frame: Any) -> None:
        """Dispatch one client frame and answer its ack id, if it carries one."""
        if not isinstance(frame, dict):
            logger.warning("Ignoring malformed frame from %s", connection.id)
            return

        event = frame.get("event")
        ack = frame.get("ack")
        handler = self._handlers.get(event) if isinstance(event, str) else None

        if handler is None:
            logger.warning("Unknown event %r from %s", event, connection.id)
            result = {"error": f"Unknown event: {event}", "code": ErrorCode.VALIDATION_ERROR.value}
        else:
            try:
                async with self._session_factory() as db:
                    result = await handler(connection, db, frame.get("data"))
            except AppException as exc:
                logger.info(
                    "Event %s from %s rejected: %s (code=%s)",
                    event,
                    connection.id,
                    exc.message,
                    exc.code.value,
                )
                result = error_ack(exc)
            except PydanticValidationError as exc:
                logger.info("Event %s from %s has invalid payload: %s", event, connection.id, exc)
                result = {"error": "Invalid payload", "code": ErrorCode.VALIDATION_ERROR.value}
            except Exception:
                logger.exception("Handler for %s failed (connection=%s)", event, connection.id)
                result = {"error": "Internal server error", "code": ErrorCode.SERVER_ERROR.value}

        if ack is not None:
            await connection.send(build_frame(ACK_EVENT, result or {}, ack=ack))

    async def on_conversation_join(self, connection: Connection, db: AsyncSession, data: Any) -> dict:
        conversation_id = _parse_conversation_id(data)
        await conversation_service.get_for_participant(db, conversation_id, connection.user_id)
        self.hub.join(connection, room_for(conversation_id))
        logger.debug("Connection %s joined %s", connection.id, room_for(conversation_id))
        return {"joined": str(conversation_id)}

    async def on_conversation_leave(self, connection: Connection, db: AsyncSession, data: Any) -> dict:
        conversation_id = _parse_conversation_id(data)
        self.hub.leave(connection, room_for(conversation_id))
        return {"left": str(conversation_id)}

    async def on_message_send(self, connection: Connection, db: AsyncSession, data: Any) -> dict:
        payload = MessageSendPayload.model_validate(data)
        conversation = await conversation_service.get_for_participant(
            db, payload.conversation_id, connection.user_id
        )
        message = await message_service.append(
            db,
            self.hub,
            conversation,
            connection.user_id,
            payload.content,
            message_type=MessageType(payload.message_type),
            client_message_id=payload.client_message_id,
        )
        return {"message": MessageResponse.model_validate(message).model_dump(mode="json")}

    async def _relay_typing(self, connection: Connection, data: Any, event: ServerEvent) -> None:
        conversation_id = _parse_conversation_id(data)
        room = room_for(conversation_id)
        # Only members may signal into a room; membership was checked on join
        if not self.hub.is_member(connection, room):
            return None
        await self.hub.emit(
            event,
            TypingPayload(conversation_id=conversation_id, user_id=connection.user_id).to_wire(),
            rooms=[room],
            exclude_user=connection.user_id,
        )
        return None

    async def on_typing_start(self, connection: Connection, db: AsyncSession, data: Any) -> None:
        return await self._relay_typing(connection, data, ServerEvent.TYPING_START)

    async def on_typing_stop(self, connection: Connection, db: AsyncSession, data: Any) -> None:
        return await self._relay_typing(connection, data, ServerEvent.TYPING_STOP)

    async def on_messages_read(self, connection: Connection, db: AsyncSession, data: Any) -> dict:
        conversation_id = _parse_conversation_id(data)
        conversation = await conversation_service.get_for_participant(
            db, conversation_id, connection.user_id
        )
        updated = await read_state_service.mark_conversation_read(
            db, self.hub, conversation, connection.user_id
        )
        return {"marked_read": updated}

    async def on_users_online(self, connection: Connection, db: AsyncSession, data: Any) -> dict:
        if not isinstance(data, list):
            raise ValidationError("Expected a list of user ids")
        statuses = {}
        for raw in data:
            try:
                statuses[str(raw)] = self.hub.is_online(UUID(str(raw)))
            except ValueError:
                statuses[str(raw)] = False
        return statuses


@router.websocket("/ws/chat")
async def chat_socket(websocket: WebSocket):
    gateway: ChatGateway = websocket.app.state.gateway

    user_id = await gateway.authenticate(websocket.query_params.get("token"))
    if user_id is None:
        logger.info("Rejected realtime connection with invalid token")
        await websocket.close(code=WS_CLOSE_UNAUTHORIZED)
        return

    await websocket.accept()
    connection = await gateway.hub.connect(user_id, websocket.send_json)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                logger.warning("Ignoring non-JSON frame from %s", connection.id)
                continue
            await gateway.handle_frame(connection, frame)
    except WebSocketDisconnect:
        pass
    finally:
        # Room membership never survives the connection
        await gateway.hub.disconnect(connection)
