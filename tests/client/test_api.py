from datetime import timedelta
from uuid import uuid4

import httpx
import pytest
from sqlalchemy import func, select

from courtchat.client.api import ChatApiClient
from courtchat.client.send import DualTransportSender
from courtchat.client.sync import ConversationView
from courtchat.core.exceptions import (
    AuthenticationError,
    ErrorCode,
    NotFoundError,
    TransportError,
    ValidationError,
)
from courtchat.core.security import create_access_token
from courtchat.main import app
from courtchat.models.message import Message
from courtchat.schemas.message import MessageType
from courtchat.services import conversation_service, message_service


@pytest.mark.asyncio
async def test_rest_round_trip(api_for, alice, bob):
    alice_api, bob_api = api_for(alice.id), api_for(bob.id)

    conversation = await alice_api.start_conversation(bob.id)
    assert conversation.other_user.name == "Bob"

    sent = await alice_api.send_message(conversation.id, "Doubles on Friday?", client_message_id="r-1")
    assert sent.content == "Doubles on Friday?"
    assert sent.message_type == MessageType.TEXT

    entries = await bob_api.get_conversations()
    assert [e.id for e in entries] == [conversation.id]
    assert entries[0].unread_count == 1
    assert await bob_api.get_unread_count() == 1

    page = await bob_api.get_messages(conversation.id, limit=10)
    assert [m.id for m in page.messages] == [sent.id]
    assert page.has_more is False

    assert await bob_api.mark_read(conversation.id) == 1
    assert await bob_api.get_unread_count() == 0

    older = await bob_api.get_messages(conversation.id, before=sent.id)
    assert older.messages == []


@pytest.mark.asyncio
async def test_rest_errors_map_to_app_exceptions(api_for, alice, bob):
    api = api_for(alice.id)
    conversation = await api.start_conversation(bob.id)

    with pytest.raises(NotFoundError):
        await api.get_messages(bob.id)

    with pytest.raises(ValidationError) as exc_info:
        await api.send_message(conversation.id, "   ")
    assert exc_info.value.field == "content"

    with pytest.raises(ValidationError):
        await api.start_conversation(alice.id)


@pytest.mark.asyncio
async def test_rest_rejects_bad_and_expired_tokens(client, alice):
    async with ChatApiClient(
        "http://test/api/v1",
        "not-a-token",
        transport=httpx.ASGITransport(app=app),
    ) as api:
        with pytest.raises(AuthenticationError) as exc_info:
            await api.get_conversations()
    assert exc_info.value.code == ErrorCode.AUTH_TOKEN_INVALID

    async with ChatApiClient(
        "http://test/api/v1",
        create_access_token(alice.id, expires_delta=timedelta(minutes=-5)),
        transport=httpx.ASGITransport(app=app),
    ) as api:
        with pytest.raises(AuthenticationError) as exc_info:
            await api.get_conversations()
    assert exc_info.value.code == ErrorCode.AUTH_TOKEN_EXPIRED


@pytest.mark.asyncio
async def test_network_failures_are_transport_errors():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    def timeout(request):
        raise httpx.ReadTimeout("too slow", request=request)

    def crash(request):
        return httpx.Response(502, text="bad gateway")

    async with ChatApiClient("http://test/api/v1", "t", transport=httpx.MockTransport(refuse)) as api:
        with pytest.raises(TransportError) as exc_info:
            await api.get_unread_count()
        assert exc_info.value.code == ErrorCode.TRANSPORT_FAILED

    async with ChatApiClient("http://test/api/v1", "t", transport=httpx.MockTransport(timeout)) as api:
        with pytest.raises(TransportError) as exc_info:
            await api.get_unread_count()
        assert exc_info.value.code == ErrorCode.TRANSPORT_TIMEOUT

    async with ChatApiClient("http://test/api/v1", "t", transport=httpx.MockTransport(crash)) as api:
        with pytest.raises(TransportError) as exc_info:
            await api.get_unread_count()
        assert exc_info.value.metadata == {"status_code": 502}


@pytest.mark.asyncio
async def test_lost_ack_falls_back_to_rest_and_persists_once(
    api_for, db_session, hub, server, make_connection, alice, bob
):
    """The socket stores the message but the ack never arrives; the REST retry returns the stored row."""
    conversation, _ = await conversation_service.get_or_create(db_session, alice.id, bob.id)
    conversation_id, alice_id = conversation.id, alice.id
    connection = make_connection(ack_timeout=0.05)
    await connection.connect()

    async def persist_then_lose_ack(frame):
        data = frame["data"]
        await message_service.append(
            db_session,
            hub,
            conversation,
            alice_id,
            data["content"],
            client_message_id=data["clientMessageId"],
        )
        return None

    server.responder = persist_then_lose_ack
    sender = DualTransportSender(connection, api_for(alice_id))

    message = await sender.send(conversation_id, "Only once please")

    result = await db_session.execute(
        select(Message).where(Message.conversation_id == conversation_id)
    )
    rows = result.scalars().all()
    assert len(rows) == 1
    assert rows[0].id == message.id
    assert message.client_message_id == server.sent("message:send")[0]["clientMessageId"]


@pytest.mark.asyncio
async def test_rest_fallback_when_socket_down_persists_once_per_key(api_for, db_session, make_connection, alice, bob):
    conversation, _ = await conversation_service.get_or_create(db_session, alice.id, bob.id)
    conversation_id = conversation.id
    sender = DualTransportSender(make_connection(), api_for(alice.id))

    first = await sender.send(conversation_id, "hello", client_message_id="same")
    second = await sender.send(conversation_id, "hello", client_message_id="same")

    assert first.id == second.id
    count = await db_session.execute(
        select(func.count(Message.id)).where(Message.conversation_id == conversation_id)
    )
    assert count.scalar() == 1


@pytest.mark.asyncio
async def test_unreadable_success_bodies_are_transport_errors():
    conversation_id = uuid4()

    def html(request):
        return httpx.Response(200, text="<html>captive portal</html>")

    def wrong_shape(request):
        return httpx.Response(200, json={"wrong": 1})

    async with ChatApiClient("http://test/api/v1", "t", transport=httpx.MockTransport(html)) as api:
        with pytest.raises(TransportError):
            await api.get_conversations()
        with pytest.raises(TransportError):
            await api.send_message(conversation_id, "hello")

    async with ChatApiClient("http://test/api/v1", "t", transport=httpx.MockTransport(wrong_shape)) as api:
        with pytest.raises(TransportError):
            await api.get_conversations()
        with pytest.raises(TransportError):
            await api.get_messages(conversation_id)
        with pytest.raises(TransportError):
            await api.send_message(conversation_id, "hello")
        with pytest.raises(TransportError):
            await api.mark_read(conversation_id)
        with pytest.raises(TransportError):
            await api.get_unread_count()


@pytest.mark.asyncio
async def test_garbled_send_answer_keeps_compose_text(make_connection):
    def garbled(request):
        return httpx.Response(201, text="OK")

    async with ChatApiClient("http://test/api/v1", "t", transport=httpx.MockTransport(garbled)) as api:
        view = ConversationView(uuid4(), uuid4(), api, make_connection())
        view.compose.text = "Court 3 at six?"

        with pytest.raises(TransportError):
            await view.send()

    assert view.compose.text == "Court 3 at six?"
    assert view.messages == []
