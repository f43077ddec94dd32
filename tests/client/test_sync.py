import asyncio

import pytest
from httpx import ASGITransport

from courtchat.client.config import ClientSettings
from courtchat.client.send import DualTransportSender
from courtchat.client.session import ChatSession
from courtchat.client.sync import ConversationListView, ConversationView
from courtchat.core.exceptions import ErrorCode, TransportError
from courtchat.core.security import create_access_token
from courtchat.main import app
from courtchat.schemas.message import MessageResponse
from courtchat.services import conversation_service, message_service, read_state_service
from tests.client.conftest import wait_until


async def seed(db_session, hub, conversation, sender_id, count: int, prefix: str = "m"):
    return [
        await message_service.append(db_session, hub, conversation, sender_id, f"{prefix}{i}")
        for i in range(count)
    ]


def wire(message) -> dict:
    return MessageResponse.model_validate(message).model_dump(mode="json")


@pytest.mark.asyncio
async def test_open_loads_history_joins_and_marks_read(
    api_for, db_session, hub, server, make_connection, alice, bob
):
    conversation, _ = await conversation_service.get_or_create(db_session, alice.id, bob.id)
    conversation_id, bob_id = conversation.id, bob.id
    await seed(db_session, hub, conversation, alice.id, 3)
    connection = make_connection()
    await connection.connect()

    view = ConversationView(conversation_id, bob_id, api_for(bob_id), connection)
    await view.open()

    assert [m.content for m in view.messages] == ["m0", "m1", "m2"]
    assert view.has_more is False
    assert server.sent("conversation:join") == [str(conversation_id)]
    assert server.sent("messages:read") == [str(conversation_id)]
    assert all(m.is_read for m in view.messages)


@pytest.mark.asyncio
async def test_open_while_offline_marks_read_over_rest(
    api_for, db_session, hub, server, make_connection, alice, bob
):
    conversation, _ = await conversation_service.get_or_create(db_session, alice.id, bob.id)
    conversation_id, bob_id = conversation.id, bob.id
    await seed(db_session, hub, conversation, alice.id, 2)

    view = ConversationView(conversation_id, bob_id, api_for(bob_id), make_connection())
    await view.open()

    assert server.received == []
    assert await read_state_service.unread_count(db_session, conversation_id, bob_id) == 0


@pytest.mark.asyncio
async def test_incoming_message_merged_and_read(api_for, db_session, hub, server, make_connection, alice, bob):
    conversation, _ = await conversation_service.get_or_create(db_session, alice.id, bob.id)
    conversation_id, bob_id = conversation.id, bob.id
    connection = make_connection()
    await connection.connect()
    view = ConversationView(conversation_id, bob_id, api_for(bob_id), connection)
    await view.open()
    server.received.clear()

    (incoming,) = await seed(db_session, hub, conversation, alice.id, 1, prefix="new")
    view.indicator.start(conversation_id)
    server.push("message:new", wire(incoming))
    server.push("message:new", wire(incoming))
    await wait_until(lambda: len(view.messages) == 1 and bool(server.sent("messages:read")))

    assert view.messages[0].id == incoming.id
    assert view.messages[0].is_read is True
    assert not view.other_typing
    assert server.sent("messages:read") == [str(conversation_id)]


@pytest.mark.asyncio
async def test_own_send_and_echo_leave_one_copy(api_for, db_session, hub, server, make_connection, alice, bob):
    conversation, _ = await conversation_service.get_or_create(db_session, alice.id, bob.id)
    conversation_id, alice_id = conversation.id, alice.id
    connection = make_connection()
    await connection.connect()
    view = ConversationView(conversation_id, alice_id, api_for(alice_id), connection)
    await view.open()

    async def persist(frame):
        if frame["event"] != "message:send":
            return {}
        data = frame["data"]
        message = await message_service.append(
            db_session, hub, conversation, alice_id, data["content"],
            client_message_id=data["clientMessageId"],
        )
        server.push("message:new", wire(message))
        return {"message": wire(message)}

    server.responder = persist
    await view.on_input("  Set point!  ")
    message = await view.send()

    assert [m.id for m in view.messages] == [message.id]
    assert view.compose.text == ""
    assert server.sent("typing:start") == [str(conversation_id)]
    assert server.sent("typing:stop") == [str(conversation_id)]
    assert message.content == "Set point!"


@pytest.mark.asyncio
async def test_failed_send_restores_compose_text(api_for, db_session, server, make_connection, alice, bob, monkeypatch):
    conversation, _ = await conversation_service.get_or_create(db_session, alice.id, bob.id)
    api = api_for(alice.id)
    view = ConversationView(conversation.id, alice.id, api, make_connection())
    await view.open()

    async def offline(*args, **kwargs):
        raise TransportError("network down", code=ErrorCode.TRANSPORT_FAILED)

    monkeypatch.setattr(api, "send_message", offline)
    view.compose.text = "Don't lose me"

    with pytest.raises(TransportError):
        await view.send()

    assert view.compose.text == "Don't lose me"
    assert view.messages == []


@pytest.mark.asyncio
async def test_blank_compose_sends_nothing(api_for, db_session, make_connection, alice, bob):
    conversation, _ = await conversation_service.get_or_create(db_session, alice.id, bob.id)
    view = ConversationView(conversation.id, alice.id, api_for(alice.id), make_connection())
    await view.open()
    view.compose.text = "   "

    assert await view.send() is None
    assert view.messages == []


@pytest.mark.asyncio
async def test_read_receipt_and_typing_events(api_for, db_session, hub, server, make_connection, alice, bob, carol):
    conversation, _ = await conversation_service.get_or_create(db_session, alice.id, bob.id)
    conversation_id, alice_id, bob_id = conversation.id, alice.id, bob.id
    await seed(db_session, hub, conversation, alice_id, 2)
    connection = make_connection()
    await connection.connect()
    view = ConversationView(conversation_id, alice_id, api_for(alice_id), connection)
    await view.open()
    assert not any(m.is_read for m in view.messages)

    typing = {"conversationId": str(conversation_id), "userId": str(bob_id)}
    server.push("typing:start", typing)
    await wait_until(lambda: view.other_typing)

    # Echo of our own typing and other conversations are ignored
    server.push("typing:stop", {"conversationId": str(conversation_id), "userId": str(alice_id)})
    server.push("messages:read", {"conversationId": str(carol.id), "readerId": str(bob_id)})
    server.push("messages:read", {"conversationId": str(conversation_id), "readerId": str(bob_id)})
    await wait_until(lambda: all(m.is_read for m in view.messages))
    assert view.other_typing

    server.push("typing:stop", typing)
    await wait_until(lambda: not view.other_typing)


@pytest.mark.asyncio
async def test_load_older_pages_backwards(api_for, db_session, hub, make_connection, alice, bob):
    conversation, _ = await conversation_service.get_or_create(db_session, alice.id, bob.id)
    conversation_id, alice_id = conversation.id, alice.id
    await seed(db_session, hub, conversation, alice_id, 5)

    view = ConversationView(conversation_id, alice_id, api_for(alice_id), make_connection(), page_size=2)
    await view.open()
    assert [m.content for m in view.messages] == ["m3", "m4"]
    assert view.has_more is True

    added = await view.load_older()
    assert [m.content for m in added] == ["m1", "m2"]
    await view.load_older()
    assert [m.content for m in view.messages] == ["m0", "m1", "m2", "m3", "m4"]
    assert view.has_more is False
    assert await view.load_older() == []


@pytest.mark.asyncio
async def test_reconnect_catches_up_missed_messages(api_for, db_session, hub, server, make_connection, alice, bob):
    conversation, _ = await conversation_service.get_or_create(db_session, alice.id, bob.id)
    conversation_id, bob_id = conversation.id, bob.id
    connection = make_connection()
    await connection.connect()
    view = ConversationView(conversation_id, bob_id, api_for(bob_id), connection)
    await view.open()

    # Stored but never delivered over this socket, as if sent while the line was dying
    await message_service.append(
        db_session, hub, conversation, conversation.other_participant(bob_id), "missed"
    )
    assert view.messages == []

    server.drop()
    await wait_until(lambda: any(m.content == "missed" for m in view.messages))
    assert server.sent("conversation:join") == [str(conversation_id), str(conversation_id)]


@pytest.mark.asyncio
async def test_list_view_refreshes_on_conversation_updated(
    api_for, db_session, hub, server, make_connection, alice, bob, carol
):
    with_bob, _ = await conversation_service.get_or_create(db_session, alice.id, bob.id)
    with_carol, _ = await conversation_service.get_or_create(db_session, alice.id, carol.id)
    await seed(db_session, hub, with_bob, bob.id, 1)
    connection = make_connection()
    await connection.connect()
    view = ConversationListView(alice.id, api_for(alice.id), connection)
    await view.open()
    assert [e.id for e in view.conversations] == [with_bob.id, with_carol.id]
    assert view.total_unread == 1

    (latest,) = await seed(db_session, hub, with_carol, carol.id, 1, prefix="carol")
    server.push(
        "conversation:updated",
        {"conversationId": str(with_carol.id), "last_message": wire(latest)},
    )

    await wait_until(lambda: view.conversations[0].id == with_carol.id)
    assert view.get(with_carol.id).unread_count == 1
    assert view.total_unread == 2

    # Another of our sessions read the conversation with Bob
    server.push("messages:read", {"conversationId": str(with_bob.id), "readerId": str(alice.id)})
    await wait_until(lambda: view.get(with_bob.id).unread_count == 0)


@pytest.mark.asyncio
async def test_list_view_falls_back_to_local_preview(
    api_for, db_session, hub, server, make_connection, alice, bob, monkeypatch
):
    conversation, _ = await conversation_service.get_or_create(db_session, alice.id, bob.id)
    await seed(db_session, hub, conversation, bob.id, 2)
    api = api_for(alice.id)
    connection = make_connection()
    await connection.connect()
    view = ConversationListView(alice.id, api, connection)
    await view.open()

    async def offline():
        raise TransportError("network down")

    monkeypatch.setattr(api, "get_conversations", offline)
    (latest,) = await seed(db_session, hub, conversation, bob.id, 1, prefix="late")
    server.push(
        "conversation:updated",
        {"conversationId": str(conversation.id), "last_message": wire(latest)},
    )

    await wait_until(lambda: view.get(conversation.id).last_message.id == latest.id)
    # Counts only ever come from the server
    assert view.get(conversation.id).unread_count == 2


@pytest.mark.asyncio
async def test_chat_session_wires_everything(db_session, hub, client, server, alice, bob):
    settings = ClientSettings(API_URL="http://test/api/v1", SOCKET_URL="ws://test/ws/chat", ACK_TIMEOUT=0.2)
    session = ChatSession(
        alice.id,
        create_access_token(alice.id),
        settings,
        transport_factory=server.factory,
        http_transport=ASGITransport(app=app),
    )
    assert await session.start() is True

    view = await session.start_conversation(bob.id)
    assert await session.open_conversation(view.conversation_id) is view
    assert server.sent("conversation:join") == [str(view.conversation_id)]

    inbox = await session.conversation_list()
    assert [e.id for e in inbox.conversations] == [view.conversation_id]

    await session.close()
    assert not session.connection.connected


@pytest.mark.asyncio
async def test_lost_read_receipt_is_sent_again_after_reconnect(
    api_for, db_session, hub, server, make_connection, alice, bob, monkeypatch
):
    conversation, _ = await conversation_service.get_or_create(db_session, alice.id, bob.id)
    conversation_id, bob_id = conversation.id, bob.id
    await seed(db_session, hub, conversation, alice.id, 1)
    api = api_for(bob_id)
    connection = make_connection(ack_timeout=0.05)
    await connection.connect()

    async def rest_down(*args, **kwargs):
        raise TransportError("network down")

    async def lose_receipts(frame):
        return None if frame["event"] == "messages:read" else {}

    monkeypatch.setattr(api, "mark_read", rest_down)
    server.responder = lose_receipts

    view = ConversationView(conversation_id, bob_id, api, connection)
    await view.open()

    assert server.sent("messages:read") == [str(conversation_id)]
    # Nothing confirmed the receipt, so it still counts as unread on both sides
    assert view.store.unread_count(bob_id) == 1
    assert await read_state_service.unread_count(db_session, conversation_id, bob_id) == 1

    async def apply_receipts(frame):
        if frame["event"] != "messages:read":
            return {}
        updated = await read_state_service.mark_conversation_read(db_session, hub, conversation, bob_id)
        return {"marked_read": updated}

    server.responder = apply_receipts
    server.drop()

    await wait_until(lambda: view.store.unread_count(bob_id) == 0)
    assert server.sent("messages:read") == [str(conversation_id), str(conversation_id)]
    assert await read_state_service.unread_count(db_session, conversation_id, bob_id) == 0


@pytest.mark.asyncio
async def test_unacknowledged_read_receipt_falls_back_to_rest(
    api_for, db_session, hub, server, make_connection, alice, bob
):
    conversation, _ = await conversation_service.get_or_create(db_session, alice.id, bob.id)
    conversation_id, bob_id = conversation.id, bob.id
    await seed(db_session, hub, conversation, alice.id, 2)
    connection = make_connection(ack_timeout=0.05)
    await connection.connect()

    async def swallow(frame):
        return None

    server.responder = swallow
    view = ConversationView(conversation_id, bob_id, api_for(bob_id), connection)
    await view.open()

    assert server.sent("messages:read") == [str(conversation_id)]
    assert all(m.is_read for m in view.messages)
    assert await read_state_service.unread_count(db_session, conversation_id, bob_id) == 0


@pytest.mark.asyncio
async def test_slow_inbox_refresh_does_not_push_sends_to_rest(
    api_for, db_session, hub, server, make_connection, alice, bob, monkeypatch
):
    conversation, _ = await conversation_service.get_or_create(db_session, alice.id, bob.id)
    conversation_id, alice_id = conversation.id, alice.id
    api = api_for(alice_id)
    connection = make_connection(ack_timeout=0.2)
    await connection.connect()
    inbox = ConversationListView(alice_id, api, connection)
    await inbox.open()

    fetch_conversations = api.get_conversations
    rest_calls = []

    async def slow_refresh():
        await asyncio.sleep(0.5)
        return await fetch_conversations()

    async def rest_send(*args, **kwargs):
        rest_calls.append(args)
        raise TransportError("network down")

    monkeypatch.setattr(api, "get_conversations", slow_refresh)
    monkeypatch.setattr(api, "send_message", rest_send)

    async def persist(frame):
        data = frame["data"]
        message = await message_service.append(
            db_session, hub, conversation, alice_id, data["content"],
            client_message_id=data["clientMessageId"],
        )
        server.push(
            "conversation:updated",
            {"conversationId": str(conversation_id), "last_message": wire(message)},
        )
        return {"message": wire(message)}

    server.responder = persist
    message = await DualTransportSender(connection, api).send(conversation_id, "Quick one")

    assert rest_calls == []
    assert message.content == "Quick one"
    await wait_until(lambda: inbox.get(conversation_id).last_message is not None)
    assert inbox.get(conversation_id).last_message.id == message.id
