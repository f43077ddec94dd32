"""Composition root for an embedding application: one session per signed-in user."""

import logging
from collections.abc import Callable
from uuid import UUID

import httpx

from courtchat.client.api import ChatApiClient
from courtchat.client.config import ClientSettings
from courtchat.client.connection import RealtimeConnection
from courtchat.client.send import DualTransportSender
from courtchat.client.sync import ConversationListView, ConversationView
from courtchat.client.transport import Transport, WebSocketTransport
from courtchat.core.exceptions import TransportError

logger = logging.getLogger(__name__)


class ChatSession:
    """
    Wires the REST client, the realtime connection and the sender together.

    The realtime channel is optional: when it cannot be opened the session
    keeps working over REST and the connection keeps retrying on its own.
    """

    def __init__(
        self,
        user_id: UUID,
        token: str,
        settings: ClientSettings | None = None,
        *,
        transport_factory: Callable[[], Transport] | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.user_id = user_id
        self.settings = settings or ClientSettings()
        self.api = ChatApiClient(
            self.settings.API_URL,
            token,
            timeout=self.settings.REQUEST_TIMEOUT,
            transport=http_transport,
        )
        self.connection = RealtimeConnection(
            self.settings.SOCKET_URL,
            token,
            transport_factory or (lambda: WebSocketTransport(self.settings.REQUEST_TIMEOUT)),
            ack_timeout=self.settings.ACK_TIMEOUT,
            reconnect_attempts=self.settings.RECONNECT_ATTEMPTS,
            reconnect_delay=self.settings.RECONNECT_DELAY,
            reconnect_delay_max=self.settings.RECONNECT_DELAY_MAX,
        )
        self.sender = DualTransportSender(self.connection, self.api)
        self._views: dict[UUID, ConversationView] = {}

    async def start(self) -> bool:
        """Try to bring the realtime channel up. Returns whether it is connected."""
        try:
            await self.connection.connect()
        except TransportError as exc:
            logger.warning("Realtime unavailable, using REST only: %s", exc.message)
        return self.connection.connected

    async def close(self) -> None:
        for view in list(self._views.values()):
            await view.close()
        self._views.clear()
        await self.connection.disconnect()
        await self.api.aclose()

    async def conversation_list(self) -> ConversationListView:
        view = ConversationListView(self.user_id, self.api, self.connection)
        await view.open()
        return view

    async def open_conversation(self, conversation_id: UUID) -> ConversationView:
        view = self._views.get(conversation_id)
        if view is not None:
            return view
        view = ConversationView(
            conversation_id,
            self.user_id,
            self.api,
            self.connection,
            self.sender,
            page_size=self.settings.PAGE_SIZE,
            typing_idle_timeout=self.settings.TYPING_IDLE_TIMEOUT,
            typing_ttl=self.settings.TYPING_TTL,
        )
        await view.open()
        self._views[conversation_id] = view
        return view

    async def start_conversation(self, other_user_id: UUID) -> ConversationView:
        conversation = await self.api.start_conversation(other_user_id)
        return await self.open_conversation(conversation.id)

    async def close_conversation(self, conversation_id: UUID) -> None:
        view = self._views.pop(conversation_id, None)
        if view is not None:
            await view.close()
