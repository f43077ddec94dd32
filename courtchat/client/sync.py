"""
Client sync engine.

REST history is the source of truth; realtime events are merged into it as
deltas. ``ConversationView`` keeps one conversation's ordered messages,
``ConversationListView`` keeps the inbox.
"""

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from courtchat.client.api import ChatApiClient
from courtchat.client.connection import CONNECT_EVENT, RealtimeConnection
from courtchat.client.send import ComposeBox, DualTransportSender
from courtchat.client.store import MessageStore
from courtchat.client.typing_signals import TypingIndicator, TypingNotifier
from courtchat.core.exceptions import AppException, TransportError
from courtchat.realtime.events import ClientEvent, ServerEvent
from courtchat.schemas.conversation import ConversationListEntry
from courtchat.schemas.events import ConversationUpdatedPayload, ReadReceiptPayload, TypingPayload
from courtchat.schemas.message import MessageResponse, MessageType

logger = logging.getLogger(__name__)


class ConversationView:
    def __init__(
        self,
        conversation_id: UUID,
        user_id: UUID,
        api: ChatApiClient,
        connection: RealtimeConnection,
        sender: DualTransportSender | None = None,
        *,
        page_size: int = 50,
        typing_idle_timeout: float = 2.0,
        typing_ttl: float = 5.0,
    ):
        self.conversation_id = conversation_id
        self.user_id = user_id
        self._api = api
        self._connection = connection
        self._sender = sender or DualTransportSender(connection, api)
        self._page_size = page_size

        self.store = MessageStore()
        self.compose = ComposeBox()
        self.notifier = TypingNotifier(connection, conversation_id, typing_idle_timeout)
        self.indicator = TypingIndicator(typing_ttl)
        self.has_more = False
        self._subscriptions = [
            (ServerEvent.MESSAGE_NEW, self._on_message_new),
            (ServerEvent.MESSAGES_READ, self._on_messages_read),
            (ServerEvent.TYPING_START, self._on_typing_start),
            (ServerEvent.TYPING_STOP, self._on_typing_stop),
            (CONNECT_EVENT, self._on_reconnect),
        ]

    @property
    def messages(self) -> list[MessageResponse]:
        return self.store.messages

    @property
    def other_typing(self) -> bool:
        return self.indicator.is_typing(self.conversation_id)

    async def open(self) -> None:
        """Load the newest page, subscribe to the room and mark what we see as read."""
        page = await self._api.get_messages(self.conversation_id, self._page_size)
        self.store.insert_many(page.messages)
        self.has_more = page.has_more

        for event, handler in self._subscriptions:
            self._connection.on(event, handler)
        try:
            await self._connection.join_room(self.conversation_id)
        except TransportError as exc:
            # The join is re-issued once the connection comes back
            logger.info("Could not join %s yet: %s", self.conversation_id, exc.message)
        await self.mark_read()

    async def close(self) -> None:
        for event, handler in self._subscriptions:
            self._connection.off(event, handler)
        self.notifier.close()
        self.indicator.clear()
        try:
            await self._connection.leave_room(self.conversation_id)
        except TransportError:
            pass

    async def load_older(self) -> list[MessageResponse]:
        """Fetch the page before the oldest loaded message. Returns what was new."""
        if not self.has_more or self.store.oldest_id is None:
            return []
        page = await self._api.get_messages(
            self.conversation_id, self._page_size, before=self.store.oldest_id
        )
        added = [message for message in page.messages if self.store.insert(message)]
        self.has_more = page.has_more
        return added

    async def on_input(self, text: str) -> None:
        self.compose.text = text
        if text:
            await self.notifier.keystroke()
        else:
            await self.notifier.stop()

    async def send(self, message_type: MessageType = MessageType.TEXT) -> MessageResponse | None:
        """
        Send what is in the compose box.

        The box is cleared up front; if the message cannot be delivered on
        either transport, the text is put back and the error re-raised.
        """
        raw = self.compose.take()
        content = raw.strip()
        if not content:
            return None

        await self.notifier.stop()
        try:
            message = await self._sender.send(self.conversation_id, content, message_type)
        except AppException:
            self.compose.restore(raw)
            raise
        self.store.insert(message)
        return message

    async def mark_read(self, force: bool = False) -> None:
        """
        Tell the server we have seen the conversation, over whichever transport is up.

        Local read state only changes once the server has taken the receipt,
        so a receipt lost in transit is sent again on the next attempt.
        ``force`` sends it even when nothing looks unread locally.
        """
        if not force and self.store.unread_count(self.user_id) == 0:
            return
        if await self._send_read_receipt():
            self.store.mark_read_by(self.user_id)

    async def _send_read_receipt(self) -> bool:
        if self._connection.connected:
            try:
                await self._connection.emit_with_ack(ClientEvent.MESSAGES_READ, str(self.conversation_id))
                return True
            except TransportError as exc:
                logger.debug(
                    "Read receipt for %s not acknowledged (%s), using REST",
                    self.conversation_id,
                    exc.message,
                )
        try:
            await self._api.mark_read(self.conversation_id)
            return True
        except AppException as exc:
            logger.warning("Could not mark %s read: %s", self.conversation_id, exc.message)
            return False

    async def _on_message_new(self, data: Any) -> None:
        message = MessageResponse.model_validate(data)
        if message.conversation_id != self.conversation_id:
            return
        if not self.store.insert(message):
            return
        if message.sender_id != self.user_id:
            self.indicator.stop(self.conversation_id)
            await self.mark_read()

    def _on_messages_read(self, data: Any) -> None:
        receipt = ReadReceiptPayload.model_validate(data)
        if receipt.conversation_id == self.conversation_id:
            self.store.mark_read_by(receipt.reader_id)

    def _on_typing_start(self, data: Any) -> None:
        payload = TypingPayload.model_validate(data)
        if payload.conversation_id == self.conversation_id and payload.user_id != self.user_id:
            self.indicator.start(self.conversation_id)

    def _on_typing_stop(self, data: Any) -> None:
        payload = TypingPayload.model_validate(data)
        if payload.conversation_id == self.conversation_id and payload.user_id != self.user_id:
            self.indicator.stop(self.conversation_id)

    async def _on_reconnect(self, _data: Any) -> None:
        # Anything broadcast while we were away only exists in REST history
        try:
            page = await self._api.get_messages(self.conversation_id, self._page_size)
        except TransportError as exc:
            logger.warning("Catch-up for %s failed: %s", self.conversation_id, exc.message)
            return
        added = self.store.insert_many(page.messages)
        if added:
            logger.info("Caught up %d messages in %s", added, self.conversation_id)
        # A receipt sent just before the drop may never have reached the server
        await self.mark_read(force=True)


def _recency(entry: ConversationListEntry) -> tuple[bool, float, float]:
    def ts(value: datetime | None) -> float:
        if value is None:
            return 0.0
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()

    return entry.last_message_at is not None, ts(entry.last_message_at), ts(entry.created_at)


class ConversationListView:
    """The inbox: one entry per conversation with its preview and unread count."""

    def __init__(self, user_id: UUID, api: ChatApiClient, connection: RealtimeConnection):
        self.user_id = user_id
        self._api = api
        self._connection = connection
        self._entries: dict[UUID, ConversationListEntry] = {}
        self._refresh_seq = 0
        self._applied_seq = 0
        self._subscriptions = [
            (ServerEvent.CONVERSATION_UPDATED, self._on_conversation_updated),
            (ServerEvent.MESSAGES_READ, self._on_messages_read),
            (CONNECT_EVENT, self._on_reconnect),
        ]

    @property
    def conversations(self) -> list[ConversationListEntry]:
        return sorted(self._entries.values(), key=_recency, reverse=True)

    @property
    def total_unread(self) -> int:
        return sum(entry.unread_count for entry in self._entries.values())

    def get(self, conversation_id: UUID) -> ConversationListEntry | None:
        return self._entries.get(conversation_id)

    async def open(self) -> None:
        await self.refresh()
        for event, handler in self._subscriptions:
            self._connection.on(event, handler)

    def close(self) -> None:
        for event, handler in self._subscriptions:
            self._connection.off(event, handler)

    async def refresh(self) -> None:
        self._refresh_seq += 1
        seq = self._refresh_seq
        entries = await self._api.get_conversations()
        # Refreshes overlap when updates arrive quickly; never apply an older answer
        if seq < self._applied_seq:
            return
        self._applied_seq = seq
        self._entries = {entry.id: entry for entry in entries}

    async def _on_conversation_updated(self, data: Any) -> None:
        try:
            await self.refresh()
            return
        except TransportError as exc:
            logger.info("Inbox refresh failed (%s), applying preview locally", exc.message)

        try:
            payload = ConversationUpdatedPayload.model_validate(data)
        except PydanticValidationError:
            logger.warning("Malformed conversation:updated payload")
            return
        entry = self._entries.get(payload.conversation_id)
        if entry is None:
            return
        # Unread counts are only ever taken from the server
        self._entries[entry.id] = entry.model_copy(
            update={
                "last_message": payload.last_message,
                "last_message_at": payload.last_message.created_at,
            }
        )

    def _on_messages_read(self, data: Any) -> None:
        receipt = ReadReceiptPayload.model_validate(data)
        entry = self._entries.get(receipt.conversation_id)
        # Another session of ours read it
        if entry is not None and receipt.reader_id == self.user_id:
            self._entries[entry.id] = entry.model_copy(update={"unread_count": 0})

    async def _on_reconnect(self, _data: Any) -> None:
        try:
            await self.refresh()
        except TransportError as exc:
            logger.warning("Inbox refresh after reconnect failed: %s", exc.message)
