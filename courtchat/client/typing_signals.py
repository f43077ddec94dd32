"""Typing signals: the notifier on the sending side, the indicator on the receiving side."""

import asyncio
import logging
from collections.abc import Callable
from uuid import UUID

from courtchat.client.connection import RealtimeConnection
from courtchat.core.exceptions import TransportError
from courtchat.realtime.events import ClientEvent

logger = logging.getLogger(__name__)


class TypingNotifier:
    """
    Emits typing:start on every keystroke and typing:stop after the idle
    timeout or when the message is sent. Signals are best effort and are
    dropped while disconnected.
    """

    def __init__(
        self,
        connection: RealtimeConnection,
        conversation_id: UUID,
        idle_timeout: float = 2.0,
    ):
        self._connection = connection
        self._conversation_id = conversation_id
        self._idle_timeout = idle_timeout
        self._idle_handle: asyncio.TimerHandle | None = None
        self._stop_task: asyncio.Task | None = None
        self.typing = False

    async def keystroke(self) -> None:
        self._cancel_idle()
        self.typing = True
        await self._emit(ClientEvent.TYPING_START)
        loop = asyncio.get_running_loop()
        self._idle_handle = loop.call_later(self._idle_timeout, self._on_idle)

    async def stop(self) -> None:
        self._cancel_idle()
        if not self.typing:
            return
        self.typing = False
        await self._emit(ClientEvent.TYPING_STOP)

    def _on_idle(self) -> None:
        self._idle_handle = None
        self._stop_task = asyncio.create_task(self.stop())

    def _cancel_idle(self) -> None:
        if self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None

    async def _emit(self, event: ClientEvent) -> None:
        if not self._connection.connected:
            return
        try:
            await self._connection.emit(event, str(self._conversation_id))
        except TransportError as exc:
            logger.debug("Dropped %s: %s", event.value, exc.message)

    def close(self) -> None:
        self._cancel_idle()
        self.typing = False


class TypingIndicator:
    """
    Whether the other participant is typing, per conversation.

    A typing:stop can be lost when the typist disconnects, so every
    typing:start also arms a TTL after which the flag clears by itself.
    """

    def __init__(self, ttl: float = 5.0, on_change: Callable[[UUID, bool], None] | None = None):
        self._ttl = ttl
        self._on_change = on_change
        self._typing: dict[UUID, asyncio.TimerHandle] = {}

    def is_typing(self, conversation_id: UUID) -> bool:
        return conversation_id in self._typing

    def start(self, conversation_id: UUID) -> None:
        was_typing = self._clear_timer(conversation_id)
        loop = asyncio.get_running_loop()
        self._typing[conversation_id] = loop.call_later(self._ttl, self.stop, conversation_id)
        if not was_typing:
            self._notify(conversation_id, True)

    def stop(self, conversation_id: UUID) -> None:
        if self._clear_timer(conversation_id):
            self._notify(conversation_id, False)

    def clear(self) -> None:
        for handle in self._typing.values():
            handle.cancel()
        self._typing.clear()

    def _clear_timer(self, conversation_id: UUID) -> bool:
        handle = self._typing.pop(conversation_id, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def _notify(self, conversation_id: UUID, typing: bool) -> None:
        if self._on_change is not None:
            self._on_change(conversation_id, typing)
