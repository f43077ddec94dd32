"""
Client-side realtime connection manager.

One instance is created by the application's composition root and handed to
whatever needs the realtime channel; nothing here is a module-level global.
"""

import asyncio
import inspect
import itertools
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any
from uuid import UUID

from courtchat.core.exceptions import AckError, ErrorCode, TransportError
from courtchat.realtime.events import ACK_EVENT, ClientEvent, build_frame
from courtchat.client.transport import Transport, WebSocketTransport

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], Awaitable[None] | None]

# Local pseudo-events fired by the connection itself, never sent on the wire
CONNECT_EVENT = "connect"
DISCONNECT_EVENT = "disconnect"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Delay before retry number ``attempt`` (0-based): base * 2**attempt, capped."""
    return min(cap, base * (2 ** attempt))


class RealtimeConnection:
    """
    State machine disconnected -> connecting -> connected.

    The server forgets room membership whenever a connection drops, so the
    rooms joined through ``join_room`` are re-issued after every successful
    (re)connect. Pending acknowledgements fail with TransportError when the
    connection is lost or when they time out.
    """

    def __init__(
        self,
        url: str,
        token: str,
        transport_factory: Callable[[], Transport] = WebSocketTransport,
        *,
        ack_timeout: float = 5.0,
        reconnect_attempts: int = 10,
        reconnect_delay: float = 1.0,
        reconnect_delay_max: float = 30.0,
        auto_reconnect: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._url = url
        self._token = token
        self._transport_factory = transport_factory
        self._ack_timeout = ack_timeout
        self._reconnect_attempts = max(1, reconnect_attempts)
        self._reconnect_delay = reconnect_delay
        self._reconnect_delay_max = reconnect_delay_max
        self._auto_reconnect = auto_reconnect
        self._sleep = sleep

        self.state = ConnectionState.DISCONNECTED
        self._transport: Transport | None = None
        self._reader_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._connect_lock = asyncio.Lock()
        self._closing = False

        self._handlers: dict[str, list[EventHandler]] = {}
        self._handler_tasks: set[asyncio.Task] = set()
        self._pending: dict[int, asyncio.Future] = {}
        self._ack_ids = itertools.count(1)
        self._rooms: set[UUID] = set()

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def rooms(self) -> frozenset[UUID]:
        return frozenset(self._rooms)

    # -- lifecycle ---------------------------------------------------------

    async def connect(self) -> None:
        """Open the channel, retrying with exponential backoff up to the attempt cap."""
        async with self._connect_lock:
            if self.connected:
                return
            self._closing = False
            self.state = ConnectionState.CONNECTING

            last_error: TransportError | None = None
            for attempt in range(self._reconnect_attempts):
                if attempt:
                    delay = backoff_delay(attempt - 1, self._reconnect_delay, self._reconnect_delay_max)
                    logger.info(
                        "Reconnect attempt %d/%d in %.1fs",
                        attempt + 1,
                        self._reconnect_attempts,
                        delay,
                    )
                    await self._sleep(delay)
                    if self._closing:
                        break
                transport = self._transport_factory()
                try:
                    await transport.open(self._url, self._token)
                except TransportError as exc:
                    logger.warning("Realtime connect failed: %s", exc.message)
                    last_error = exc
                    continue
                await self._on_opened(transport)
                return

            self.state = ConnectionState.DISCONNECTED
            raise TransportError(
                f"Could not connect after {self._reconnect_attempts} attempts",
                code=ErrorCode.TRANSPORT_DISCONNECTED,
            ) from last_error

    async def disconnect(self) -> None:
        """Close the channel for good. Joined rooms are forgotten."""
        self._closing = True
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

        transport, self._transport = self._transport, None
        if self._reader_task is not None:
            self._reader_task.cancel()
            self._reader_task = None
        if transport is not None:
            try:
                await transport.close()
            except TransportError as exc:
                logger.debug("Error while closing transport: %s", exc.message)

        for task in list(self._handler_tasks):
            task.cancel()
        self._handler_tasks.clear()

        self._rooms.clear()
        self.state = ConnectionState.DISCONNECTED
        self._fail_pending(TransportError("Connection closed", code=ErrorCode.TRANSPORT_DISCONNECTED))

    async def _on_opened(self, transport: Transport) -> None:
        self._transport = transport
        self.state = ConnectionState.CONNECTED
        self._reader_task = asyncio.create_task(self._read_loop(transport))
        logger.info("Realtime connection established")

        for conversation_id in list(self._rooms):
            try:
                await self._send(build_frame(ClientEvent.CONVERSATION_JOIN, str(conversation_id)))
            except TransportError:
                # The reader notices the drop and starts another cycle
                break

        self._dispatch(CONNECT_EVENT, None)

    async def _read_loop(self, transport: Transport) -> None:
        while True:
            try:
                frame = await transport.receive()
            except TransportError as exc:
                logger.warning("Realtime connection lost: %s", exc.message)
                break
            self._handle_frame(frame)

        if self._transport is transport:
            await self._on_lost()

    async def _on_lost(self) -> None:
        self._transport = None
        self._reader_task = None
        self.state = ConnectionState.DISCONNECTED
        self._fail_pending(TransportError("Connection lost", code=ErrorCode.TRANSPORT_DISCONNECTED))
        self._dispatch(DISCONNECT_EVENT, None)

        if self._auto_reconnect and not self._closing:
            self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _reconnect(self) -> None:
        try:
            await self.connect()
        except TransportError as exc:
            # REST keeps working; a later explicit connect() may try again
            logger.error("Giving up on realtime connection: %s", exc.message)

    # -- events ------------------------------------------------------------

    def on(self, event: str | Enum, handler: EventHandler) -> None:
        self._handlers.setdefault(_event_name(event), []).append(handler)

    def off(self, event: str | Enum, handler: EventHandler) -> None:
        handlers = self._handlers.get(_event_name(event), [])
        if handler in handlers:
            handlers.remove(handler)

    def _handle_frame(self, frame: dict[str, Any]) -> None:
        event = frame.get("event")
        if event == ACK_EVENT:
            future = self._pending.get(frame.get("ack"))
            if future is not None and not future.done():
                future.set_result(frame.get("data"))
            return
        self._dispatch(event, frame.get("data"))

    def _dispatch(self, event: str, data: Any) -> None:
        """
        Call the handlers for ``event``. Coroutine handlers run as their own
        tasks so the reader never waits on them and acks keep flowing.
        """
        for handler in list(self._handlers.get(event, ())):
            try:
                result = handler(data)
            except Exception:
                logger.exception("Handler for %s failed", event)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._handler_tasks.add(task)
                task.add_done_callback(lambda done, event=event: self._handler_done(event, done))

    def _handler_done(self, event: str, task: asyncio.Task) -> None:
        self._handler_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Handler for %s failed", event, exc_info=exc)

    # -- sending -----------------------------------------------------------

    async def _send(self, frame: dict[str, Any]) -> None:
        transport = self._transport
        if transport is None or not self.connected:
            raise TransportError("Realtime connection is not connected", code=ErrorCode.TRANSPORT_DISCONNECTED)
        await transport.send(frame)

    async def emit(self, event: str | Enum, data: Any = None) -> None:
        """Fire-and-forget send. Raises TransportError when not connected."""
        await self._send(build_frame(event, data))

    async def emit_with_ack(
        self,
        event: str | Enum,
        data: Any = None,
        timeout: float | None = None,
    ) -> Any:
        """
        Send an event and wait for the server's acknowledgement.

        An ack that never comes within ``timeout`` and an ack carrying an
        error are both raised as TransportError (AckError for the latter),
        so callers handle every failure of the realtime path the same way.
        """
        ack_id = next(self._ack_ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[ack_id] = future
        try:
            await self._send(build_frame(event, data, ack=ack_id))
            try:
                result = await asyncio.wait_for(future, timeout or self._ack_timeout)
            except asyncio.TimeoutError:
                raise TransportError(
                    f"No acknowledgement for {_event_name(event)}",
                    code=ErrorCode.TRANSPORT_TIMEOUT,
                )
        finally:
            self._pending.pop(ack_id, None)

        if isinstance(result, dict) and result.get("error"):
            raise AckError(str(result["error"]), remote_code=result.get("code"))
        return result

    def _fail_pending(self, error: TransportError) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)

    # -- rooms -------------------------------------------------------------

    async def join_room(self, conversation_id: UUID) -> None:
        """Subscribe to a conversation now and after every reconnect."""
        self._rooms.add(conversation_id)
        if self.connected:
            await self.emit(ClientEvent.CONVERSATION_JOIN, str(conversation_id))

    async def leave_room(self, conversation_id: UUID) -> None:
        self._rooms.discard(conversation_id)
        if self.connected:
            await self.emit(ClientEvent.CONVERSATION_LEAVE, str(conversation_id))


def _event_name(event: str | Enum) -> str:
    return event.value if isinstance(event, Enum) else event
