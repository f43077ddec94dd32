import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport

from courtchat.client.api import ChatApiClient
from courtchat.client.connection import RealtimeConnection
from courtchat.core.exceptions import ErrorCode, TransportError
from courtchat.core.security import create_access_token
from courtchat.main import app
from courtchat.realtime.events import ACK_EVENT, build_frame

Responder = Callable[[dict[str, Any]], Awaitable[Any]]


class FakeTransport:
    """In-memory frame channel. ``None`` in the inbox means the line went dead."""

    def __init__(self, server: "FakeServer"):
        self.server = server
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.is_open = False

    async def open(self, url: str, token: str) -> None:
        if self.server.failing_opens > 0:
            self.server.failing_opens -= 1
            raise TransportError("connection refused", code=ErrorCode.TRANSPORT_DISCONNECTED)
        self.is_open = True
        self.server.tokens.append(token)
        self.server.transports.append(self)

    async def send(self, frame: dict[str, Any]) -> None:
        if not self.is_open:
            raise TransportError("socket closed", code=ErrorCode.TRANSPORT_DISCONNECTED)
        self.server.received.append(frame)
        if "ack" in frame:
            data = await self.server.respond(frame)
            if data is not None:
                self.inbox.put_nowait(build_frame(ACK_EVENT, data, ack=frame["ack"]))

    async def receive(self) -> dict[str, Any]:
        frame = await self.inbox.get()
        if frame is None:
            raise TransportError("socket closed", code=ErrorCode.TRANSPORT_DISCONNECTED)
        return frame

    async def close(self) -> None:
        self.kill()

    def kill(self) -> None:
        if self.is_open:
            self.is_open = False
            self.inbox.put_nowait(None)


class FakeServer:
    """
    Plays the gateway for client tests. By default every acknowledged frame is
    answered with ``{}``; tests swap ``responder`` to script other answers,
    returning None to swallow the ack.
    """

    def __init__(self):
        self.transports: list[FakeTransport] = []
        self.received: list[dict[str, Any]] = []
        self.tokens: list[str] = []
        self.failing_opens = 0
        self.responder: Responder | None = None

    def factory(self) -> FakeTransport:
        return FakeTransport(self)

    async def respond(self, frame: dict[str, Any]) -> Any:
        if self.responder is None:
            return {}
        return await self.responder(frame)

    @property
    def current(self) -> FakeTransport:
        return self.transports[-1]

    def push(self, event: str, data: Any) -> None:
        """Deliver a server event to the live connection."""
        self.current.inbox.put_nowait(build_frame(event, data))

    def drop(self) -> None:
        self.current.kill()

    def sent(self, event: str) -> list[Any]:
        return [frame["data"] for frame in self.received if frame["event"] == event]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def delays() -> list[float]:
    return []


@pytest_asyncio.fixture
async def make_connection(server: FakeServer, delays: list[float]):
    """Build a RealtimeConnection on the fake server with recorded, instant backoff."""
    created: list[RealtimeConnection] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)
        await asyncio.sleep(0)

    def _make(token: str = "token", **kwargs) -> RealtimeConnection:
        kwargs.setdefault("ack_timeout", 0.2)
        kwargs.setdefault("reconnect_attempts", 5)
        connection = RealtimeConnection(
            "ws://test/ws/chat",
            token,
            server.factory,
            sleep=fake_sleep,
            **kwargs,
        )
        created.append(connection)
        return connection

    yield _make

    for connection in created:
        await connection.disconnect()


@pytest_asyncio.fixture
async def api_for(client):
    """ChatApiClient talking to the app in-process, one per user."""
    opened: list[ChatApiClient] = []

    def _api(user_id) -> ChatApiClient:
        api = ChatApiClient(
            "http://test/api/v1",
            create_access_token(user_id),
            transport=ASGITransport(app=app),
        )
        opened.append(api)
        return api

    yield _api

    for api in opened:
        await api.aclose()
