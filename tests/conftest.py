import os

# Settings are read at import time, so the test environment goes in first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./courtchat_test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")

from typing import Any, AsyncGenerator
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from courtchat.core.security import create_access_token
from courtchat.database import Base, get_db
from courtchat.main import app
from courtchat.models.user import User
from courtchat.realtime.gateway import ChatGateway
from courtchat.realtime.hub import Connection, RealtimeHub

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite:///./courtchat_test.db")

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)
test_async_session_maker = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class FrameRecorder:
    """Stands in for a websocket: keeps every frame the hub writes to it."""

    def __init__(self):
        self.frames: list[dict[str, Any]] = []

    async def __call__(self, frame: dict[str, Any]) -> None:
        self.frames.append(frame)

    def events(self, name: str) -> list[Any]:
        return [frame["data"] for frame in self.frames if frame["event"] == name]

    def clear(self) -> None:
        self.frames.clear()


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with test_async_session_maker() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def hub(db_session: AsyncSession) -> RealtimeHub:
    """A fresh hub per test, installed on the app for REST handlers."""
    hub = RealtimeHub()
    previous_hub = app.state.hub
    app.state.hub = hub
    yield hub
    app.state.hub = previous_hub


@pytest.fixture
def gateway(hub: RealtimeHub, db_session: AsyncSession) -> ChatGateway:
    """Gateway bound to the test session, so socket handlers see the same data as REST."""

    class _SharedSession:
        async def __aenter__(self):
            return db_session

        async def __aexit__(self, *exc_info):
            return None

    return ChatGateway(hub, _SharedSession)


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, hub: RealtimeHub) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


async def create_user(db: AsyncSession, name: str, city: str | None = "Berlin") -> User:
    user = User(
        id=uuid4(),
        name=name,
        email=f"{name.lower()}-{uuid4().hex[:6]}@example.com",
        city=city,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


def auth_headers(user_id: UUID) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest_asyncio.fixture
async def alice(db_session: AsyncSession) -> User:
    return await create_user(db_session, "Alice")


@pytest_asyncio.fixture
async def bob(db_session: AsyncSession) -> User:
    return await create_user(db_session, "Bob", city="Hamburg")


@pytest_asyncio.fixture
async def carol(db_session: AsyncSession) -> User:
    return await create_user(db_session, "Carol", city=None)


@pytest.fixture
def connect(hub: RealtimeHub):
    """Register a recording connection for a user: connect(user_id) -> (connection, recorder)."""

    def _connect(user_id: UUID) -> tuple[Connection, FrameRecorder]:
        recorder = FrameRecorder()
        return hub.register(user_id, recorder), recorder

    return _connect
