"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Callable
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.auth.jwt import create_access_token
from campusnet.database import close_db, get_engine, get_session_factory, init_db
from campusnet.db.base import utcnow
from campusnet.db.models import Base, Post, Profile
from campusnet.dependencies import get_redis_dep

TEST_DATABASE_URL = "sqlite+aiosqlite://"


# ---------------------------------------------------------------------------
# In-process pub/sub double
# ---------------------------------------------------------------------------


class FakePubSub:
    """Just enough of ``redis.asyncio.client.PubSub`` for the feed."""

    def __init__(self, broker: FakeRedis) -> None:
        self.broker = broker
        self.channels: set[str] = set()
        self.patterns: set[str] = set()
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self.closed = False

    async def subscribe(self, *channels: str) -> None:
        self.channels.update(channels)
        self.broker.pubsubs.add(self)

    async def psubscribe(self, *patterns: str) -> None:
        self.patterns.update(patterns)
        self.broker.pubsubs.add(self)

    async def unsubscribe(self, *channels: str) -> None:
        if channels:
            self.channels.difference_update(channels)
        else:
            self.channels.clear()
        if not self.channels and not self.patterns:
            self.broker.pubsubs.discard(self)

    async def punsubscribe(self, *patterns: str) -> None:
        self.patterns.clear()
        if not self.channels:
            self.broker.pubsubs.discard(self)

    async def aclose(self) -> None:
        self.closed = True
        self.broker.pubsubs.discard(self)

    async def get_message(self, ignore_subscribe_messages: bool = False, timeout: float = 0.0) -> dict | None:
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None


class FakeRedis:
    def __init__(self) -> None:
        self.pubsubs: set[FakePubSub] = set()
        self.published: list[tuple[str, str]] = []

    def pubsub(self) -> FakePubSub:
        return FakePubSub(self)

    async def publish(self, channel: str, payload: str) -> int:
        self.published.append((channel, payload))
        receivers = 0
        for pubsub in list(self.pubsubs):
            if channel in pubsub.channels:
                pubsub.queue.put_nowait({"type": "message", "channel": channel, "data": payload})
                receivers += 1
            elif any(channel.startswith(p.rstrip("*")) for p in pubsub.patterns):
                pubsub.queue.put_nowait({"type": "pmessage", "channel": channel, "data": payload})
                receivers += 1
        return receivers

    async def ping(self) -> bool:
        return True

    def channels_published(self) -> list[str]:
        return [channel for channel, _ in self.published]


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def store() -> AsyncGenerator[None, None]:
    """Fresh in-memory database with the full schema."""
    await init_db(TEST_DATABASE_URL)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_db()


@pytest_asyncio.fixture
async def db(store: None) -> AsyncGenerator[AsyncSession, None]:
    async with get_session_factory()() as session:
        yield session


@pytest.fixture
def redis() -> FakeRedis:
    return FakeRedis()


@pytest_asyncio.fixture
async def make_profile(db: AsyncSession) -> Callable[..., Any]:
    """Factory: ``await make_profile("ana")`` creates and commits a profile."""

    async def _make(username: str, *, role: str = "user", **fields: Any) -> Profile:
        now = utcnow()
        profile = Profile(username=username, role=role, created_at=now, updated_at=now, **fields)
        db.add(profile)
        await db.commit()
        return profile

    return _make


@pytest_asyncio.fixture
async def make_post(db: AsyncSession) -> Callable[..., Any]:
    async def _make(author: Profile, content: str = "hello campus", *, post_type: str = "text") -> Post:
        now = utcnow()
        post = Post(user_id=author.id, content=content, post_type=post_type, created_at=now, updated_at=now)
        db.add(post)
        await db.commit()
        return post

    return _make


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


def auth_header(profile: Profile) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(profile.id)}"}


@pytest_asyncio.fixture
async def app(store: None, redis: FakeRedis):
    """Application wired to the in-memory store and pub/sub double."""
    from campusnet.main import create_app

    application = create_app()

    async def _redis_override() -> AsyncGenerator[FakeRedis, None]:
        yield redis

    application.dependency_overrides[get_redis_dep] = _redis_override
    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
