"""Shared FastAPI dependencies.

Tests override ``get_redis_dep`` with an in-process pub/sub double.
"""

from collections.abc import AsyncGenerator

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.database import get_session
from campusnet.redis_client import get_redis


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """One store session per request."""
    async for session in get_session():
        yield session


async def get_redis_dep() -> AsyncGenerator[redis.Redis, None]:
    """Yield the publisher for post-commit change events."""
    yield get_redis()
