"""FastAPI application factory."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from campusnet.config import get_settings
from campusnet.database import close_db, init_db
from campusnet.engagement.router import router as engagement_router
from campusnet.health.router import router as health_router
from campusnet.media.router import router as media_router
from campusnet.messaging.router import router as messaging_router
from campusnet.middleware import setup_middleware
from campusnet.moderation.router import router as moderation_router
from campusnet.notifications.router import router as notifications_router
from campusnet.posts.router import router as posts_router
from campusnet.redis_client import close_redis, get_redis, init_redis
from campusnet.search.router import router as search_router
from campusnet.ws.bridge import PubSubBridge
from campusnet.ws.router import router as ws_router


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    # Change feed -> WebSocket fan-out
    bridge = PubSubBridge(get_redis())
    bridge_task = asyncio.create_task(bridge.start())

    yield

    await bridge.stop()
    bridge_task.cancel()
    try:
        await bridge_task
    except asyncio.CancelledError:
        pass

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="campusnet",
        description="Messaging, notifications and engagement sync for a university social network",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(posts_router)
    app.include_router(engagement_router)
    app.include_router(messaging_router)
    app.include_router(notifications_router)
    app.include_router(moderation_router)
    app.include_router(media_router)
    app.include_router(search_router)
    app.include_router(ws_router)

    return app


app = create_app()
