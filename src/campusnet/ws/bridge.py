"""Bridges the Redis change feed to WebSocket clients.

Pattern-subscribes to ``feed:*`` and forwards only routed channels
(``feed:{table}:{column}:{value}``) so each event reaches exactly the
connections that own it: per-user tables go straight to the user's
connections, per-conversation and per-post tables go to the matching
WebSocket channel subscribers.
"""

import asyncio
import json

import redis.asyncio as aioredis
import structlog

from campusnet.feed.changes import ROUTING_COLUMNS
from campusnet.ws.manager import ConnectionManager, manager

logger = structlog.get_logger()

FEED_PATTERN = "feed:*"

# table -> ws channel prefix, for tables fanned out to channel subscribers
CHANNEL_ROUTES: dict[str, str] = {
    "messages": "conversation",
    "comments": "post",
    "reactions": "post",
    "idea_participants": "post",
}

# table -> event type, for tables delivered directly to the routed user
USER_ROUTES: dict[str, str] = {
    "notifications": "notification",
    "conversations": "conversation",
    "conversation_participants": "conversation_participant",
    "followers": "follower",
    "saved_posts": "saved_post",
}


def parse_feed_channel(channel: str) -> tuple[str, str, str] | None:
    """``feed:messages:conversation_id:7`` -> ``("messages", "conversation_id", "7")``."""
    parts = channel.split(":")
    if len(parts) != 4 or parts[0] != "feed":
        return None
    return parts[1], parts[2], parts[3]


class PubSubBridge:
    """Subscribes to the change feed and pushes events to WebSocket clients."""

    def __init__(self, redis_client: aioredis.Redis, connections: ConnectionManager | None = None) -> None:
        self.redis = redis_client
        self.connections = connections or manager
        self._running = False

    async def dispatch(self, redis_channel: str, data: str | bytes) -> int:
        """Route one feed message. Returns the number of connections reached."""
        parsed = parse_feed_channel(redis_channel)
        if parsed is None:
            return 0
        table, column, value = parsed
        if ROUTING_COLUMNS.get(table) != column:
            return 0

        try:
            if isinstance(data, bytes):
                data = data.decode()
            event = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("pubsub_invalid_message", channel=redis_channel)
            return 0

        try:
            target = int(value)
        except ValueError:
            logger.warning("pubsub_invalid_route", channel=redis_channel)
            return 0

        message = {
            "table": table,
            "kind": event.get("kind"),
            "row": event.get("row", {}),
            "committed_at": event.get("committed_at"),
        }

        if table in USER_ROUTES:
            return await self.connections.send_to_user_direct(
                target, {"type": USER_ROUTES[table], "payload": message}
            )

        prefix = CHANNEL_ROUTES.get(table)
        if prefix is None:
            return 0
        return await self.connections.broadcast_to_channel(f"{prefix}:{target}", message)

    async def start(self) -> None:
        """Start listening to the change feed."""
        self._running = True
        pubsub = self.redis.pubsub()
        await pubsub.psubscribe(FEED_PATTERN)
        logger.info("pubsub_bridge_started", patterns=[FEED_PATTERN])

        try:
            while self._running:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message is None:
                    continue
                if message.get("type") != "pmessage":
                    continue

                redis_channel = message.get("channel", "")
                if isinstance(redis_channel, bytes):
                    redis_channel = redis_channel.decode()

                sent = await self.dispatch(redis_channel, message.get("data", b""))
                if sent > 0:
                    logger.debug("pubsub_forwarded", channel=redis_channel, recipients=sent)

        except asyncio.CancelledError:
            pass
        finally:
            await pubsub.punsubscribe()
            await pubsub.aclose()
            logger.info("pubsub_bridge_stopped")

    async def stop(self) -> None:
        """Signal the bridge to stop."""
        self._running = False
