"""WebSocket connection manager.

Tracks all active WebSocket connections, their per-user grouping and their
channel subscriptions (``conversation:{id}`` and ``post:{id}``). Per-user
events are delivered to every connection of the user without subscription.
"""

import json
import re
import time
from collections import defaultdict
from dataclasses import dataclass, field

import structlog
from fastapi import WebSocket

logger = structlog.get_logger()

CHANNEL_PATTERN = re.compile(r"^(conversation|post):(\d+)$")


def parse_channel(channel: str) -> tuple[str, int] | None:
    """Split ``"post:12"`` into ``("post", 12)``; None if not a valid channel."""
    match = CHANNEL_PATTERN.match(channel or "")
    if match is None:
        return None
    return match.group(1), int(match.group(2))


@dataclass
class ClientConnection:
    """Represents a single WebSocket client."""

    websocket: WebSocket
    user_id: int
    subscriptions: set[str] = field(default_factory=set)
    connected_at: float = field(default_factory=time.time)
    messages_sent: int = 0


class ConnectionManager:
    """Manages all active WebSocket connections.

    Safe for asyncio via the single-threaded event loop.
    """

    def __init__(self) -> None:
        self._connections: dict[str, ClientConnection] = {}  # conn_id -> client
        self._channels: dict[str, set[str]] = defaultdict(set)  # channel -> {conn_ids}
        self._user_connections: dict[int, set[str]] = defaultdict(set)  # user_id -> {conn_ids}

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def user_connection_count(self, user_id: int) -> int:
        return len(self._user_connections.get(user_id, ()))

    async def connect(self, websocket: WebSocket, conn_id: str, user_id: int) -> None:
        """Accept a new WebSocket connection."""
        await websocket.accept()
        self._connections[conn_id] = ClientConnection(websocket=websocket, user_id=user_id)
        self._user_connections[user_id].add(conn_id)
        logger.info("ws_connected", conn_id=conn_id, user_id=user_id)

    async def disconnect(self, conn_id: str) -> None:
        """Remove a WebSocket connection and release all of its subscriptions."""
        client = self._connections.pop(conn_id, None)
        if client is None:
            return

        for channel in client.subscriptions:
            members = self._channels.get(channel)
            if members is None:
                continue
            members.discard(conn_id)
            if not members:
                del self._channels[channel]
        client.subscriptions.clear()

        self._user_connections[client.user_id].discard(conn_id)
        if not self._user_connections[client.user_id]:
            del self._user_connections[client.user_id]

        logger.info("ws_disconnected", conn_id=conn_id, user_id=client.user_id)

    async def subscribe(self, conn_id: str, channel: str) -> bool:
        """Subscribe a connection to a channel. Returns False if invalid.

        Authorization (e.g. conversation membership) is checked by the caller.
        """
        client = self._connections.get(conn_id)
        if client is None or parse_channel(channel) is None:
            return False

        client.subscriptions.add(channel)
        self._channels[channel].add(conn_id)
        logger.debug("ws_subscribed", conn_id=conn_id, channel=channel)
        return True

    async def unsubscribe(self, conn_id: str, channel: str) -> bool:
        """Unsubscribe a connection from a channel."""
        client = self._connections.get(conn_id)
        if client is None:
            return False

        client.subscriptions.discard(channel)
        members = self._channels.get(channel)
        if members is not None:
            members.discard(conn_id)
            if not members:
                del self._channels[channel]
        return True

    def subscribers(self, channel: str) -> set[str]:
        return set(self._channels.get(channel, set()))

    async def _send(self, conn_id: str, payload: str) -> bool:
        client = self._connections.get(conn_id)
        if client is None:
            return False
        try:
            await client.websocket.send_text(payload)
        except Exception:
            logger.debug("ws_send_failed", conn_id=conn_id)
            await self.disconnect(conn_id)
            return False
        client.messages_sent += 1
        return True

    async def broadcast_to_channel(self, channel: str, message: dict) -> int:
        """Send a message to all clients subscribed to a channel.

        Returns the number of clients that received the message.
        """
        conn_ids = list(self._channels.get(channel, set()))
        if not conn_ids:
            return 0

        payload = json.dumps({"channel": channel, "data": message})
        sent = 0
        for conn_id in conn_ids:
            if await self._send(conn_id, payload):
                sent += 1
        return sent

    async def send_to_user_direct(self, user_id: int, message: dict) -> int:
        """Send a message to every connection of a user, regardless of subscriptions."""
        conn_ids = list(self._user_connections.get(user_id, set()))
        if not conn_ids:
            return 0

        payload = json.dumps(message)
        sent = 0
        for conn_id in conn_ids:
            if await self._send(conn_id, payload):
                sent += 1
        return sent

    def get_stats(self) -> dict:
        """Get connection statistics."""
        return {
            "total_connections": len(self._connections),
            "unique_users": len(self._user_connections),
            "channels": {ch: len(conns) for ch, conns in self._channels.items() if conns},
        }


# Global singleton
manager = ConnectionManager()
