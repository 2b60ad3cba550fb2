"""Unit tests for the WebSocket ConnectionManager."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from campusnet.ws.manager import ConnectionManager, parse_channel


@pytest.fixture
def mgr() -> ConnectionManager:
    """Fresh ConnectionManager for each test."""
    return ConnectionManager()


def _make_ws(*, fail_send: bool = False) -> MagicMock:
    ws = AsyncMock()
    ws.accept = AsyncMock()
    if fail_send:
        ws.send_text = AsyncMock(side_effect=RuntimeError("connection closed"))
    else:
        ws.send_text = AsyncMock()
    return ws


class TestParseChannel:
    def test_valid(self) -> None:
        assert parse_channel("conversation:7") == ("conversation", 7)
        assert parse_channel("post:12") == ("post", 12)

    def test_invalid(self) -> None:
        for channel in ("", "post", "post:", "post:abc", "mining", "notifications:1", "post:1:2"):
            assert parse_channel(channel) is None


class TestConnections:
    @pytest.mark.asyncio
    async def test_connect_and_count(self, mgr: ConnectionManager) -> None:
        ws1, ws2 = _make_ws(), _make_ws()
        await mgr.connect(ws1, "conn-1", user_id=42)
        await mgr.connect(ws2, "conn-2", user_id=42)

        ws1.accept.assert_awaited_once()
        assert mgr.connection_count == 2
        assert mgr.user_connection_count(42) == 2
        assert mgr.get_stats()["unique_users"] == 1

    @pytest.mark.asyncio
    async def test_disconnect_releases_subscriptions(self, mgr: ConnectionManager) -> None:
        await mgr.connect(_make_ws(), "conn-1", user_id=42)
        await mgr.subscribe("conn-1", "post:1")
        await mgr.disconnect("conn-1")

        assert mgr.connection_count == 0
        assert mgr.user_connection_count(42) == 0
        assert mgr.subscribers("post:1") == set()
        assert mgr.get_stats()["channels"] == {}

    @pytest.mark.asyncio
    async def test_disconnect_unknown_is_noop(self, mgr: ConnectionManager) -> None:
        await mgr.disconnect("nope")
        assert mgr.connection_count == 0


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_subscribe_validates_channel(self, mgr: ConnectionManager) -> None:
        await mgr.connect(_make_ws(), "conn-1", user_id=1)
        assert await mgr.subscribe("conn-1", "conversation:3")
        assert not await mgr.subscribe("conn-1", "mining")
        assert not await mgr.subscribe("ghost", "post:1")
        assert mgr.subscribers("conversation:3") == {"conn-1"}

    @pytest.mark.asyncio
    async def test_unsubscribe(self, mgr: ConnectionManager) -> None:
        await mgr.connect(_make_ws(), "conn-1", user_id=1)
        await mgr.subscribe("conn-1", "post:5")
        assert await mgr.unsubscribe("conn-1", "post:5")
        assert mgr.subscribers("post:5") == set()


class TestDelivery:
    @pytest.mark.asyncio
    async def test_broadcast_only_to_subscribers(self, mgr: ConnectionManager) -> None:
        ws1, ws2 = _make_ws(), _make_ws()
        await mgr.connect(ws1, "conn-1", user_id=1)
        await mgr.connect(ws2, "conn-2", user_id=2)
        await mgr.subscribe("conn-1", "post:9")

        sent = await mgr.broadcast_to_channel("post:9", {"table": "comments"})

        assert sent == 1
        payload = json.loads(ws1.send_text.call_args[0][0])
        assert payload == {"channel": "post:9", "data": {"table": "comments"}}
        ws2.send_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_to_user_reaches_every_device(self, mgr: ConnectionManager) -> None:
        phone, laptop, other = _make_ws(), _make_ws(), _make_ws()
        await mgr.connect(phone, "phone", user_id=7)
        await mgr.connect(laptop, "laptop", user_id=7)
        await mgr.connect(other, "other", user_id=8)

        sent = await mgr.send_to_user_direct(7, {"type": "notification"})

        assert sent == 2
        other.send_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_send_disconnects(self, mgr: ConnectionManager) -> None:
        await mgr.connect(_make_ws(fail_send=True), "conn-1", user_id=1)
        await mgr.subscribe("conn-1", "post:1")

        assert await mgr.broadcast_to_channel("post:1", {}) == 0
        assert mgr.connection_count == 0
        assert mgr.subscribers("post:1") == set()
