"""Tests for change events, channel routing and post-commit publication."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from campusnet.feed.changes import (
    ChangeEvent,
    ChangeKind,
    channels_for,
    commit,
    pending_changes,
    publish_changes,
    record_change,
    rollback,
)


class TestChannelRouting:
    def test_routed_table_gets_narrow_channel(self) -> None:
        event = ChangeEvent("messages", ChangeKind.INSERT, {"id": 1, "conversation_id": 7})
        assert channels_for(event) == ["feed:messages", "feed:messages:conversation_id:7"]

    def test_list_routing_value_fans_out(self) -> None:
        event = ChangeEvent("conversations", ChangeKind.UPDATE, {"id": 3, "participant_ids": [1, 2]})
        assert channels_for(event) == [
            "feed:conversations",
            "feed:conversations:participant_ids:1",
            "feed:conversations:participant_ids:2",
        ]

    def test_unrouted_table_only_table_channel(self) -> None:
        event = ChangeEvent("profiles", ChangeKind.UPDATE, {"id": 1, "username": "ana"})
        assert channels_for(event) == ["feed:profiles"]

    def test_post_routed_by_its_own_id(self) -> None:
        event = ChangeEvent("posts", ChangeKind.DELETE, {"id": 4, "user_id": 2})
        assert channels_for(event) == ["feed:posts", "feed:posts:id:4"]

    def test_missing_routing_value(self) -> None:
        event = ChangeEvent("notifications", ChangeKind.UPDATE, {"id": 1})
        assert channels_for(event) == ["feed:notifications"]

    def test_json_roundtrip_keeps_kind(self) -> None:
        event = ChangeEvent("reactions", ChangeKind.DELETE, {"id": 4, "post_id": 9})
        decoded = ChangeEvent.from_json(event.to_json().encode())
        assert decoded.kind is ChangeKind.DELETE
        assert decoded.row == {"id": 4, "post_id": 9}


class TestPublication:
    @pytest.mark.asyncio
    async def test_nothing_published_before_commit(self, db, redis) -> None:
        record_change(db, "posts", ChangeKind.INSERT, {"id": 1})
        assert redis.published == []
        assert len(pending_changes(db)) == 1

    @pytest.mark.asyncio
    async def test_commit_publishes_and_clears(self, db, redis) -> None:
        record_change(db, "comments", ChangeKind.INSERT, {"id": 1, "post_id": 5})
        events = await commit(db, redis)

        assert len(events) == 1
        assert redis.channels_published() == ["feed:comments", "feed:comments:post_id:5"]
        assert pending_changes(db) == []
        payload = json.loads(redis.published[0][1])
        assert payload["table"] == "comments"
        assert payload["kind"] == "insert"

    @pytest.mark.asyncio
    async def test_rollback_discards(self, db, redis) -> None:
        record_change(db, "posts", ChangeKind.INSERT, {"id": 1})
        await rollback(db)
        await commit(db, redis)
        assert redis.published == []

    @pytest.mark.asyncio
    async def test_publish_failure_is_not_raised(self) -> None:
        broken = AsyncMock()
        broken.publish = AsyncMock(side_effect=ConnectionError("down"))
        events = [ChangeEvent("posts", ChangeKind.INSERT, {"id": 1})]
        assert await publish_changes(broken, events) == 0

    @pytest.mark.asyncio
    async def test_no_redis_is_a_noop(self) -> None:
        assert await publish_changes(None, [ChangeEvent("posts", ChangeKind.INSERT, {})]) == 0
