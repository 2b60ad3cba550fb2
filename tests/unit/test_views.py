"""Tests for feed-driven live views."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from campusnet.database import get_session_factory
from campusnet.engagement.reactions import TargetKind, set_reaction
from campusnet.errors import NotFound
from campusnet.feed.changes import ChangeEvent, ChangeKind, commit, publish_changes
from campusnet.messaging.service import get_or_create_conversation, send_message
from campusnet.notifications.dispatcher import FollowCreated, dispatch
from campusnet.posts.service import delete_post
from campusnet.sync.views import (
    ConversationListView,
    MessageThreadView,
    NotificationsView,
    PostEngagement,
    PostEngagementView,
)


async def _until(predicate, timeout: float = 3.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        assert loop.time() < deadline, "view did not update in time"
        await asyncio.sleep(0.01)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_subscriptions_released_on_exit(self, db, redis, make_profile) -> None:
        ana = await make_profile("ana")
        view = ConversationListView(redis, ana.id, session_factory=get_session_factory())
        async with view:
            assert view.is_active
            assert len(redis.pubsubs) == 1
            assert view.state is not None
        assert not view.is_active
        assert redis.pubsubs == set()

    @pytest.mark.asyncio
    async def test_failed_initial_load_releases(self, db, redis, make_profile) -> None:
        ana = await make_profile("ana")
        view = MessageThreadView(redis, ana.id, 999, session_factory=get_session_factory())
        with pytest.raises(NotFound):
            async with view:
                pass
        assert redis.pubsubs == set()

    @pytest.mark.asyncio
    async def test_reload_failure_keeps_last_state(self, db, redis, make_profile) -> None:
        ana = await make_profile("ana")
        async with NotificationsView(redis, ana.id, session_factory=get_session_factory()) as view:
            before = view.state
            view.refresh = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("gone")))
            await view.handle_event(ChangeEvent("notifications", ChangeKind.INSERT, {"receiver_id": ana.id}))
            assert view.state is before

    @pytest.mark.asyncio
    async def test_refused_reload_marks_stale(self, db, redis, make_profile) -> None:
        ana = await make_profile("ana")
        async with NotificationsView(redis, ana.id, session_factory=get_session_factory()) as view:
            before = view.state
            view.refresh = AsyncMock(side_effect=NotFound("Post 1 not found"))
            await view.handle_event(ChangeEvent("notifications", ChangeKind.INSERT, {"receiver_id": ana.id}))
            assert view.stale
            assert view.stale_reason == "Post 1 not found"
            assert view.state is before

    @pytest.mark.asyncio
    async def test_deleted_post_keeps_view_alive(self, db, redis, make_profile, make_post) -> None:
        ana = await make_profile("ana")
        ben = await make_profile("ben")
        post = await make_post(ana)
        post_id = post.id

        async with PostEngagementView(redis, ben.id, post_id, session_factory=get_session_factory()) as view:
            before = view.state
            await delete_post(db, ana.id, post_id)
            await commit(db, redis)
            await _until(lambda: view.stale)

            assert view.state is before
            assert view.is_active
            # later events on the same scope are still consumed
            await publish_changes(redis, [ChangeEvent("reactions", ChangeKind.INSERT, {"id": 9, "post_id": post_id})])
            await asyncio.sleep(0.05)
            assert view.is_active
        assert redis.pubsubs == set()

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_leak_out_of_exit(self, db, redis, make_profile) -> None:
        ana = await make_profile("ana")
        view = NotificationsView(redis, ana.id, session_factory=get_session_factory())
        async with view:
            view.handle_event = AsyncMock(side_effect=RuntimeError("boom"))
            event = ChangeEvent("notifications", ChangeKind.INSERT, {"id": 1, "receiver_id": ana.id})
            await publish_changes(redis, [event])
            await _until(lambda: view.handle_event.await_count == 1)
        assert redis.pubsubs == set()


class TestWaitForUpdate:
    @pytest.mark.asyncio
    async def test_update_before_wait_is_not_missed(self, db, redis, make_profile) -> None:
        ana = await make_profile("ana")
        ben = await make_profile("ben")
        async with NotificationsView(redis, ben.id, session_factory=get_session_factory()) as view:
            version = view.version
            await dispatch(db, FollowCreated(1, ana.id, "ana", ben.id))
            await commit(db, redis)
            await _until(lambda: view.version > version)

            assert await view.wait_for_update(timeout=0.5, since=version)
            assert not await view.wait_for_update(timeout=0.05)

    @pytest.mark.asyncio
    async def test_wait_returns_on_new_state(self, db, redis, make_profile) -> None:
        ana = await make_profile("ana")
        ben = await make_profile("ben")
        async with NotificationsView(redis, ben.id, session_factory=get_session_factory()) as view:
            waiter = asyncio.create_task(view.wait_for_update(timeout=3))
            await asyncio.sleep(0)
            await dispatch(db, FollowCreated(1, ana.id, "ana", ben.id))
            await commit(db, redis)
            assert await waiter
            assert view.state.unread_count == 1


class TestUpdates:
    @pytest.mark.asyncio
    async def test_thread_sees_new_message(self, db, redis, make_profile) -> None:
        ana = await make_profile("ana")
        ben = await make_profile("ben")
        conversation = await get_or_create_conversation(db, ana.id, ben.id)
        await commit(db, redis)

        async with MessageThreadView(redis, ben.id, conversation.id, session_factory=get_session_factory()) as view:
            assert view.state == []
            version = view.version
            await send_message(db, conversation.id, ana.id, "hi")
            await commit(db, redis)
            await _until(lambda: view.version > version)
            assert [m.content for m in view.state] == ["hi"]

    @pytest.mark.asyncio
    async def test_notifications_only_for_receiver(self, db, redis, make_profile) -> None:
        ana = await make_profile("ana")
        ben = await make_profile("ben")
        cai = await make_profile("cai")

        async with (
            NotificationsView(redis, ben.id, session_factory=get_session_factory()) as ben_view,
            NotificationsView(redis, cai.id, session_factory=get_session_factory()) as cai_view,
        ):
            ben_version, cai_version = ben_view.version, cai_view.version
            await dispatch(db, FollowCreated(1, ana.id, "ana", ben.id))
            await commit(db, redis)
            await _until(lambda: ben_view.version > ben_version)

            assert ben_view.state.unread_count == 1
            assert cai_view.version == cai_version

    @pytest.mark.asyncio
    async def test_conversation_list_tracks_unread(self, db, redis, make_profile) -> None:
        ana = await make_profile("ana")
        ben = await make_profile("ben")
        conversation = await get_or_create_conversation(db, ana.id, ben.id)
        await commit(db, redis)

        async with ConversationListView(redis, ben.id, session_factory=get_session_factory()) as view:
            version = view.version
            await send_message(db, conversation.id, ana.id, "ping")
            await commit(db, redis)
            await _until(lambda: view.state.total_unread == 1 and view.version > version)
            assert view.state.conversations[0].conversation.last_message_preview == "ping"


class TestOptimisticReaction:
    def _view(self, redis, state: PostEngagement) -> PostEngagementView:
        view = PostEngagementView(redis, user_id=1, post_id=1)
        view.state = state
        return view

    def test_apply_new_reaction(self, redis) -> None:
        view = self._view(redis, PostEngagement(0, 0, 0, None))
        patched = view.apply_optimistic_reaction("like")
        assert patched.reactions_count == 1
        assert patched.user_reaction == "like"
        assert patched.breakdown == {"like": 1}
        assert patched.optimistic

    def test_apply_replace_and_toggle(self, redis) -> None:
        view = self._view(redis, PostEngagement(3, 0, 0, "like", {"like": 2, "fire": 1}))
        replaced = view.apply_optimistic_reaction("love")
        assert replaced.reactions_count == 3
        assert replaced.breakdown == {"like": 1, "fire": 1, "love": 1}

        cleared = view.apply_optimistic_reaction("love")
        assert cleared.reactions_count == 2
        assert cleared.user_reaction is None
        assert "love" not in cleared.breakdown

    @pytest.mark.asyncio
    async def test_react_reconciles_with_store(self, db, redis, make_profile, make_post) -> None:
        ana = await make_profile("ana")
        ben = await make_profile("ben")
        post = await make_post(ana)
        await set_reaction(db, ben.id, post.id, TargetKind.POST, "like")
        await commit(db, redis)

        async with PostEngagementView(redis, ana.id, post.id, session_factory=get_session_factory()) as view:
            assert view.state.reactions_count == 1
            result = await view.react("fire")
            assert result.state is not None
            assert not view.state.optimistic
            assert view.state.reactions_count == 2
            assert view.state.user_reaction == "fire"
