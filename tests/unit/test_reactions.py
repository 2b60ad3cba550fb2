"""Tests for post and comment reactions."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from campusnet.db.models import Notification
from campusnet.engagement.comments import post_comment
from campusnet.engagement.reactions import (
    ReactionResult,
    ReactionType,
    TargetKind,
    count_reactions,
    get_user_reaction,
    reaction_breakdown,
    set_reaction,
)
from campusnet.errors import NotFound, UsageError
from campusnet.feed.changes import commit


class TestReactionResult:
    def test_count_delta(self) -> None:
        assert ReactionResult(state=ReactionType.LIKE, previous=None).count_delta == 1
        assert ReactionResult(state=ReactionType.LOVE, previous=ReactionType.LIKE).count_delta == 0
        assert ReactionResult(state=None, previous=ReactionType.LOVE).count_delta == -1


class TestSetReaction:
    @pytest.mark.asyncio
    async def test_like_then_love_then_love(self, db, make_profile, make_post) -> None:
        """like -> love replaces in place; love again removes the reaction."""
        author = await make_profile("author")
        ana = await make_profile("ana")
        post = await make_post(author)

        liked = await set_reaction(db, ana.id, post.id, TargetKind.POST, "like")
        assert liked.state is ReactionType.LIKE and liked.previous is None
        assert await count_reactions(db, post.id) == 1

        loved = await set_reaction(db, ana.id, post.id, TargetKind.POST, "love")
        assert loved.state is ReactionType.LOVE and loved.previous is ReactionType.LIKE
        assert await count_reactions(db, post.id) == 1
        assert await reaction_breakdown(db, post.id) == {"love": 1}

        cleared = await set_reaction(db, ana.id, post.id, TargetKind.POST, "love")
        assert cleared.state is None and cleared.previous is ReactionType.LOVE
        assert await count_reactions(db, post.id) == 0
        assert await get_user_reaction(db, ana.id, post.id) is None

    @pytest.mark.asyncio
    async def test_count_equals_distinct_users(self, db, make_profile, make_post) -> None:
        author = await make_profile("author")
        post = await make_post(author)
        users = [await make_profile(f"user{i}") for i in range(3)]
        for user, kind in zip(users, ("like", "fire", "like")):
            await set_reaction(db, user.id, post.id, TargetKind.POST, kind)

        assert await count_reactions(db, post.id) == 3
        assert await reaction_breakdown(db, post.id) == {"like": 2, "fire": 1}

    @pytest.mark.asyncio
    async def test_owner_notified_not_self(self, db, redis, make_profile, make_post) -> None:
        author = await make_profile("author")
        ana = await make_profile("ana")
        post = await make_post(author)

        await set_reaction(db, author.id, post.id, TargetKind.POST, "like")
        await set_reaction(db, ana.id, post.id, TargetKind.POST, "idea")
        await commit(db, redis)

        result = await db.execute(select(Notification).where(Notification.receiver_id == author.id))
        notes = list(result.scalars().all())
        assert len(notes) == 1
        assert notes[0].type == "reaction"
        assert notes[0].sender_id == ana.id
        assert f"feed:reactions:post_id:{post.id}" in redis.channels_published()

    @pytest.mark.asyncio
    async def test_unknown_type(self, db, make_profile, make_post) -> None:
        author = await make_profile("author")
        post = await make_post(author)
        with pytest.raises(UsageError):
            await set_reaction(db, author.id, post.id, TargetKind.POST, "angry")

    @pytest.mark.asyncio
    async def test_missing_target(self, db, make_profile) -> None:
        ana = await make_profile("ana")
        with pytest.raises(NotFound):
            await set_reaction(db, ana.id, 999, TargetKind.POST, "like")
        with pytest.raises(NotFound):
            await set_reaction(db, ana.id, 999, TargetKind.COMMENT, "like")


class TestCommentReactions:
    @pytest.mark.asyncio
    async def test_routed_by_parent_post(self, db, redis, make_profile, make_post) -> None:
        author = await make_profile("author")
        ana = await make_profile("ana")
        post = await make_post(author)
        comment = await post_comment(db, author.id, post.id, "first!")
        await commit(db, redis)

        result = await set_reaction(db, ana.id, comment.id, TargetKind.COMMENT, "fire")
        await commit(db, redis)

        assert result.state is ReactionType.FIRE
        assert await count_reactions(db, comment.id, TargetKind.COMMENT) == 1
        # Post-level counts are unaffected
        assert await count_reactions(db, post.id, TargetKind.POST) == 0
        assert f"feed:reactions:post_id:{post.id}" in redis.channels_published()

    @pytest.mark.asyncio
    async def test_post_and_comment_reactions_are_independent(self, db, make_profile, make_post) -> None:
        author = await make_profile("author")
        ana = await make_profile("ana")
        post = await make_post(author)
        comment = await post_comment(db, author.id, post.id, "hi")

        await set_reaction(db, ana.id, post.id, TargetKind.POST, "like")
        await set_reaction(db, ana.id, comment.id, TargetKind.COMMENT, "like")

        assert await get_user_reaction(db, ana.id, post.id, TargetKind.POST) is ReactionType.LIKE
        assert await get_user_reaction(db, ana.id, comment.id, TargetKind.COMMENT) is ReactionType.LIKE
