"""Follow graph built on the generic edge operations."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select

from campusnet.db.models import Follower, Profile
from campusnet.engagement.edges import FOLLOW, EdgeChange, add_edge, count_edges, edge_exists, remove_edge
from campusnet.errors import UsageError
from campusnet.notifications.dispatcher import FollowCreated, dispatch
from campusnet.profiles.service import display_name, get_profile, require_profile

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


async def _check_pair(db: AsyncSession, follower_id: int, following_id: int) -> None:
    if follower_id == following_id:
        raise UsageError("You cannot follow yourself")
    await require_profile(db, following_id)


async def follow(db: AsyncSession, follower_id: int, following_id: int) -> EdgeChange:
    """Follow a user. Following twice is a no-op."""
    await _check_pair(db, follower_id, following_id)
    change = await add_edge(db, FOLLOW, follower_id, following_id)
    if change.changed and change.edge_id is not None:
        await _notify(db, change.edge_id, follower_id, following_id)
        logger.info("user_followed", follower_id=follower_id, following_id=following_id)
    return change


async def unfollow(db: AsyncSession, follower_id: int, following_id: int) -> EdgeChange:
    """Unfollow a user. Unfollowing twice is a no-op."""
    change = await remove_edge(db, FOLLOW, follower_id, following_id)
    if change.changed:
        logger.info("user_unfollowed", follower_id=follower_id, following_id=following_id)
    return change


async def toggle_follow(db: AsyncSession, follower_id: int, following_id: int) -> EdgeChange:
    """Follow if not following, unfollow otherwise."""
    await _check_pair(db, follower_id, following_id)
    change = await unfollow(db, follower_id, following_id)
    if change.changed:
        return change
    return await follow(db, follower_id, following_id)


async def _notify(db: AsyncSession, edge_id: int, follower_id: int, following_id: int) -> None:
    actor = await get_profile(db, follower_id)
    await dispatch(
        db,
        FollowCreated(edge_id=edge_id, actor_id=follower_id, actor_name=display_name(actor), followed_id=following_id),
    )


async def is_following(db: AsyncSession, follower_id: int, following_id: int) -> bool:
    return await edge_exists(db, FOLLOW, follower_id, following_id)


async def follower_count(db: AsyncSession, user_id: int) -> int:
    return await count_edges(db, FOLLOW, target_id=user_id)


async def following_count(db: AsyncSession, user_id: int) -> int:
    return await count_edges(db, FOLLOW, source_id=user_id)


async def list_followers(db: AsyncSession, user_id: int, *, limit: int = 20, offset: int = 0) -> list[Profile]:
    """Profiles following ``user_id``, most recent first."""
    result = await db.execute(
        select(Profile)
        .join(Follower, Follower.follower_id == Profile.id)
        .where(Follower.following_id == user_id)
        .order_by(Follower.created_at.desc(), Follower.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def list_following(db: AsyncSession, user_id: int, *, limit: int = 20, offset: int = 0) -> list[Profile]:
    """Profiles ``user_id`` follows, most recent first."""
    result = await db.execute(
        select(Profile)
        .join(Follower, Follower.following_id == Profile.id)
        .where(Follower.follower_id == user_id)
        .order_by(Follower.created_at.desc(), Follower.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())
