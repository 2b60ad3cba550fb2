"""Idea participation.

Joining is an explicit add rather than a toggle: a double submission is a
single participant. Leaving is the explicit inverse.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select

from campusnet.db.models import IdeaParticipant, Post, Profile
from campusnet.engagement.edges import IDEA_PARTICIPANT, EdgeChange, add_edge, count_edges, edge_exists, remove_edge
from campusnet.errors import NotFound, UsageError
from campusnet.notifications.dispatcher import IdeaJoined, dispatch
from campusnet.profiles.service import display_name, get_profile

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

IDEA_POST_TYPE = "idea"


async def _idea_post(db: AsyncSession, post_id: int) -> Post:
    post = await db.get(Post, post_id)
    if post is None:
        raise NotFound(f"Post {post_id} not found")
    if post.post_type != IDEA_POST_TYPE:
        raise UsageError("Only idea posts accept participants")
    return post


async def join_idea(db: AsyncSession, user_id: int, post_id: int) -> EdgeChange:
    post = await _idea_post(db, post_id)
    change = await add_edge(db, IDEA_PARTICIPANT, user_id, post_id)
    if change.changed and change.edge_id is not None:
        actor = await get_profile(db, user_id)
        await dispatch(
            db,
            IdeaJoined(
                edge_id=change.edge_id,
                actor_id=user_id,
                actor_name=display_name(actor),
                owner_id=post.user_id,
                post_id=post_id,
            ),
        )
        logger.info("idea_joined", user_id=user_id, post_id=post_id)
    return change


async def leave_idea(db: AsyncSession, user_id: int, post_id: int) -> EdgeChange:
    await _idea_post(db, post_id)
    return await remove_edge(db, IDEA_PARTICIPANT, user_id, post_id)


async def is_participant(db: AsyncSession, user_id: int, post_id: int) -> bool:
    return await edge_exists(db, IDEA_PARTICIPANT, user_id, post_id)


async def participant_count(db: AsyncSession, post_id: int) -> int:
    return await count_edges(db, IDEA_PARTICIPANT, target_id=post_id)


async def list_participants(db: AsyncSession, post_id: int) -> list[Profile]:
    """Participants in join order."""
    result = await db.execute(
        select(Profile)
        .join(IdeaParticipant, IdeaParticipant.user_id == Profile.id)
        .where(IdeaParticipant.post_id == post_id)
        .order_by(IdeaParticipant.joined_at.asc(), IdeaParticipant.id.asc())
    )
    return list(result.scalars().all())
