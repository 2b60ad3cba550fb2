"""Saved posts (bookmarks)."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from campusnet.db.models import Post, SavedPost
from campusnet.engagement.edges import SAVE, EdgeChange, edge_exists, toggle_edge
from campusnet.errors import NotFound

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


async def toggle_save(db: AsyncSession, user_id: int, post_id: int) -> EdgeChange:
    """Save the post if unsaved, unsave it otherwise."""
    if await db.get(Post, post_id) is None:
        raise NotFound(f"Post {post_id} not found")
    return await toggle_edge(db, SAVE, user_id, post_id)


async def is_saved(db: AsyncSession, user_id: int, post_id: int) -> bool:
    return await edge_exists(db, SAVE, user_id, post_id)


async def list_saved_posts(db: AsyncSession, user_id: int, *, limit: int = 20, offset: int = 0) -> list[Post]:
    result = await db.execute(
        select(Post)
        .join(SavedPost, SavedPost.post_id == Post.id)
        .where(SavedPost.user_id == user_id)
        .order_by(SavedPost.created_at.desc(), SavedPost.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())
