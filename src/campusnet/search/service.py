"""Profile and post search, trending hashtags and follow suggestions."""

from __future__ import annotations

import re
from collections import Counter
from datetime import timedelta
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import func, or_, select

from campusnet.db.base import utcnow
from campusnet.db.models import Follower, Post, Profile
from campusnet.posts.service import PostView, decorate_posts

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

HASHTAG_PATTERN = re.compile(r"(?<![\w#])#(\w{2,64})")
TRENDING_WINDOW = timedelta(days=7)
TRENDING_SCAN_LIMIT = 1000


def _contains(query: str) -> str:
    """``ILIKE`` pattern matching ``query`` anywhere, with its wildcards taken literally."""
    escaped = query.strip().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


async def search_profiles(
    db: AsyncSession,
    query: str,
    *,
    university: str | None = None,
    career: str | None = None,
    semester: str | None = None,
    limit: int = 20,
) -> list[Profile]:
    """Profiles whose username, full name or bio contain ``query``."""
    if not query.strip():
        return []
    pattern = _contains(query)
    stmt = select(Profile).where(
        or_(
            Profile.username.ilike(pattern, escape="\\"),
            Profile.full_name.ilike(pattern, escape="\\"),
            Profile.bio.ilike(pattern, escape="\\"),
        )
    )
    if university is not None:
        stmt = stmt.where(Profile.university == university)
    if career is not None:
        stmt = stmt.where(Profile.career == career)
    if semester is not None:
        stmt = stmt.where(Profile.semester == semester)

    result = await db.execute(stmt.order_by(Profile.username).limit(limit))
    return list(result.scalars().all())


async def search_posts(
    db: AsyncSession,
    query: str,
    viewer_id: int | None = None,
    *,
    post_type: str | None = None,
    limit: int = 20,
) -> list[PostView]:
    """Public posts whose content contains ``query``, newest first."""
    if not query.strip():
        return []
    stmt = select(Post).where(Post.visibility == "public", Post.content.ilike(_contains(query), escape="\\"))
    if post_type is not None:
        stmt = stmt.where(Post.post_type == post_type)
    stmt = stmt.order_by(Post.created_at.desc(), Post.id.desc()).limit(limit)

    result = await db.execute(stmt)
    return await decorate_posts(db, list(result.scalars().all()), viewer_id)


def extract_hashtags(text: str) -> set[str]:
    """Distinct ``#tag`` names in ``text``, lower-cased."""
    return {m.group(1).lower() for m in HASHTAG_PATTERN.finditer(text or "")}


async def trending_hashtags(db: AsyncSession, limit: int = 10) -> list[tuple[str, int]]:
    """Most used hashtags across recent public posts as ``(tag, posts)`` pairs.

    Each post counts a tag once. Ties break alphabetically.
    """
    since = utcnow() - TRENDING_WINDOW
    result = await db.execute(
        select(Post.content)
        .where(Post.visibility == "public", Post.created_at >= since, Post.content.contains("#"))
        .order_by(Post.created_at.desc())
        .limit(TRENDING_SCAN_LIMIT)
    )
    counts: Counter[str] = Counter()
    for content in result.scalars():
        counts.update(extract_hashtags(content))

    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return ranked[:limit]


async def suggest_users(db: AsyncSession, user_id: int, limit: int = 10) -> list[tuple[Profile, int]]:
    """Profiles from the viewer's university that the viewer does not follow yet.

    Returns ``(profile, followers)`` pairs, most followed first. A viewer
    without a university gets suggestions from the whole campus network.
    """
    viewer = await db.get(Profile, user_id)
    followed = select(Follower.following_id).where(Follower.follower_id == user_id)
    followers = (
        select(Follower.following_id, func.count().label("n")).group_by(Follower.following_id).subquery()
    )
    followers_n = func.coalesce(followers.c.n, 0)

    stmt = (
        select(Profile, followers_n)
        .outerjoin(followers, followers.c.following_id == Profile.id)
        .where(Profile.id != user_id, Profile.id.not_in(followed), Profile.is_banned.is_(False))
    )
    if viewer is not None and viewer.university:
        stmt = stmt.where(Profile.university == viewer.university)
    stmt = stmt.order_by(followers_n.desc(), Profile.id).limit(limit)

    result = await db.execute(stmt)
    suggestions = [(row[0], row[1]) for row in result]
    logger.debug("suggestions_built", user_id=user_id, count=len(suggestions))
    return suggestions
