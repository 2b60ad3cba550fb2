"""Profile lookups shared by the engines."""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select

from campusnet.db.base import utcnow
from campusnet.db.models import Profile, UserBan
from campusnet.errors import Forbidden, NotFound

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

MENTION_PATTERN = re.compile(r"(?<![\w@])@([A-Za-z0-9_.]{2,64})")


async def get_profile(db: AsyncSession, user_id: int) -> Profile | None:
    """Get a profile by id."""
    return await db.get(Profile, user_id)


async def require_profile(db: AsyncSession, user_id: int) -> Profile:
    """Get a profile by id or raise ``NotFound``."""
    profile = await get_profile(db, user_id)
    if profile is None:
        raise NotFound(f"User {user_id} not found")
    return profile


async def get_profiles_by_usernames(db: AsyncSession, usernames: Iterable[str]) -> list[Profile]:
    """Case-insensitive username lookup."""
    lowered = {u.lower() for u in usernames}
    if not lowered:
        return []
    result = await db.execute(select(Profile).where(func.lower(Profile.username).in_(lowered)))
    return list(result.scalars().all())


def extract_mentions(text: str) -> set[str]:
    """Return the distinct ``@username`` handles in ``text`` (lower-cased)."""
    return {m.group(1).rstrip(".").lower() for m in MENTION_PATTERN.finditer(text or "")}


def display_name(profile: Profile | None) -> str:
    if profile is None:
        return "Someone"
    return profile.username


async def is_banned(db: AsyncSession, user_id: int) -> bool:
    """A user is banned by the profile flag or by any unexpired ban row."""
    profile = await get_profile(db, user_id)
    if profile is not None and profile.is_banned:
        return True
    result = await db.execute(
        select(UserBan.id)
        .where(
            UserBan.user_id == user_id,
            or_(UserBan.expires_at.is_(None), UserBan.expires_at > utcnow()),
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def require_admin(db: AsyncSession, user_id: int) -> Profile:
    """Get the acting profile, raising ``Forbidden`` unless it has the admin role."""
    profile = await require_profile(db, user_id)
    if profile.role != "admin":
        raise Forbidden("Admin role required")
    return profile
