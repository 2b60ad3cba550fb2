"""Post reports, bans and platform stats for administrators."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import func, select

from campusnet.db.base import utcnow
from campusnet.db.models import Post, PostReport, Profile, UserBan
from campusnet.db.store import insert_ignore
from campusnet.errors import NotFound, UsageError
from campusnet.feed.changes import ChangeKind, record_change, row_to_dict
from campusnet.posts.service import delete_post, get_post
from campusnet.profiles.service import require_admin, require_profile

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

DEFAULT_BAN_DAYS = 30
REVIEW_OUTCOMES = ("resolved", "dismissed")


@dataclass(frozen=True)
class PlatformStats:
    total_users: int
    total_posts: int
    pending_reports: int
    banned_users: int


async def report_post(db: AsyncSession, reporter_id: int, post_id: int, reason: str) -> PostReport:
    """File a report. Reporting the same post twice returns the first report."""
    await get_post(db, post_id)
    text = (reason or "").strip()
    if not text:
        raise UsageError("A report needs a reason")

    report_id = await insert_ignore(
        db,
        PostReport,
        {
            "post_id": post_id,
            "reporter_id": reporter_id,
            "reason": text[:500],
            "status": "pending",
            "created_at": utcnow(),
        },
        ["post_id", "reporter_id"],
    )
    if report_id is None:
        result = await db.execute(
            select(PostReport).where(PostReport.post_id == post_id, PostReport.reporter_id == reporter_id)
        )
        return result.scalar_one()

    logger.info("post_reported", post_id=post_id, reporter_id=reporter_id)
    report = await db.get(PostReport, report_id)
    assert report is not None
    record_change(db, "post_reports", ChangeKind.INSERT, row_to_dict(report))
    return report


async def list_pending_reports(db: AsyncSession, admin_id: int, *, limit: int = 50) -> list[PostReport]:
    await require_admin(db, admin_id)
    result = await db.execute(
        select(PostReport)
        .where(PostReport.status == "pending")
        .order_by(PostReport.created_at.desc(), PostReport.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def resolve_report(db: AsyncSession, admin_id: int, report_id: int, outcome: str) -> PostReport:
    await require_admin(db, admin_id)
    if outcome not in REVIEW_OUTCOMES:
        raise UsageError(f"Outcome must be one of {', '.join(REVIEW_OUTCOMES)}")
    report = await db.get(PostReport, report_id)
    if report is None:
        raise NotFound(f"Report {report_id} not found")

    report.status = outcome
    report.reviewed_by = admin_id
    report.reviewed_at = utcnow()
    await db.flush()
    record_change(db, "post_reports", ChangeKind.UPDATE, row_to_dict(report))
    logger.info("report_reviewed", report_id=report_id, outcome=outcome, admin_id=admin_id)
    return report


async def remove_post(db: AsyncSession, admin_id: int, post_id: int) -> None:
    await require_admin(db, admin_id)
    await delete_post(db, admin_id, post_id)


async def ban_user(
    db: AsyncSession, admin_id: int, user_id: int, reason: str, *, days: int | None = DEFAULT_BAN_DAYS
) -> UserBan:
    """Ban a user for ``days`` (``None`` bans indefinitely)."""
    await require_admin(db, admin_id)
    await require_profile(db, user_id)
    if user_id == admin_id:
        raise UsageError("Admins cannot ban themselves")

    now = utcnow()
    ban = UserBan(
        user_id=user_id,
        banned_by=admin_id,
        reason=(reason or "").strip()[:500] or "Unspecified",
        created_at=now,
        expires_at=now + timedelta(days=days) if days is not None else None,
    )
    db.add(ban)
    await db.flush()
    record_change(db, "user_bans", ChangeKind.INSERT, row_to_dict(ban))
    logger.info("user_banned", user_id=user_id, admin_id=admin_id, days=days)
    return ban


async def platform_stats(db: AsyncSession, admin_id: int) -> PlatformStats:
    await require_admin(db, admin_id)

    async def _count(stmt) -> int:
        result = await db.execute(stmt)
        return result.scalar_one()

    now = utcnow()
    return PlatformStats(
        total_users=await _count(select(func.count()).select_from(Profile)),
        total_posts=await _count(select(func.count()).select_from(Post)),
        pending_reports=await _count(
            select(func.count()).select_from(PostReport).where(PostReport.status == "pending")
        ),
        banned_users=await _count(
            select(func.count(func.distinct(UserBan.user_id))).where(
                (UserBan.expires_at.is_(None)) | (UserBan.expires_at > now)
            )
        ),
    )
