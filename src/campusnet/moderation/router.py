"""Moderation API endpoints (reporting is open to every user, the rest is admin-only)."""

from __future__ import annotations

from functools import partial

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.auth.dependencies import get_current_user
from campusnet.db.models import Profile
from campusnet.db.store import transact
from campusnet.dependencies import get_db, get_redis_dep
from campusnet.moderation import service
from campusnet.moderation.schemas import (
    BanRequest,
    BanResponse,
    ReportRequest,
    ReportResponse,
    ResolveReportRequest,
    StatsResponse,
)

router = APIRouter(prefix="/api/v1", tags=["Moderation"])


@router.post("/posts/{post_id}/report", response_model=ReportResponse, status_code=201)
async def report_post_endpoint(
    post_id: int,
    body: ReportRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis_dep),
):
    """Report a post. Repeated reports by the same user return the first one."""
    report = await transact(db, redis, partial(service.report_post, db, user.id, post_id, body.reason))
    return ReportResponse.model_validate(report)


@router.get("/admin/reports", response_model=list[ReportResponse])
async def list_reports_endpoint(
    limit: int = Query(50, ge=1, le=200),
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    reports = await service.list_pending_reports(db, user.id, limit=limit)
    return [ReportResponse.model_validate(r) for r in reports]


@router.post("/admin/reports/{report_id}/resolve", response_model=ReportResponse)
async def resolve_report_endpoint(
    report_id: int,
    body: ResolveReportRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis_dep),
):
    report = await transact(db, redis, partial(service.resolve_report, db, user.id, report_id, body.outcome))
    return ReportResponse.model_validate(report)


@router.delete("/admin/posts/{post_id}", status_code=204)
async def remove_post_endpoint(
    post_id: int,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis_dep),
):
    await transact(db, redis, partial(service.remove_post, db, user.id, post_id))


@router.post("/admin/users/{user_id}/ban", response_model=BanResponse, status_code=201)
async def ban_user_endpoint(
    user_id: int,
    body: BanRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis_dep),
):
    """Ban a user. ``days: null`` bans indefinitely."""
    ban = await transact(
        db,
        redis,
        partial(service.ban_user, db, user.id, user_id, body.reason, days=body.days),
        idempotent=False,
    )
    return BanResponse.model_validate(ban)


@router.get("/admin/stats", response_model=StatsResponse)
async def stats_endpoint(
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    stats = await service.platform_stats(db, user.id)
    return StatsResponse(
        total_users=stats.total_users,
        total_posts=stats.total_posts,
        pending_reports=stats.pending_reports,
        banned_users=stats.banned_users,
    )
