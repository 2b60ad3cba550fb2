"""Notification API endpoints."""

from __future__ import annotations

from functools import partial

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.auth.dependencies import get_current_user
from campusnet.db.models import Profile
from campusnet.db.store import transact
from campusnet.dependencies import get_db, get_redis_dep
from campusnet.errors import NotFound
from campusnet.notifications.schemas import (
    NotificationListResponse,
    NotificationResponse,
    UnreadCountResponse,
)
from campusnet.notifications.service import (
    get_notifications,
    get_unread_count,
    mark_all_as_read,
    mark_as_read,
)

router = APIRouter(prefix="/api/v1", tags=["Notifications"])


@router.get("/notifications", response_model=NotificationListResponse)
async def list_notifications(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    type: str | None = Query(None),  # noqa: A002
    unread_only: bool = Query(False),
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List the caller's notifications (paginated)."""
    notifications, total = await get_notifications(db, user.id, page, per_page, type_=type, unread_only=unread_only)
    return NotificationListResponse(
        notifications=[
            NotificationResponse(
                id=n.id,
                type=n.type,
                message=n.message,
                sender_id=n.sender_id,
                post_id=n.post_id,
                comment_id=n.comment_id,
                conversation_id=n.conversation_id,
                read=n.read,
                timestamp=n.created_at,
            )
            for n in notifications
        ],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("/notifications/{notification_id}/read", status_code=200)
async def mark_notification_read(
    notification_id: int,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis_dep),
):
    """Mark a notification as read."""
    found = await transact(db, redis, partial(mark_as_read, db, user.id, notification_id))
    if not found:
        raise NotFound("Notification not found")
    return {"detail": "Notification marked as read"}


@router.post("/notifications/read-all", status_code=200)
async def mark_all_read(
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis_dep),
):
    count = await transact(db, redis, partial(mark_all_as_read, db, user.id))
    return {"detail": f"Marked {count} notifications as read"}


@router.get("/notifications/unread-count", response_model=UnreadCountResponse)
async def get_unread_notification_count(
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    count = await get_unread_count(db, user.id)
    return UnreadCountResponse(unread_count=count)
