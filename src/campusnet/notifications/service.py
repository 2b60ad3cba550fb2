"""Receiver-side notification reads and read-marks.

Notifications are created only by ``campusnet.notifications.dispatcher``.
Every query here is scoped to the receiver, so one user can neither see nor
mark another user's notifications.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.db.models import NOTIFICATION_TYPES, Notification
from campusnet.errors import UsageError
from campusnet.feed.changes import ChangeKind, record_change

logger = logging.getLogger(__name__)


async def get_notifications(
    db: AsyncSession,
    user_id: int,
    page: int = 1,
    per_page: int = 20,
    type_: str | None = None,
    unread_only: bool = False,
) -> tuple[list[Notification], int]:
    """Get user's notifications (paginated, most recent first)."""
    if type_ is not None and type_ not in NOTIFICATION_TYPES:
        raise UsageError(f"Invalid notification type: {type_}")

    filters = [Notification.receiver_id == user_id]
    if type_ is not None:
        filters.append(Notification.type == type_)
    if unread_only:
        filters.append(Notification.read.is_(False))

    total_result = await db.execute(select(func.count()).select_from(Notification).where(*filters))
    total = total_result.scalar_one()

    result = await db.execute(
        select(Notification)
        .where(*filters)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    notifications = list(result.scalars().all())
    return notifications, total


async def mark_as_read(db: AsyncSession, user_id: int, notification_id: int) -> bool:
    """Mark a single notification as read. Returns True if the receiver owns it."""
    result = await db.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.receiver_id == user_id)
        .values(read=True)
        .returning(Notification.id)
    )
    found = result.scalar_one_or_none() is not None
    if found:
        record_change(
            db,
            "notifications",
            ChangeKind.UPDATE,
            {"id": notification_id, "receiver_id": user_id, "read": True},
        )
    return found


async def mark_all_as_read(db: AsyncSession, user_id: int) -> int:
    """Mark all unread notifications as read. Returns count updated."""
    result = await db.execute(
        update(Notification)
        .where(Notification.receiver_id == user_id, Notification.read.is_(False))
        .values(read=True)
        .returning(Notification.id)
    )
    ids = list(result.scalars().all())
    for notification_id in ids:
        record_change(
            db,
            "notifications",
            ChangeKind.UPDATE,
            {"id": notification_id, "receiver_id": user_id, "read": True},
        )
    if ids:
        logger.info("Marked %d notifications read for user %d", len(ids), user_id)
    return len(ids)


async def get_unread_count(db: AsyncSession, user_id: int) -> int:
    """Get count of unread notifications."""
    result = await db.execute(
        select(func.count())
        .select_from(Notification)
        .where(Notification.receiver_id == user_id, Notification.read.is_(False))
    )
    return result.scalar_one()
