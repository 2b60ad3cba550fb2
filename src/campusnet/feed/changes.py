"""Row-level change events, published over Redis pub/sub after commit.

Services record every row they insert, update or delete with
``record_change``. The events wait on the session (``session.info``) and are
published by ``commit`` only once the transaction has committed, so the feed
never announces a write that did not happen. ``rollback`` discards them.

Channels:
    feed:{table}                        every change to the table
    feed:{table}:{column}:{value}       changes routed by the table's routing column
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.db.base import Base, utcnow

logger = logging.getLogger(__name__)

PENDING_KEY = "campusnet.pending_changes"

# Column whose value(s) select the narrow channel a change is routed to.
ROUTING_COLUMNS: dict[str, str] = {
    "posts": "id",
    "messages": "conversation_id",
    "comments": "post_id",
    "reactions": "post_id",
    "idea_participants": "post_id",
    "saved_posts": "user_id",
    "followers": "following_id",
    "notifications": "receiver_id",
    "conversations": "participant_ids",
    "conversation_participants": "user_id",
    "post_reports": "post_id",
    "user_bans": "user_id",
}


class ChangeKind(StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class ChangeEvent:
    """A committed row change."""

    table: str
    kind: ChangeKind
    row: dict[str, Any]
    committed_at: str = field(default_factory=lambda: utcnow().isoformat())

    def to_json(self) -> str:
        return json.dumps(
            {
                "table": self.table,
                "kind": str(self.kind),
                "row": self.row,
                "committed_at": self.committed_at,
            }
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> ChangeEvent:
        if isinstance(raw, bytes):
            raw = raw.decode()
        data = json.loads(raw)
        return cls(
            table=data["table"],
            kind=ChangeKind(data["kind"]),
            row=data.get("row") or {},
            committed_at=data.get("committed_at") or "",
        )


def table_channel(table: str) -> str:
    return f"feed:{table}"


def routed_channel(table: str, column: str, value: Any) -> str:
    return f"feed:{table}:{column}:{value}"


def channels_for(event: ChangeEvent) -> list[str]:
    """All channels an event is published on."""
    channels = [table_channel(event.table)]
    column = ROUTING_COLUMNS.get(event.table)
    if column is None:
        return channels

    value = event.row.get(column)
    if value is None:
        return channels
    values: Iterable[Any] = value if isinstance(value, (list, tuple, set)) else (value,)
    channels.extend(routed_channel(event.table, column, v) for v in values)
    return channels


def _json_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def row_to_dict(obj: Base, **extra: Any) -> dict[str, Any]:
    """JSON-safe snapshot of an ORM instance's columns, plus any extra keys."""
    mapper = inspect(obj).mapper
    row = {attr.key: _json_value(getattr(obj, attr.key)) for attr in mapper.column_attrs}
    row.update({k: _json_value(v) for k, v in extra.items()})
    return row


def record_change(db: AsyncSession, table: str, kind: ChangeKind, row: dict[str, Any]) -> None:
    """Queue a change for publication once the session commits."""
    db.info.setdefault(PENDING_KEY, []).append(ChangeEvent(table=table, kind=kind, row=row))


def pending_changes(db: AsyncSession) -> list[ChangeEvent]:
    return list(db.info.get(PENDING_KEY, []))


def discard_changes(db: AsyncSession) -> None:
    db.info.pop(PENDING_KEY, None)


async def publish_changes(redis: Any | None, events: list[ChangeEvent]) -> int:
    """Publish committed events. Failures are logged, never raised."""
    if redis is None or not events:
        return 0

    published = 0
    for event in events:
        payload = event.to_json()
        try:
            for channel in channels_for(event):
                await redis.publish(channel, payload)
            published += 1
        except Exception:
            logger.warning(
                "Failed to publish %s change on %s",
                event.kind,
                event.table,
                exc_info=True,
            )
    return published


async def commit(db: AsyncSession, redis: Any | None) -> list[ChangeEvent]:
    """Commit the session, then publish the changes it carried."""
    events = pending_changes(db)
    try:
        await db.commit()
    finally:
        discard_changes(db)
    await publish_changes(redis, events)
    return events


async def rollback(db: AsyncSession) -> None:
    """Roll back the session and drop its unpublished changes."""
    discard_changes(db)
    await db.rollback()
