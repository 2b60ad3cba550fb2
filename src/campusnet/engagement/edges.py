"""Generic idempotent edge operations.

Follows, saves and idea participation are all "at most one row per
(source, target)" edges. They share one implementation whose only
concurrency control is the store's UNIQUE constraint: inserts use
``ON CONFLICT DO NOTHING`` and deletes use ``DELETE ... RETURNING``, so two
devices racing on the same pair converge without client-side locks.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import delete, func, select

from campusnet.db.base import utcnow
from campusnet.db.models import Follower, IdeaParticipant, SavedPost
from campusnet.db.store import insert_ignore
from campusnet.feed.changes import ChangeKind, record_change, row_to_dict

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from campusnet.db.base import Base

logger = structlog.get_logger()


@dataclass(frozen=True)
class EdgeKind:
    """Describes one edge table: its model and the two endpoint columns."""

    name: str
    model: type[Base]
    table: str
    source_column: str
    target_column: str
    timestamp_column: str = "created_at"

    def columns(self) -> tuple[Any, Any]:
        return getattr(self.model, self.source_column), getattr(self.model, self.target_column)


FOLLOW = EdgeKind("follow", Follower, "followers", "follower_id", "following_id")
SAVE = EdgeKind("save", SavedPost, "saved_posts", "user_id", "post_id")
IDEA_PARTICIPANT = EdgeKind(
    "idea_participant", IdeaParticipant, "idea_participants", "user_id", "post_id", timestamp_column="joined_at"
)


@dataclass(frozen=True)
class EdgeChange:
    """Outcome of an edge operation.

    ``active`` is whether the edge exists afterwards; ``changed`` is whether
    this call wrote anything (False for idempotent no-ops).
    """

    active: bool
    changed: bool
    edge_id: int | None = None


async def edge_exists(db: AsyncSession, kind: EdgeKind, source_id: int, target_id: int) -> bool:
    source_col, target_col = kind.columns()
    result = await db.execute(
        select(kind.model.id).where(source_col == source_id, target_col == target_id)  # type: ignore[attr-defined]
    )
    return result.scalar_one_or_none() is not None


async def count_edges(
    db: AsyncSession, kind: EdgeKind, *, source_id: int | None = None, target_id: int | None = None
) -> int:
    """Live edge cardinality, filtered by either endpoint."""
    source_col, target_col = kind.columns()
    stmt = select(func.count()).select_from(kind.model)
    if source_id is not None:
        stmt = stmt.where(source_col == source_id)
    if target_id is not None:
        stmt = stmt.where(target_col == target_id)
    result = await db.execute(stmt)
    return result.scalar_one()


async def add_edge(db: AsyncSession, kind: EdgeKind, source_id: int, target_id: int) -> EdgeChange:
    """Insert the edge if absent. A uniqueness conflict is a successful no-op."""
    edge_id = await insert_ignore(
        db,
        kind.model,
        {kind.source_column: source_id, kind.target_column: target_id, kind.timestamp_column: utcnow()},
        [kind.source_column, kind.target_column],
    )
    if edge_id is None:
        logger.debug("edge_exists", kind=kind.name, source=source_id, target=target_id)
        return EdgeChange(active=True, changed=False)

    edge = await db.get(kind.model, edge_id)
    if edge is not None:
        record_change(db, kind.table, ChangeKind.INSERT, row_to_dict(edge))
    return EdgeChange(active=True, changed=True, edge_id=edge_id)


async def remove_edge(db: AsyncSession, kind: EdgeKind, source_id: int, target_id: int) -> EdgeChange:
    """Delete the edge if present. Deleting a missing edge is a successful no-op."""
    source_col, target_col = kind.columns()
    result = await db.execute(
        delete(kind.model)
        .where(source_col == source_id, target_col == target_id)
        .returning(kind.model.id)  # type: ignore[attr-defined]
        .execution_options(synchronize_session=False)
    )
    removed_id = result.scalar_one_or_none()
    if removed_id is None:
        return EdgeChange(active=False, changed=False)

    record_change(
        db,
        kind.table,
        ChangeKind.DELETE,
        {"id": removed_id, kind.source_column: source_id, kind.target_column: target_id},
    )
    return EdgeChange(active=False, changed=True, edge_id=removed_id)


async def toggle_edge(db: AsyncSession, kind: EdgeKind, source_id: int, target_id: int) -> EdgeChange:
    """Delete the edge if present, insert it otherwise.

    If another session inserts the same edge between our delete attempt and
    our insert, the insert conflicts and the edge simply stays active.
    """
    removed = await remove_edge(db, kind, source_id, target_id)
    if removed.changed:
        return removed
    return await add_edge(db, kind, source_id, target_id)
