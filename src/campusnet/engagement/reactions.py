"""Reactions on posts and comments.

One row per (user, target) enforced by UNIQUE(user_id, post_id) and
UNIQUE(user_id, comment_id). Changing the reaction type is always an
in-place UPDATE of that row, so readers never observe a moment where the
user has no reaction on the target. Re-sending the current type removes it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import delete, func, select, update

from campusnet.db.base import utcnow
from campusnet.db.models import Comment, Post, Reaction
from campusnet.db.store import insert_ignore
from campusnet.errors import NotFound, UsageError
from campusnet.feed.changes import ChangeKind, record_change, row_to_dict
from campusnet.notifications.dispatcher import ReactionAdded, dispatch
from campusnet.profiles.service import display_name, get_profile

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


class ReactionType(StrEnum):
    LIKE = "like"
    LOVE = "love"
    IDEA = "idea"
    FIRE = "fire"


class TargetKind(StrEnum):
    POST = "post"
    COMMENT = "comment"


@dataclass(frozen=True)
class ReactionResult:
    """State of the user's reaction on the target after the call."""

    state: ReactionType | None
    previous: ReactionType | None

    @property
    def count_delta(self) -> int:
        return int(self.state is not None) - int(self.previous is not None)


def _target_column(kind: TargetKind) -> Any:
    return Reaction.post_id if kind is TargetKind.POST else Reaction.comment_id


async def _target_owner(db: AsyncSession, target_id: int, kind: TargetKind) -> tuple[int, int]:
    """Return (owner_id, post_id) for a live target, or raise ``NotFound``."""
    if kind is TargetKind.POST:
        post = await db.get(Post, target_id)
        if post is None:
            raise NotFound(f"Post {target_id} not found")
        return post.user_id, post.id

    comment = await db.get(Comment, target_id)
    if comment is None or comment.deleted_at is not None:
        raise NotFound(f"Comment {target_id} not found")
    return comment.user_id, comment.post_id


async def get_user_reaction(
    db: AsyncSession, user_id: int, target_id: int, target_kind: TargetKind | str = TargetKind.POST
) -> ReactionType | None:
    kind = TargetKind(target_kind)
    result = await db.execute(
        select(Reaction.reaction_type).where(Reaction.user_id == user_id, _target_column(kind) == target_id)
    )
    value = result.scalar_one_or_none()
    return ReactionType(value) if value is not None else None


async def count_reactions(db: AsyncSession, target_id: int, target_kind: TargetKind | str = TargetKind.POST) -> int:
    """Exact committed reaction count for the target."""
    kind = TargetKind(target_kind)
    result = await db.execute(
        select(func.count()).select_from(Reaction).where(_target_column(kind) == target_id)
    )
    return result.scalar_one()


async def reaction_breakdown(
    db: AsyncSession, target_id: int, target_kind: TargetKind | str = TargetKind.POST
) -> dict[str, int]:
    """Reaction count per type (types with no reactions are omitted)."""
    kind = TargetKind(target_kind)
    result = await db.execute(
        select(Reaction.reaction_type, func.count())
        .where(_target_column(kind) == target_id)
        .group_by(Reaction.reaction_type)
    )
    return {row[0]: row[1] for row in result}


async def _replace_type(
    db: AsyncSession, user_id: int, target_col: Any, target_id: int, reaction_type: ReactionType
) -> tuple[int, str] | None:
    """Atomically switch the existing reaction to ``reaction_type``.

    Returns (reaction_id, previous_type) or None when there is no row.
    """
    previous = await db.execute(
        select(Reaction.id, Reaction.reaction_type).where(Reaction.user_id == user_id, target_col == target_id)
    )
    row = previous.first()
    if row is None:
        return None
    result = await db.execute(
        update(Reaction)
        .where(Reaction.id == row.id)
        .values(reaction_type=str(reaction_type), updated_at=utcnow())
        .returning(Reaction.id)
        .execution_options(synchronize_session=False)
    )
    if result.scalar_one_or_none() is None:
        return None
    return row.id, row.reaction_type


async def set_reaction(
    db: AsyncSession,
    user_id: int,
    target_id: int,
    target_kind: TargetKind | str,
    reaction_type: ReactionType | str,
) -> ReactionResult:
    """Set, replace or toggle off the user's reaction on a post or comment."""
    kind = TargetKind(target_kind)
    try:
        new_type = ReactionType(reaction_type)
    except ValueError as e:
        raise UsageError(f"Unknown reaction type: {reaction_type}") from e

    owner_id, post_id = await _target_owner(db, target_id, kind)
    target_col = _target_column(kind)

    # Same type again: toggle off
    removed = await db.execute(
        delete(Reaction)
        .where(Reaction.user_id == user_id, target_col == target_id, Reaction.reaction_type == str(new_type))
        .returning(Reaction.id)
        .execution_options(synchronize_session=False)
    )
    removed_id = removed.scalar_one_or_none()
    if removed_id is not None:
        record_change(
            db,
            "reactions",
            ChangeKind.DELETE,
            {
                "id": removed_id,
                "user_id": user_id,
                "post_id": post_id,
                "comment_id": target_id if kind is TargetKind.COMMENT else None,
                "reaction_type": str(new_type),
            },
        )
        logger.info("reaction_removed", user_id=user_id, target=kind.value, target_id=target_id)
        return ReactionResult(state=None, previous=new_type)

    # Different type: replace in place
    replaced = await _replace_type(db, user_id, target_col, target_id, new_type)
    if replaced is not None:
        reaction_id, previous_type = replaced
        await _record_reaction(db, reaction_id, ChangeKind.UPDATE, post_id)
        await _notify(db, reaction_id, user_id, owner_id, new_type, kind, target_id, post_id)
        logger.info("reaction_replaced", user_id=user_id, target=kind.value, target_id=target_id, type=new_type.value)
        return ReactionResult(state=new_type, previous=ReactionType(previous_type))

    # No reaction yet: insert. A conflict means another device inserted first.
    values = {
        "user_id": user_id,
        "post_id": target_id if kind is TargetKind.POST else None,
        "comment_id": target_id if kind is TargetKind.COMMENT else None,
        "reaction_type": str(new_type),
        "created_at": utcnow(),
        "updated_at": utcnow(),
    }
    conflict_columns = ["user_id", "post_id"] if kind is TargetKind.POST else ["user_id", "comment_id"]
    reaction_id = await insert_ignore(db, Reaction, values, conflict_columns)
    if reaction_id is None:
        replaced = await _replace_type(db, user_id, target_col, target_id, new_type)
        if replaced is None:
            # The concurrent row vanished again; nothing of ours is stored
            return ReactionResult(state=None, previous=None)
        reaction_id, previous_type = replaced
        await _record_reaction(db, reaction_id, ChangeKind.UPDATE, post_id)
        return ReactionResult(state=new_type, previous=ReactionType(previous_type))

    await _record_reaction(db, reaction_id, ChangeKind.INSERT, post_id)
    await _notify(db, reaction_id, user_id, owner_id, new_type, kind, target_id, post_id)
    logger.info("reaction_added", user_id=user_id, target=kind.value, target_id=target_id, type=new_type.value)
    return ReactionResult(state=new_type, previous=None)


async def _record_reaction(db: AsyncSession, reaction_id: int, kind: ChangeKind, post_id: int) -> None:
    reaction = await db.get(Reaction, reaction_id, populate_existing=True)
    if reaction is None:
        return
    # Comment reactions are routed by their post so one post channel covers the thread
    record_change(db, "reactions", kind, row_to_dict(reaction, post_id=post_id))


async def _notify(
    db: AsyncSession,
    reaction_id: int,
    actor_id: int,
    owner_id: int,
    reaction_type: ReactionType,
    kind: TargetKind,
    target_id: int,
    post_id: int,
) -> None:
    if actor_id == owner_id:
        return
    actor = await get_profile(db, actor_id)
    await dispatch(
        db,
        ReactionAdded(
            reaction_id=reaction_id,
            actor_id=actor_id,
            actor_name=display_name(actor),
            owner_id=owner_id,
            reaction_type=reaction_type.value,
            post_id=post_id,
            comment_id=target_id if kind is TargetKind.COMMENT else None,
        ),
    )
