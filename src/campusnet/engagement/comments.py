"""Comments with one level of replies.

Placement is a tagged variant, ``TopLevel`` or ``Reply(parent_id)``, and a
reply's parent must itself be a live top-level comment on the same post.
Together that keeps every post's comments a forest of depth at most two.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import func, select, update

from campusnet.config import get_settings
from campusnet.db.base import utcnow
from campusnet.db.models import Comment, Post, Reaction
from campusnet.errors import Forbidden, InvalidParent, NotFound, UsageError
from campusnet.feed.changes import ChangeKind, record_change, row_to_dict
from campusnet.notifications.dispatcher import CommentPosted, UserMentioned, dispatch
from campusnet.profiles.service import display_name, extract_mentions, get_profile, get_profiles_by_usernames

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


@dataclass(frozen=True)
class TopLevel:
    """A comment directly on the post."""


@dataclass(frozen=True)
class Reply:
    """A reply to a top-level comment."""

    parent_id: int


CommentPlacement = TopLevel | Reply
TOP_LEVEL = TopLevel()


@dataclass
class CommentView:
    id: int
    post_id: int
    user_id: int
    parent_id: int | None
    content: str
    created_at: datetime
    edited_at: datetime | None
    reactions_count: int = 0
    user_reaction: str | None = None
    replies: list[CommentView] = field(default_factory=list)


def _clean_content(content: str) -> str:
    text = (content or "").strip()
    if not text:
        raise UsageError("Comment cannot be empty")
    limit = get_settings().comment_max_length
    if len(text) > limit:
        raise UsageError(f"Comment exceeds {limit} characters")
    return text


async def _live_comment(db: AsyncSession, comment_id: int) -> Comment | None:
    comment = await db.get(Comment, comment_id)
    if comment is None or comment.deleted_at is not None:
        return None
    return comment


async def _resolve_parent(db: AsyncSession, post_id: int, placement: CommentPlacement) -> Comment | None:
    if isinstance(placement, TopLevel):
        return None
    parent = await _live_comment(db, placement.parent_id)
    if parent is None:
        raise InvalidParent(f"Parent comment {placement.parent_id} does not exist")
    if parent.post_id != post_id:
        raise InvalidParent("Parent comment belongs to a different post")
    if parent.parent_id is not None:
        raise InvalidParent("Replies cannot have replies")
    return parent


async def post_comment(
    db: AsyncSession,
    user_id: int,
    post_id: int,
    content: str,
    placement: CommentPlacement = TOP_LEVEL,
) -> Comment:
    """Create a comment or a reply. Everything is validated before any write."""
    text = _clean_content(content)
    post = await db.get(Post, post_id)
    if post is None:
        raise NotFound(f"Post {post_id} not found")
    parent = await _resolve_parent(db, post_id, placement)

    now = utcnow()
    comment = Comment(
        post_id=post_id,
        user_id=user_id,
        parent_id=parent.id if parent is not None else None,
        content=text,
        created_at=now,
        updated_at=now,
    )
    db.add(comment)
    await db.flush()
    record_change(db, "comments", ChangeKind.INSERT, row_to_dict(comment))

    actor = await get_profile(db, user_id)
    actor_name = display_name(actor)
    await dispatch(
        db,
        CommentPosted(
            comment_id=comment.id,
            actor_id=user_id,
            actor_name=actor_name,
            post_id=post_id,
            post_owner_id=post.user_id,
            parent_owner_id=parent.user_id if parent is not None else None,
        ),
    )

    handles = extract_mentions(text)
    if handles:
        mentioned = await get_profiles_by_usernames(db, handles)
        if mentioned:
            await dispatch(
                db,
                UserMentioned(
                    actor_id=user_id,
                    actor_name=actor_name,
                    mentioned_ids=tuple(p.id for p in mentioned),
                    post_id=post_id,
                    comment_id=comment.id,
                ),
            )

    logger.info("comment_posted", comment_id=comment.id, post_id=post_id, user_id=user_id, reply=parent is not None)
    return comment


async def _own_comment(db: AsyncSession, user_id: int, comment_id: int) -> Comment:
    comment = await _live_comment(db, comment_id)
    if comment is None:
        raise NotFound(f"Comment {comment_id} not found")
    if comment.user_id != user_id:
        raise Forbidden("Only the author can change this comment")
    return comment


async def edit_comment(db: AsyncSession, user_id: int, comment_id: int, content: str) -> Comment:
    """Replace a comment's text (author only)."""
    comment = await _own_comment(db, user_id, comment_id)
    text = _clean_content(content)
    if text == comment.content:
        return comment

    now = utcnow()
    comment.content = text
    comment.edited_at = now
    comment.updated_at = now
    await db.flush()
    record_change(db, "comments", ChangeKind.UPDATE, row_to_dict(comment))
    return comment


async def delete_comment(db: AsyncSession, user_id: int, comment_id: int) -> Comment:
    """Soft-delete a comment (author only). Deleting a top-level comment deletes its replies too."""
    comment = await _own_comment(db, user_id, comment_id)
    now = utcnow()
    comment.deleted_at = now
    comment.updated_at = now
    await db.flush()
    record_change(db, "comments", ChangeKind.UPDATE, row_to_dict(comment))

    if comment.parent_id is None:
        replies = await db.execute(
            update(Comment)
            .where(Comment.parent_id == comment.id, Comment.deleted_at.is_(None))
            .values(deleted_at=now, updated_at=now)
            .returning(Comment.id, Comment.user_id)
        )
        for reply_id, reply_author in replies.all():
            row = {
                "id": reply_id,
                "post_id": comment.post_id,
                "user_id": reply_author,
                "parent_id": comment.id,
                "deleted_at": now.isoformat(),
            }
            record_change(db, "comments", ChangeKind.UPDATE, row)

    logger.info("comment_deleted", comment_id=comment_id, user_id=user_id)
    return comment


async def count_comments(db: AsyncSession, post_id: int) -> int:
    """Live comments on the post, replies included."""
    result = await db.execute(
        select(func.count())
        .select_from(Comment)
        .where(Comment.post_id == post_id, Comment.deleted_at.is_(None))
    )
    return result.scalar_one()


async def list_comments(db: AsyncSession, post_id: int, viewer_id: int | None = None) -> list[CommentView]:
    """Top-level comments (oldest first), each with its replies and reaction data."""
    result = await db.execute(
        select(Comment)
        .where(Comment.post_id == post_id, Comment.deleted_at.is_(None))
        .order_by(Comment.created_at.asc(), Comment.id.asc())
    )
    comments = list(result.scalars().all())
    if not comments:
        return []

    ids = [c.id for c in comments]
    counts_result = await db.execute(
        select(Reaction.comment_id, func.count()).where(Reaction.comment_id.in_(ids)).group_by(Reaction.comment_id)
    )
    counts = {row[0]: row[1] for row in counts_result}

    mine: dict[int, str] = {}
    if viewer_id is not None:
        mine_result = await db.execute(
            select(Reaction.comment_id, Reaction.reaction_type).where(
                Reaction.comment_id.in_(ids), Reaction.user_id == viewer_id
            )
        )
        mine = {row[0]: row[1] for row in mine_result}

    views = {
        c.id: CommentView(
            id=c.id,
            post_id=c.post_id,
            user_id=c.user_id,
            parent_id=c.parent_id,
            content=c.content,
            created_at=c.created_at,
            edited_at=c.edited_at,
            reactions_count=counts.get(c.id, 0),
            user_reaction=mine.get(c.id),
        )
        for c in comments
    }

    roots: list[CommentView] = []
    for view in views.values():
        if view.parent_id is None:
            roots.append(view)
        elif view.parent_id in views:
            views[view.parent_id].replies.append(view)
    return roots
