"""Post creation, lookup and the derived-count feed."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import delete, func, select

from campusnet.db.base import utcnow
from campusnet.db.models import (
    MEDIA_TYPES,
    POST_TYPES,
    Comment,
    IdeaParticipant,
    Notification,
    Post,
    PostReport,
    Reaction,
    SavedPost,
)
from campusnet.errors import Forbidden, NotFound, UsageError
from campusnet.feed.changes import ChangeKind, record_change, row_to_dict
from campusnet.notifications.dispatcher import UserMentioned, dispatch
from campusnet.profiles.service import (
    display_name,
    extract_mentions,
    get_profile,
    get_profiles_by_usernames,
    require_profile,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


@dataclass
class PostView:
    """A post with its counters derived at read time."""

    post: Post
    reactions_count: int = 0
    comments_count: int = 0
    participants_count: int = 0
    user_reaction: str | None = None
    is_saved: bool = False


async def create_post(
    db: AsyncSession,
    user_id: int,
    content: str,
    post_type: str = "text",
    media_url: str | None = None,
    media_type: str | None = None,
    visibility: str = "public",
) -> Post:
    text = (content or "").strip()
    if post_type not in POST_TYPES:
        raise UsageError(f"Unknown post type: {post_type}")
    if media_type is not None and media_type not in MEDIA_TYPES:
        raise UsageError(f"Unknown media type: {media_type}")
    if not text and media_url is None:
        raise UsageError("Post needs content or media")

    now = utcnow()
    post = Post(
        user_id=user_id,
        content=text,
        post_type=post_type,
        media_url=media_url,
        media_type=media_type,
        visibility=visibility,
        created_at=now,
        updated_at=now,
    )
    db.add(post)
    await db.flush()
    record_change(db, "posts", ChangeKind.INSERT, row_to_dict(post))

    handles = extract_mentions(text)
    if handles:
        mentioned = await get_profiles_by_usernames(db, handles)
        if mentioned:
            actor = await get_profile(db, user_id)
            await dispatch(
                db,
                UserMentioned(
                    actor_id=user_id,
                    actor_name=display_name(actor),
                    mentioned_ids=tuple(p.id for p in mentioned),
                    post_id=post.id,
                ),
            )

    logger.info("post_created", post_id=post.id, user_id=user_id, post_type=post_type)
    return post


async def get_post(db: AsyncSession, post_id: int) -> Post:
    post = await db.get(Post, post_id)
    if post is None:
        raise NotFound(f"Post {post_id} not found")
    return post


async def delete_post(db: AsyncSession, user_id: int, post_id: int) -> None:
    """Hard-delete a post. Only its author or an admin may do so."""
    post = await get_post(db, post_id)
    if post.user_id != user_id:
        actor = await require_profile(db, user_id)
        if actor.role != "admin":
            raise Forbidden("Only the author can delete this post")

    snapshot = row_to_dict(post)
    dependents = await _cascaded_rows(db, post_id)
    await db.execute(delete(Post).where(Post.id == post_id).execution_options(synchronize_session=False))
    db.expunge(post)

    # The store cascades these deletes; publish them so per-post and per-receiver views refresh
    for table, row in dependents:
        record_change(db, table, ChangeKind.DELETE, row)
    record_change(db, "posts", ChangeKind.DELETE, snapshot)
    logger.info("post_deleted", post_id=post_id, by=user_id, cascaded=len(dependents))


async def _cascaded_rows(db: AsyncSession, post_id: int) -> list[tuple[str, dict]]:
    """Snapshot every row that goes away with the post, keyed by feed table."""
    comment_ids = select(Comment.id).where(Comment.post_id == post_id).scalar_subquery()
    queries = [
        ("reactions", select(Reaction).where((Reaction.post_id == post_id) | Reaction.comment_id.in_(comment_ids))),
        ("comments", select(Comment).where(Comment.post_id == post_id)),
        ("idea_participants", select(IdeaParticipant).where(IdeaParticipant.post_id == post_id)),
        ("saved_posts", select(SavedPost).where(SavedPost.post_id == post_id)),
        ("post_reports", select(PostReport).where(PostReport.post_id == post_id)),
        (
            "notifications",
            select(Notification).where((Notification.post_id == post_id) | Notification.comment_id.in_(comment_ids)),
        ),
    ]

    rows: list[tuple[str, dict]] = []
    for table, stmt in queries:
        result = await db.execute(stmt)
        for obj in result.scalars().all():
            # Comment reactions carry no post_id of their own
            extra = {"post_id": post_id} if table == "reactions" else {}
            rows.append((table, row_to_dict(obj, **extra)))
            db.expunge(obj)
    return rows


async def _count_by_post(db: AsyncSession, column, post_ids: list[int], *extra) -> dict[int, int]:
    result = await db.execute(
        select(column, func.count()).where(column.in_(post_ids), *extra).group_by(column)
    )
    return {row[0]: row[1] for row in result}


async def decorate_posts(db: AsyncSession, posts: list[Post], viewer_id: int | None = None) -> list[PostView]:
    """Attach derived counters and viewer state to ``posts`` in a fixed number of queries."""
    if not posts:
        return []
    ids = [p.id for p in posts]

    reactions = await _count_by_post(db, Reaction.post_id, ids)
    comments = await _count_by_post(db, Comment.post_id, ids, Comment.deleted_at.is_(None))
    participants = await _count_by_post(db, IdeaParticipant.post_id, ids)

    mine: dict[int, str] = {}
    saved: set[int] = set()
    if viewer_id is not None:
        mine_result = await db.execute(
            select(Reaction.post_id, Reaction.reaction_type).where(
                Reaction.post_id.in_(ids), Reaction.user_id == viewer_id
            )
        )
        mine = {row[0]: row[1] for row in mine_result}
        saved_result = await db.execute(
            select(SavedPost.post_id).where(SavedPost.post_id.in_(ids), SavedPost.user_id == viewer_id)
        )
        saved = set(saved_result.scalars().all())

    return [
        PostView(
            post=p,
            reactions_count=reactions.get(p.id, 0),
            comments_count=comments.get(p.id, 0),
            participants_count=participants.get(p.id, 0),
            user_reaction=mine.get(p.id),
            is_saved=p.id in saved,
        )
        for p in posts
    ]


async def list_feed(
    db: AsyncSession,
    viewer_id: int | None = None,
    *,
    post_type: str | None = None,
    author_id: int | None = None,
    limit: int = 20,
    offset: int = 0,
) -> list[PostView]:
    """Public posts, newest first."""
    stmt = select(Post).where(Post.visibility == "public")
    if post_type is not None:
        stmt = stmt.where(Post.post_type == post_type)
    if author_id is not None:
        stmt = stmt.where(Post.user_id == author_id)
    stmt = stmt.order_by(Post.created_at.desc(), Post.id.desc()).limit(limit).offset(offset)

    result = await db.execute(stmt)
    return await decorate_posts(db, list(result.scalars().all()), viewer_id)


async def get_post_view(db: AsyncSession, post_id: int, viewer_id: int | None = None) -> PostView:
    post = await get_post(db, post_id)
    views = await decorate_posts(db, [post], viewer_id)
    return views[0]
