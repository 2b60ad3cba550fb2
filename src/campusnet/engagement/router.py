"""Engagement API endpoints: reactions, comments, saves, follows, idea participation."""

from __future__ import annotations

from functools import partial

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.auth.dependencies import get_current_user
from campusnet.db.models import Profile
from campusnet.db.store import transact
from campusnet.dependencies import get_db, get_redis_dep
from campusnet.engagement import comments as comment_service
from campusnet.engagement import follows, ideas, saves
from campusnet.engagement.comments import TOP_LEVEL, CommentView, Reply
from campusnet.engagement.edges import EdgeChange
from campusnet.engagement.reactions import TargetKind, count_reactions, reaction_breakdown, set_reaction
from campusnet.engagement.schemas import (
    CommentListResponse,
    CommentResponse,
    CreateCommentRequest,
    EdgeResponse,
    FollowStatsResponse,
    ProfileListResponse,
    ReactionRequest,
    ReactionResponse,
    UpdateCommentRequest,
)
from campusnet.posts.router import build_post_response
from campusnet.posts.schemas import PostListResponse
from campusnet.posts.service import decorate_posts
from campusnet.profiles.schemas import ProfileSummary
from campusnet.profiles.service import require_profile

router = APIRouter(prefix="/api/v1", tags=["Engagement"])


# ── Helpers ──


def _edge(change: EdgeChange) -> EdgeResponse:
    return EdgeResponse(active=change.active, changed=change.changed)


def _comment(view: CommentView) -> CommentResponse:
    return CommentResponse(
        id=view.id,
        post_id=view.post_id,
        user_id=view.user_id,
        parent_id=view.parent_id,
        content=view.content,
        created_at=view.created_at,
        edited_at=view.edited_at,
        reactions_count=view.reactions_count,
        user_reaction=view.user_reaction,
        replies=[_comment(r) for r in view.replies],
    )


async def _react(db: AsyncSession, redis, user_id: int, target_id: int, kind: TargetKind, reaction_type: str):
    result = await transact(db, redis, partial(set_reaction, db, user_id, target_id, kind, reaction_type))
    return ReactionResponse(
        state=result.state,
        previous=result.previous,
        reactions_count=await count_reactions(db, target_id, kind),
        breakdown=await reaction_breakdown(db, target_id, kind),
    )


# ── Reactions ──


@router.post("/posts/{post_id}/reactions", response_model=ReactionResponse)
async def react_to_post(
    post_id: int,
    body: ReactionRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis_dep),
):
    """Set, replace or toggle off the caller's reaction on a post."""
    return await _react(db, redis, user.id, post_id, TargetKind.POST, body.reaction_type)


@router.post("/comments/{comment_id}/reactions", response_model=ReactionResponse)
async def react_to_comment(
    comment_id: int,
    body: ReactionRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis_dep),
):
    return await _react(db, redis, user.id, comment_id, TargetKind.COMMENT, body.reaction_type)


# ── Comments ──


@router.get("/posts/{post_id}/comments", response_model=CommentListResponse)
async def list_comments_endpoint(
    post_id: int,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    forest = await comment_service.list_comments(db, post_id, user.id)
    total = await comment_service.count_comments(db, post_id)
    return CommentListResponse(comments=[_comment(c) for c in forest], total=total)


@router.post("/posts/{post_id}/comments", response_model=CommentResponse, status_code=201)
async def create_comment_endpoint(
    post_id: int,
    body: CreateCommentRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis_dep),
):
    placement = Reply(body.parent_id) if body.parent_id is not None else TOP_LEVEL
    comment = await transact(
        db,
        redis,
        partial(comment_service.post_comment, db, user.id, post_id, body.content, placement),
        idempotent=False,
    )
    return CommentResponse(
        id=comment.id,
        post_id=comment.post_id,
        user_id=comment.user_id,
        parent_id=comment.parent_id,
        content=comment.content,
        created_at=comment.created_at,
    )


@router.patch("/comments/{comment_id}", response_model=CommentResponse)
async def update_comment_endpoint(
    comment_id: int,
    body: UpdateCommentRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis_dep),
):
    comment = await transact(db, redis, partial(comment_service.edit_comment, db, user.id, comment_id, body.content))
    return CommentResponse(
        id=comment.id,
        post_id=comment.post_id,
        user_id=comment.user_id,
        parent_id=comment.parent_id,
        content=comment.content,
        created_at=comment.created_at,
        edited_at=comment.edited_at,
    )


@router.delete("/comments/{comment_id}", status_code=204)
async def delete_comment_endpoint(
    comment_id: int,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis_dep),
):
    await transact(db, redis, partial(comment_service.delete_comment, db, user.id, comment_id))


# ── Saved posts ──


@router.post("/posts/{post_id}/save", response_model=EdgeResponse)
async def toggle_save_endpoint(
    post_id: int,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis_dep),
):
    return _edge(await transact(db, redis, partial(saves.toggle_save, db, user.id, post_id)))


@router.get("/saved", response_model=PostListResponse)
async def list_saved_endpoint(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    posts = await saves.list_saved_posts(db, user.id, limit=limit, offset=offset)
    views = await decorate_posts(db, posts, user.id)
    return PostListResponse(posts=[build_post_response(v) for v in views], limit=limit, offset=offset)


# ── Follows ──


@router.post("/users/{user_id}/follow", response_model=EdgeResponse)
async def toggle_follow_endpoint(
    user_id: int,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis_dep),
):
    return _edge(await transact(db, redis, partial(follows.toggle_follow, db, user.id, user_id)))


@router.get("/users/{user_id}/follow-stats", response_model=FollowStatsResponse)
async def follow_stats_endpoint(
    user_id: int,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await require_profile(db, user_id)
    return FollowStatsResponse(
        user_id=user_id,
        followers=await follows.follower_count(db, user_id),
        following=await follows.following_count(db, user_id),
        is_following=await follows.is_following(db, user.id, user_id),
    )


@router.get("/users/{user_id}/followers", response_model=ProfileListResponse)
async def list_followers_endpoint(
    user_id: int,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    _user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    profiles = await follows.list_followers(db, user_id, limit=limit, offset=offset)
    return ProfileListResponse(
        profiles=[ProfileSummary.model_validate(p) for p in profiles],
        total=await follows.follower_count(db, user_id),
    )


@router.get("/users/{user_id}/following", response_model=ProfileListResponse)
async def list_following_endpoint(
    user_id: int,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    _user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    profiles = await follows.list_following(db, user_id, limit=limit, offset=offset)
    return ProfileListResponse(
        profiles=[ProfileSummary.model_validate(p) for p in profiles],
        total=await follows.following_count(db, user_id),
    )


# ── Idea participation ──


@router.post("/posts/{post_id}/participants", response_model=EdgeResponse)
async def join_idea_endpoint(
    post_id: int,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis_dep),
):
    """Join an idea. Joining twice is a single participation."""
    return _edge(await transact(db, redis, partial(ideas.join_idea, db, user.id, post_id)))


@router.delete("/posts/{post_id}/participants", response_model=EdgeResponse)
async def leave_idea_endpoint(
    post_id: int,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis_dep),
):
    return _edge(await transact(db, redis, partial(ideas.leave_idea, db, user.id, post_id)))


@router.get("/posts/{post_id}/participants", response_model=ProfileListResponse)
async def list_participants_endpoint(
    post_id: int,
    _user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    profiles = await ideas.list_participants(db, post_id)
    return ProfileListResponse(
        profiles=[ProfileSummary.model_validate(p) for p in profiles],
        total=len(profiles),
    )
