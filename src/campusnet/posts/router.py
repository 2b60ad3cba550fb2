"""Post API endpoints."""

from __future__ import annotations

from functools import partial

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.auth.dependencies import get_current_user
from campusnet.db.models import Profile
from campusnet.db.store import transact
from campusnet.dependencies import get_db, get_redis_dep
from campusnet.posts.schemas import CreatePostRequest, PostListResponse, PostResponse
from campusnet.posts.service import PostView, create_post, delete_post, get_post_view, list_feed

router = APIRouter(prefix="/api/v1", tags=["Posts"])


def build_post_response(view: PostView) -> PostResponse:
    post = view.post
    return PostResponse(
        id=post.id,
        user_id=post.user_id,
        content=post.content,
        post_type=post.post_type,
        media_url=post.media_url,
        media_type=post.media_type,
        visibility=post.visibility,
        created_at=post.created_at,
        reactions_count=view.reactions_count,
        comments_count=view.comments_count,
        participants_count=view.participants_count,
        user_reaction=view.user_reaction,
        is_saved=view.is_saved,
    )


@router.get("/posts", response_model=PostListResponse)
async def list_posts_endpoint(
    post_type: str | None = Query(None),
    author_id: int | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Public feed, newest first, with derived counters."""
    views = await list_feed(db, user.id, post_type=post_type, author_id=author_id, limit=limit, offset=offset)
    return PostListResponse(posts=[build_post_response(v) for v in views], limit=limit, offset=offset)


@router.post("/posts", response_model=PostResponse, status_code=201)
async def create_post_endpoint(
    body: CreatePostRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis_dep),
):
    post = await transact(
        db,
        redis,
        partial(
            create_post,
            db,
            user.id,
            body.content,
            post_type=body.post_type,
            media_url=body.media_url,
            media_type=body.media_type,
            visibility=body.visibility,
        ),
        idempotent=False,
    )
    return build_post_response(PostView(post=post))


@router.get("/posts/{post_id}", response_model=PostResponse)
async def get_post_endpoint(
    post_id: int,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return build_post_response(await get_post_view(db, post_id, user.id))


@router.delete("/posts/{post_id}", status_code=204)
async def delete_post_endpoint(
    post_id: int,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis_dep),
):
    """Delete a post (author or admin)."""
    await transact(db, redis, partial(delete_post, db, user.id, post_id))
