"""Search and discovery endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.auth.dependencies import get_current_user
from campusnet.db.models import Profile
from campusnet.dependencies import get_db
from campusnet.posts.router import build_post_response
from campusnet.posts.schemas import PostType
from campusnet.profiles.schemas import ProfileSummary
from campusnet.search.schemas import (
    HashtagCount,
    PostSearchResponse,
    ProfileSearchResponse,
    SuggestedUser,
    SuggestionsResponse,
    TrendingResponse,
)
from campusnet.search.service import search_posts, search_profiles, suggest_users, trending_hashtags

router = APIRouter(prefix="/api/v1/search", tags=["Search"])


@router.get("/users", response_model=ProfileSearchResponse)
async def search_users_endpoint(
    q: str = Query(..., min_length=1, max_length=100),
    university: str | None = Query(None),
    career: str | None = Query(None),
    semester: str | None = Query(None),
    limit: int = Query(20, ge=1, le=50),
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    profiles = await search_profiles(db, q, university=university, career=career, semester=semester, limit=limit)
    return ProfileSearchResponse(users=[ProfileSummary.model_validate(p) for p in profiles])


@router.get("/posts", response_model=PostSearchResponse)
async def search_posts_endpoint(
    q: str = Query(..., min_length=1, max_length=100),
    post_type: PostType | None = Query(None),
    limit: int = Query(20, ge=1, le=50),
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Public posts containing ``q``; pass ``post_type=idea`` or ``proyecto`` to search those."""
    views = await search_posts(db, q, user.id, post_type=post_type, limit=limit)
    return PostSearchResponse(posts=[build_post_response(v) for v in views])


@router.get("/trending", response_model=TrendingResponse)
async def trending_endpoint(
    limit: int = Query(10, ge=1, le=50),
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ranked = await trending_hashtags(db, limit)
    return TrendingResponse(hashtags=[HashtagCount(tag=tag, posts=n) for tag, n in ranked])


@router.get("/suggestions", response_model=SuggestionsResponse)
async def suggestions_endpoint(
    limit: int = Query(10, ge=1, le=50),
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Same-university profiles the caller does not follow yet."""
    pairs = await suggest_users(db, user.id, limit)
    return SuggestionsResponse(
        users=[
            SuggestedUser(**ProfileSummary.model_validate(p).model_dump(), followers=n) for p, n in pairs
        ]
    )
