"""Pydantic schemas for search endpoints."""

from __future__ import annotations

from pydantic import BaseModel

from campusnet.posts.schemas import PostResponse
from campusnet.profiles.schemas import ProfileSummary


class ProfileSearchResponse(BaseModel):
    users: list[ProfileSummary]


class PostSearchResponse(BaseModel):
    posts: list[PostResponse]


class HashtagCount(BaseModel):
    tag: str
    posts: int


class TrendingResponse(BaseModel):
    hashtags: list[HashtagCount]


class SuggestedUser(ProfileSummary):
    followers: int = 0


class SuggestionsResponse(BaseModel):
    users: list[SuggestedUser]
