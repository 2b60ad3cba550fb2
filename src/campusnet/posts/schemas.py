"""Pydantic schemas for post endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

PostType = Literal["text", "idea", "proyecto", "equipo", "evento", "academic_event"]


class CreatePostRequest(BaseModel):
    content: str = Field("", max_length=5000)
    post_type: PostType = "text"
    media_url: str | None = None
    media_type: Literal["image", "video"] | None = None
    visibility: Literal["public", "followers"] = "public"


class PostResponse(BaseModel):
    id: int
    user_id: int
    content: str
    post_type: str
    media_url: str | None = None
    media_type: str | None = None
    visibility: str
    created_at: datetime
    reactions_count: int = 0
    comments_count: int = 0
    participants_count: int = 0
    user_reaction: str | None = None
    is_saved: bool = False


class PostListResponse(BaseModel):
    posts: list[PostResponse]
    limit: int
    offset: int
