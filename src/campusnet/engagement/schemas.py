"""Pydantic schemas for engagement endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from campusnet.profiles.schemas import ProfileSummary

ReactionName = Literal["like", "love", "idea", "fire"]


# --- Reactions ---


class ReactionRequest(BaseModel):
    reaction_type: ReactionName = "like"


class ReactionResponse(BaseModel):
    state: str | None
    previous: str | None
    reactions_count: int
    breakdown: dict[str, int] = {}


# --- Edges ---


class EdgeResponse(BaseModel):
    active: bool
    changed: bool


class FollowStatsResponse(BaseModel):
    user_id: int
    followers: int
    following: int
    is_following: bool


class ProfileListResponse(BaseModel):
    profiles: list[ProfileSummary]
    total: int


# --- Comments ---


class CreateCommentRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)
    parent_id: int | None = None


class UpdateCommentRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)


class CommentResponse(BaseModel):
    id: int
    post_id: int
    user_id: int
    parent_id: int | None = None
    content: str
    created_at: datetime
    edited_at: datetime | None = None
    reactions_count: int = 0
    user_reaction: str | None = None
    replies: list[CommentResponse] = []


class CommentListResponse(BaseModel):
    comments: list[CommentResponse]
    total: int
