"""Pydantic schemas for moderation endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ReportRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class ReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    post_id: int
    reporter_id: int
    reason: str
    status: str
    reviewed_by: int | None = None
    reviewed_at: datetime | None = None
    created_at: datetime


class ResolveReportRequest(BaseModel):
    outcome: Literal["resolved", "dismissed"]


class BanRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)
    days: int | None = Field(30, ge=1, le=3650)


class BanResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    banned_by: int
    reason: str
    created_at: datetime
    expires_at: datetime | None = None


class StatsResponse(BaseModel):
    total_users: int
    total_posts: int
    pending_reports: int
    banned_users: int
