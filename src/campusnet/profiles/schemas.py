"""Profile projections embedded in other responses."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ProfileSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    full_name: str | None = None
    avatar_url: str | None = None
    university: str | None = None
    career: str | None = None
