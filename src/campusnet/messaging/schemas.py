"""Pydantic schemas for conversation endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from campusnet.profiles.schemas import ProfileSummary


class StartConversationRequest(BaseModel):
    user_id: int


class CreateGroupRequest(BaseModel):
    member_ids: list[int] = Field(..., min_length=1, max_length=100)
    name: str | None = Field(None, max_length=128)


class SendMessageRequest(BaseModel):
    content: str = Field("", max_length=4000)
    image_url: str | None = None
    client_token: str | None = Field(None, min_length=8, max_length=64)


class EditMessageRequest(BaseModel):
    content: str = Field(..., max_length=4000)


class MuteRequest(BaseModel):
    muted: bool


class ConversationResponse(BaseModel):
    id: int
    is_group_chat: bool
    name: str | None = None
    created_at: datetime
    last_message_at: datetime | None = None
    last_message_preview: str | None = None
    participants: list[ProfileSummary] = []
    unread_count: int = 0
    is_muted: bool = False


class ConversationListResponse(BaseModel):
    conversations: list[ConversationResponse]
    total_unread: int


class MessageResponse(BaseModel):
    id: int
    conversation_id: int
    sender_id: int
    content: str
    image_url: str | None = None
    is_read: bool
    created_at: datetime
    edited_at: datetime | None = None


class MessageListResponse(BaseModel):
    messages: list[MessageResponse]


class ReadMarkResponse(BaseModel):
    marked: int
    last_read_at: datetime | None = None
    unread_count: int


class UnreadCountResponse(BaseModel):
    unread_count: int
