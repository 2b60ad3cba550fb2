"""Conversation API endpoints."""

from __future__ import annotations

from functools import partial

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.auth.dependencies import get_current_user
from campusnet.db.models import Conversation, Message, Profile
from campusnet.db.store import transact
from campusnet.dependencies import get_db, get_redis_dep
from campusnet.messaging import service
from campusnet.messaging.schemas import (
    ConversationListResponse,
    ConversationResponse,
    CreateGroupRequest,
    EditMessageRequest,
    MessageListResponse,
    MessageResponse,
    MuteRequest,
    ReadMarkResponse,
    SendMessageRequest,
    StartConversationRequest,
    UnreadCountResponse,
)
from campusnet.profiles.schemas import ProfileSummary

router = APIRouter(prefix="/api/v1", tags=["Conversations"])


# ── Helpers ──


def _message(message: Message) -> MessageResponse:
    return MessageResponse(
        id=message.id,
        conversation_id=message.conversation_id,
        sender_id=message.sender_id,
        content=message.content,
        image_url=message.image_url,
        is_read=message.is_read,
        created_at=message.created_at,
        edited_at=message.edited_at,
    )


def _summary(summary: service.ConversationSummary) -> ConversationResponse:
    conversation = summary.conversation
    return ConversationResponse(
        id=conversation.id,
        is_group_chat=conversation.is_group_chat,
        name=conversation.name,
        created_at=conversation.created_at,
        last_message_at=conversation.last_message_at,
        last_message_preview=conversation.last_message_preview,
        participants=[ProfileSummary.model_validate(p) for p in summary.participants],
        unread_count=summary.unread_count,
        is_muted=summary.is_muted,
    )


async def _conversation_response(db: AsyncSession, conversation: Conversation, user_id: int) -> ConversationResponse:
    for summary in await service.list_conversations(db, user_id):
        if summary.conversation.id == conversation.id:
            return _summary(summary)
    return _summary(service.ConversationSummary(conversation=conversation))


# ── Conversations ──


@router.get("/conversations", response_model=ConversationListResponse)
async def list_conversations_endpoint(
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The caller's conversations, most recently active first."""
    summaries = await service.list_conversations(db, user.id)
    total = await service.get_unread_count(db, user.id)
    return ConversationListResponse(conversations=[_summary(s) for s in summaries], total_unread=total)


@router.post("/conversations", response_model=ConversationResponse)
async def start_conversation_endpoint(
    body: StartConversationRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis_dep),
):
    """Get or create the 1:1 conversation with another user."""
    me = user.id
    conversation = await transact(db, redis, partial(service.get_or_create_conversation, db, me, body.user_id))
    return await _conversation_response(db, conversation, me)


@router.post("/conversations/groups", response_model=ConversationResponse, status_code=201)
async def create_group_endpoint(
    body: CreateGroupRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis_dep),
):
    me = user.id
    conversation = await transact(
        db,
        redis,
        partial(service.create_group_conversation, db, me, body.member_ids, body.name),
        idempotent=False,
    )
    return await _conversation_response(db, conversation, me)


@router.get("/conversations/unread-count", response_model=UnreadCountResponse)
async def unread_count_endpoint(
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return UnreadCountResponse(unread_count=await service.get_unread_count(db, user.id))


@router.put("/conversations/{conversation_id}/mute", status_code=200)
async def mute_endpoint(
    conversation_id: int,
    body: MuteRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis_dep),
):
    participant = await transact(db, redis, partial(service.set_muted, db, conversation_id, user.id, body.muted))
    return {"conversation_id": conversation_id, "is_muted": participant.is_muted}


# ── Messages ──


@router.get("/conversations/{conversation_id}/messages", response_model=MessageListResponse)
async def list_messages_endpoint(
    conversation_id: int,
    limit: int = Query(50, ge=1, le=200),
    before_id: int | None = Query(None),
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    messages = await service.list_messages(db, conversation_id, user.id, limit=limit, before_id=before_id)
    return MessageListResponse(messages=[_message(m) for m in messages])


@router.post("/conversations/{conversation_id}/messages", response_model=MessageResponse, status_code=201)
async def send_message_endpoint(
    conversation_id: int,
    body: SendMessageRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis_dep),
):
    """Send a message. Supplying ``client_token`` makes the send safe to retry."""
    message = await transact(
        db,
        redis,
        partial(
            service.send_message,
            db,
            conversation_id,
            user.id,
            body.content,
            image_url=body.image_url,
            client_token=body.client_token,
        ),
        idempotent=body.client_token is not None,
    )
    return _message(message)


@router.post("/conversations/{conversation_id}/read", response_model=ReadMarkResponse)
async def mark_read_endpoint(
    conversation_id: int,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis_dep),
):
    me = user.id
    mark = await transact(db, redis, partial(service.mark_as_read, db, conversation_id, me))
    return ReadMarkResponse(
        marked=mark.marked,
        last_read_at=mark.last_read_at,
        unread_count=await service.get_unread_count(db, me),
    )


@router.patch("/messages/{message_id}", response_model=MessageResponse)
async def edit_message_endpoint(
    message_id: int,
    body: EditMessageRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis_dep),
):
    message = await transact(db, redis, partial(service.edit_message, db, message_id, user.id, body.content))
    return _message(message)


@router.delete("/messages/{message_id}", status_code=204)
async def delete_message_endpoint(
    message_id: int,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis_dep),
):
    """Soft-delete a message (sender only)."""
    await transact(db, redis, partial(service.delete_message, db, message_id, user.id))
