"""Conversations and messages.

1:1 conversations are keyed by their ordered participant pair
(``pair_low < pair_high``) under a UNIQUE constraint, so find-or-create is
an ``INSERT ... ON CONFLICT DO NOTHING`` followed by a lookup: concurrent
callers from both sides always converge on one conversation.

Messages are totally ordered by ``(created_at, id)``. A send locks the
conversation row and never stamps a message earlier than the
conversation's ``last_message_at``, so timestamps are non-decreasing in id
order within a conversation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import and_, func, or_, select, update

from campusnet.config import get_settings
from campusnet.db.base import as_utc, utcnow
from campusnet.db.models import Conversation, ConversationParticipant, Message, Profile
from campusnet.db.store import insert_ignore
from campusnet.errors import Forbidden, NotFound, UsageError
from campusnet.feed.changes import ChangeKind, record_change, row_to_dict
from campusnet.notifications.dispatcher import MessageSent, dispatch
from campusnet.profiles.service import display_name, get_profile, require_profile

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

IMAGE_PREVIEW = "[image]"


@dataclass
class ConversationSummary:
    conversation: Conversation
    participants: list[Profile] = field(default_factory=list)
    unread_count: int = 0
    is_muted: bool = False
    last_read_at: datetime | None = None


@dataclass(frozen=True)
class ReadMark:
    """Outcome of ``mark_as_read``."""

    marked: int
    last_read_at: datetime | None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def participant_ids(db: AsyncSession, conversation_id: int) -> list[int]:
    result = await db.execute(
        select(ConversationParticipant.user_id)
        .where(ConversationParticipant.conversation_id == conversation_id)
        .order_by(ConversationParticipant.user_id)
    )
    return list(result.scalars().all())


async def _record_conversation(db: AsyncSession, conversation: Conversation, kind: ChangeKind) -> None:
    members = await participant_ids(db, conversation.id)
    record_change(db, "conversations", kind, row_to_dict(conversation, participant_ids=members))


async def require_participant(db: AsyncSession, conversation_id: int, user_id: int) -> ConversationParticipant:
    """Return the caller's membership row; ``NotFound``/``Forbidden`` otherwise."""
    if await db.get(Conversation, conversation_id) is None:
        raise NotFound(f"Conversation {conversation_id} not found")
    result = await db.execute(
        select(ConversationParticipant).where(
            ConversationParticipant.conversation_id == conversation_id,
            ConversationParticipant.user_id == user_id,
        )
    )
    participant = result.scalar_one_or_none()
    if participant is None:
        raise Forbidden("Not a participant of this conversation")
    return participant


async def get_conversation(db: AsyncSession, conversation_id: int, user_id: int) -> Conversation:
    await require_participant(db, conversation_id, user_id)
    conversation = await db.get(Conversation, conversation_id)
    assert conversation is not None
    return conversation


async def _add_participants(db: AsyncSession, conversation_id: int, user_ids: list[int]) -> None:
    now = utcnow()
    for uid in user_ids:
        row_id = await insert_ignore(
            db,
            ConversationParticipant,
            {"conversation_id": conversation_id, "user_id": uid, "joined_at": now, "is_muted": False},
            ["conversation_id", "user_id"],
        )
        if row_id is None:
            continue
        participant = await db.get(ConversationParticipant, row_id)
        if participant is not None:
            record_change(db, "conversation_participants", ChangeKind.INSERT, row_to_dict(participant))


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------


async def get_or_create_conversation(db: AsyncSession, user_a: int, user_b: int) -> Conversation:
    """Find the 1:1 conversation between two users, creating it if absent."""
    if user_a == user_b:
        raise UsageError("Cannot start a conversation with yourself")
    await require_profile(db, user_a)
    await require_profile(db, user_b)

    low, high = sorted((user_a, user_b))
    now = utcnow()
    conversation_id = await insert_ignore(
        db,
        Conversation,
        {
            "is_group_chat": False,
            "pair_low": low,
            "pair_high": high,
            "created_at": now,
            "updated_at": now,
        },
        ["pair_low", "pair_high"],
    )

    if conversation_id is None:
        result = await db.execute(
            select(Conversation).where(Conversation.pair_low == low, Conversation.pair_high == high)
        )
        conversation = result.scalar_one()
        logger.debug("conversation_found", conversation_id=conversation.id, pair=(low, high))
        return conversation

    await _add_participants(db, conversation_id, [low, high])
    conversation = await db.get(Conversation, conversation_id)
    assert conversation is not None
    await _record_conversation(db, conversation, ChangeKind.INSERT)
    logger.info("conversation_created", conversation_id=conversation_id, pair=(low, high))
    return conversation


async def create_group_conversation(
    db: AsyncSession, creator_id: int, member_ids: list[int], name: str | None = None
) -> Conversation:
    members = sorted(set(member_ids) | {creator_id})
    if len(members) < 2:
        raise UsageError("A group needs at least one other member")
    for uid in members:
        await require_profile(db, uid)

    now = utcnow()
    conversation = Conversation(is_group_chat=True, name=(name or "").strip() or None, created_at=now, updated_at=now)
    db.add(conversation)
    await db.flush()
    await _add_participants(db, conversation.id, members)
    await _record_conversation(db, conversation, ChangeKind.INSERT)
    logger.info("group_created", conversation_id=conversation.id, members=len(members))
    return conversation


async def set_muted(db: AsyncSession, conversation_id: int, user_id: int, muted: bool) -> ConversationParticipant:
    participant = await require_participant(db, conversation_id, user_id)
    if participant.is_muted != muted:
        participant.is_muted = muted
        await db.flush()
        record_change(db, "conversation_participants", ChangeKind.UPDATE, row_to_dict(participant))
    return participant


async def list_conversations(db: AsyncSession, user_id: int) -> list[ConversationSummary]:
    """The user's conversations, most recently active first, with per-conversation unread counts."""
    result = await db.execute(
        select(Conversation, ConversationParticipant)
        .join(ConversationParticipant, ConversationParticipant.conversation_id == Conversation.id)
        .where(ConversationParticipant.user_id == user_id)
        .order_by(func.coalesce(Conversation.last_message_at, Conversation.created_at).desc(), Conversation.id.desc())
    )
    rows = result.all()
    if not rows:
        return []

    ids = [conversation.id for conversation, _ in rows]
    unread = await _unread_by_conversation(db, user_id, ids)

    members_result = await db.execute(
        select(ConversationParticipant.conversation_id, Profile)
        .join(Profile, Profile.id == ConversationParticipant.user_id)
        .where(ConversationParticipant.conversation_id.in_(ids))
        .order_by(Profile.id)
    )
    members: dict[int, list[Profile]] = {}
    for conversation_id, profile in members_result.all():
        members.setdefault(conversation_id, []).append(profile)

    return [
        ConversationSummary(
            conversation=conversation,
            participants=members.get(conversation.id, []),
            unread_count=unread.get(conversation.id, 0),
            is_muted=participant.is_muted,
            last_read_at=participant.last_read_at,
        )
        for conversation, participant in rows
    ]


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


def _preview(text: str, image_url: str | None) -> str:
    if not text:
        return IMAGE_PREVIEW if image_url else ""
    limit = get_settings().message_preview_length
    return text if len(text) <= limit else text[: limit - 1] + "…"


async def _find_by_token(db: AsyncSession, conversation_id: int, sender_id: int, client_token: str) -> Message | None:
    result = await db.execute(
        select(Message).where(
            Message.conversation_id == conversation_id,
            Message.sender_id == sender_id,
            Message.client_token == client_token,
        )
    )
    return result.scalar_one_or_none()


async def send_message(
    db: AsyncSession,
    conversation_id: int,
    sender_id: int,
    content: str,
    image_url: str | None = None,
    client_token: str | None = None,
) -> Message:
    """Append a message and update the conversation header in the same transaction.

    With a ``client_token`` the append is idempotent: resending the same
    token returns the message stored by the first attempt.
    """
    text = (content or "").strip()
    if not text and not image_url:
        raise UsageError("Message cannot be empty")
    limit = get_settings().message_max_length
    if len(text) > limit:
        raise UsageError(f"Message exceeds {limit} characters")

    await require_participant(db, conversation_id, sender_id)

    if client_token is not None:
        existing = await _find_by_token(db, conversation_id, sender_id, client_token)
        if existing is not None:
            logger.debug("message_replayed", message_id=existing.id, conversation_id=conversation_id)
            return existing

    # Serialize appends per conversation
    locked = await db.execute(
        select(Conversation)
        .where(Conversation.id == conversation_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    conversation = locked.scalar_one()

    created_at = utcnow()
    last = as_utc(conversation.last_message_at)
    if last is not None and last > created_at:
        created_at = last

    values = {
        "conversation_id": conversation_id,
        "sender_id": sender_id,
        "content": text,
        "image_url": image_url,
        "client_token": client_token,
        "is_read": False,
        "created_at": created_at,
    }
    if client_token is not None:
        message_id = await insert_ignore(db, Message, values, ["conversation_id", "sender_id", "client_token"])
        if message_id is None:
            existing = await _find_by_token(db, conversation_id, sender_id, client_token)
            assert existing is not None
            return existing
        message = await db.get(Message, message_id)
        assert message is not None
    else:
        message = Message(**values)
        db.add(message)
        await db.flush()

    conversation.last_message_at = created_at
    conversation.last_message_preview = _preview(text, image_url)
    conversation.updated_at = created_at
    await db.flush()

    record_change(db, "messages", ChangeKind.INSERT, row_to_dict(message))
    await _record_conversation(db, conversation, ChangeKind.UPDATE)
    await _notify_recipients(db, message, conversation.last_message_preview or "")

    logger.info("message_sent", message_id=message.id, conversation_id=conversation_id, sender_id=sender_id)
    return message


async def _notify_recipients(db: AsyncSession, message: Message, preview: str) -> None:
    result = await db.execute(
        select(ConversationParticipant.user_id).where(
            ConversationParticipant.conversation_id == message.conversation_id,
            ConversationParticipant.user_id != message.sender_id,
            ConversationParticipant.is_muted.is_(False),
        )
    )
    recipients = tuple(result.scalars().all())
    if not recipients:
        return
    sender = await get_profile(db, message.sender_id)
    await dispatch(
        db,
        MessageSent(
            message_id=message.id,
            conversation_id=message.conversation_id,
            actor_id=message.sender_id,
            actor_name=display_name(sender),
            preview=preview,
            recipient_ids=recipients,
        ),
    )


async def list_messages(
    db: AsyncSession,
    conversation_id: int,
    user_id: int,
    *,
    limit: int = 50,
    before_id: int | None = None,
) -> list[Message]:
    """Live messages in store order (oldest first), the newest ``limit`` before the cursor."""
    await require_participant(db, conversation_id, user_id)

    stmt = select(Message).where(Message.conversation_id == conversation_id, Message.deleted_at.is_(None))
    if before_id is not None:
        cursor = await db.get(Message, before_id)
        if cursor is None or cursor.conversation_id != conversation_id:
            raise NotFound(f"Message {before_id} not found")
        stmt = stmt.where(
            or_(
                Message.created_at < cursor.created_at,
                and_(Message.created_at == cursor.created_at, Message.id < cursor.id),
            )
        )
    result = await db.execute(stmt.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit))
    return list(reversed(result.scalars().all()))


async def mark_as_read(db: AsyncSession, conversation_id: int, user_id: int) -> ReadMark:
    """Mark every message from the other participants as read.

    Idempotent, and ``last_read_at`` only ever moves forward: a second call
    with nothing new to read leaves it unchanged.
    """
    participant = await require_participant(db, conversation_id, user_id)

    flipped = await db.execute(
        update(Message)
        .where(
            Message.conversation_id == conversation_id,
            Message.sender_id != user_id,
            Message.is_read.is_(False),
        )
        .values(is_read=True)
        .returning(Message.id, Message.sender_id)
    )
    marked = flipped.all()

    newest_result = await db.execute(
        select(func.max(Message.created_at)).where(
            Message.conversation_id == conversation_id, Message.sender_id != user_id
        )
    )
    newest = as_utc(newest_result.scalar_one_or_none())
    previous = as_utc(participant.last_read_at)

    if marked or previous is None or (newest is not None and newest > previous):
        candidate = max(d for d in (utcnow(), newest, previous) if d is not None)
        participant.last_read_at = candidate
        await db.flush()
        record_change(db, "conversation_participants", ChangeKind.UPDATE, row_to_dict(participant))

    for message_id, sender_id in marked:
        record_change(
            db,
            "messages",
            ChangeKind.UPDATE,
            {"id": message_id, "conversation_id": conversation_id, "sender_id": sender_id, "is_read": True},
        )

    if marked:
        logger.info("conversation_read", conversation_id=conversation_id, user_id=user_id, marked=len(marked))
    return ReadMark(marked=len(marked), last_read_at=as_utc(participant.last_read_at))


def _unread_query(user_id: int):
    return (
        select(func.count(Message.id))
        .select_from(Message)
        .join(ConversationParticipant, ConversationParticipant.conversation_id == Message.conversation_id)
        .where(
            ConversationParticipant.user_id == user_id,
            Message.sender_id != user_id,
            Message.is_read.is_(False),
            Message.deleted_at.is_(None),
        )
    )


async def get_unread_count(db: AsyncSession, user_id: int, conversation_id: int | None = None) -> int:
    """Unread messages across the user's conversations (or one of them), counted by the store."""
    stmt = _unread_query(user_id)
    if conversation_id is not None:
        stmt = stmt.where(Message.conversation_id == conversation_id)
    result = await db.execute(stmt)
    return result.scalar_one()


async def _unread_by_conversation(db: AsyncSession, user_id: int, conversation_ids: list[int]) -> dict[int, int]:
    result = await db.execute(
        _unread_query(user_id)
        .add_columns(Message.conversation_id)
        .where(Message.conversation_id.in_(conversation_ids))
        .group_by(Message.conversation_id)
    )
    return {conversation_id: count for count, conversation_id in result.all()}


async def _own_message(db: AsyncSession, message_id: int, user_id: int) -> Message:
    message = await db.get(Message, message_id)
    if message is None or message.deleted_at is not None:
        raise NotFound(f"Message {message_id} not found")
    if message.sender_id != user_id:
        raise Forbidden("Only the sender can change this message")
    return message


async def delete_message(db: AsyncSession, message_id: int, user_id: int) -> Message:
    """Soft-delete a message. The conversation preview is left as it was."""
    message = await _own_message(db, message_id, user_id)
    message.deleted_at = utcnow()
    await db.flush()
    record_change(db, "messages", ChangeKind.UPDATE, row_to_dict(message))
    logger.info("message_deleted", message_id=message_id, conversation_id=message.conversation_id)
    return message


async def edit_message(db: AsyncSession, message_id: int, user_id: int, content: str) -> Message:
    message = await _own_message(db, message_id, user_id)
    text = (content or "").strip()
    if not text and not message.image_url:
        raise UsageError("Message cannot be empty")
    limit = get_settings().message_max_length
    if len(text) > limit:
        raise UsageError(f"Message exceeds {limit} characters")

    message.content = text
    message.edited_at = utcnow()
    await db.flush()
    record_change(db, "messages", ChangeKind.UPDATE, row_to_dict(message))
    return message
