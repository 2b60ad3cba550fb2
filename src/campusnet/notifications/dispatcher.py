"""Notification derivation and dispatch.

The engines describe what happened as a domain event; ``derive_notifications``
turns it into one draft per receiver (pure, no I/O), suppressing
self-notifications. ``dispatch`` persists the drafts inside the caller's
transaction. The ``UNIQUE(receiver_id, event_key)`` constraint makes a
replayed event a no-op, and each insert is recorded on the change feed
routed by ``receiver_id`` so only the receiver's connections see it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from campusnet.db.base import utcnow
from campusnet.db.models import Notification
from campusnet.db.store import insert_ignore
from campusnet.feed.changes import ChangeKind, record_change, row_to_dict

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Domain events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReactionAdded:
    reaction_id: int
    actor_id: int
    actor_name: str
    owner_id: int
    reaction_type: str
    post_id: int | None
    comment_id: int | None = None


@dataclass(frozen=True)
class CommentPosted:
    comment_id: int
    actor_id: int
    actor_name: str
    post_id: int
    post_owner_id: int
    parent_owner_id: int | None = None


@dataclass(frozen=True)
class UserMentioned:
    actor_id: int
    actor_name: str
    mentioned_ids: tuple[int, ...]
    post_id: int | None
    comment_id: int | None = None


@dataclass(frozen=True)
class FollowCreated:
    edge_id: int
    actor_id: int
    actor_name: str
    followed_id: int


@dataclass(frozen=True)
class IdeaJoined:
    edge_id: int
    actor_id: int
    actor_name: str
    owner_id: int
    post_id: int


@dataclass(frozen=True)
class MessageSent:
    message_id: int
    conversation_id: int
    actor_id: int
    actor_name: str
    preview: str
    recipient_ids: tuple[int, ...] = field(default_factory=tuple)


DomainEvent = ReactionAdded | CommentPosted | UserMentioned | FollowCreated | IdeaJoined | MessageSent


@dataclass(frozen=True)
class NotificationDraft:
    receiver_id: int
    sender_id: int | None
    type: str
    message: str
    event_key: str
    post_id: int | None = None
    comment_id: int | None = None
    conversation_id: int | None = None


# ---------------------------------------------------------------------------
# Derivation
# ---------------------------------------------------------------------------


def _reaction_drafts(event: ReactionAdded) -> list[NotificationDraft]:
    target = "comment" if event.comment_id is not None else "post"
    if event.reaction_type == "like":
        type_, text = "like", f"{event.actor_name} liked your {target}"
    else:
        type_, text = "reaction", f"{event.actor_name} reacted {event.reaction_type} to your {target}"
    return [
        NotificationDraft(
            receiver_id=event.owner_id,
            sender_id=event.actor_id,
            type=type_,
            message=text,
            event_key=f"reaction:{event.reaction_id}:{event.reaction_type}",
            post_id=event.post_id,
            comment_id=event.comment_id,
        )
    ]


def _comment_drafts(event: CommentPosted) -> list[NotificationDraft]:
    drafts = [
        NotificationDraft(
            receiver_id=event.post_owner_id,
            sender_id=event.actor_id,
            type="comment",
            message=f"{event.actor_name} commented on your post",
            event_key=f"comment:{event.comment_id}",
            post_id=event.post_id,
            comment_id=event.comment_id,
        )
    ]
    if event.parent_owner_id is not None and event.parent_owner_id != event.post_owner_id:
        drafts.append(
            NotificationDraft(
                receiver_id=event.parent_owner_id,
                sender_id=event.actor_id,
                type="comment",
                message=f"{event.actor_name} replied to your comment",
                event_key=f"comment:{event.comment_id}",
                post_id=event.post_id,
                comment_id=event.comment_id,
            )
        )
    return drafts


def _mention_drafts(event: UserMentioned) -> list[NotificationDraft]:
    where = "a comment" if event.comment_id is not None else "a post"
    source = f"comment:{event.comment_id}" if event.comment_id is not None else f"post:{event.post_id}"
    return [
        NotificationDraft(
            receiver_id=receiver_id,
            sender_id=event.actor_id,
            type="mention",
            message=f"{event.actor_name} mentioned you in {where}",
            event_key=f"mention:{source}",
            post_id=event.post_id,
            comment_id=event.comment_id,
        )
        for receiver_id in sorted(set(event.mentioned_ids))
    ]


def derive_notifications(event: DomainEvent) -> list[NotificationDraft]:
    """Map a domain event to notification drafts, one per receiver."""
    if isinstance(event, ReactionAdded):
        drafts = _reaction_drafts(event)
    elif isinstance(event, CommentPosted):
        drafts = _comment_drafts(event)
    elif isinstance(event, UserMentioned):
        drafts = _mention_drafts(event)
    elif isinstance(event, FollowCreated):
        drafts = [
            NotificationDraft(
                receiver_id=event.followed_id,
                sender_id=event.actor_id,
                type="follow",
                message=f"{event.actor_name} started following you",
                event_key=f"follow:{event.edge_id}",
            )
        ]
    elif isinstance(event, IdeaJoined):
        drafts = [
            NotificationDraft(
                receiver_id=event.owner_id,
                sender_id=event.actor_id,
                type="join",
                message=f"{event.actor_name} joined your idea",
                event_key=f"join:{event.edge_id}",
                post_id=event.post_id,
            )
        ]
    elif isinstance(event, MessageSent):
        drafts = [
            NotificationDraft(
                receiver_id=receiver_id,
                sender_id=event.actor_id,
                type="message",
                message=f"{event.actor_name}: {event.preview}",
                event_key=f"message:{event.message_id}",
                conversation_id=event.conversation_id,
            )
            for receiver_id in sorted(set(event.recipient_ids))
        ]
    else:
        msg = f"Unknown domain event: {type(event).__name__}"
        raise TypeError(msg)

    # Self-notifications are suppressed; receivers are unique per event
    seen: set[int] = set()
    result = []
    for draft in drafts:
        if draft.receiver_id == draft.sender_id or draft.receiver_id in seen:
            continue
        seen.add(draft.receiver_id)
        result.append(draft)
    return result


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


async def dispatch(db: AsyncSession, event: DomainEvent) -> list[Notification]:
    """Persist the notifications derived from ``event`` in the current transaction."""
    created: list[Notification] = []
    for draft in derive_notifications(event):
        notification_id = await insert_ignore(
            db,
            Notification,
            {
                "receiver_id": draft.receiver_id,
                "sender_id": draft.sender_id,
                "type": draft.type,
                "message": draft.message,
                "post_id": draft.post_id,
                "comment_id": draft.comment_id,
                "conversation_id": draft.conversation_id,
                "event_key": draft.event_key,
                "read": False,
                "created_at": utcnow(),
            },
            ["receiver_id", "event_key"],
        )
        if notification_id is None:
            logger.debug("Notification %s for user %d already exists", draft.event_key, draft.receiver_id)
            continue

        notification = await db.get(Notification, notification_id)
        if notification is None:
            continue
        record_change(db, "notifications", ChangeKind.INSERT, row_to_dict(notification))
        created.append(notification)

    return created
