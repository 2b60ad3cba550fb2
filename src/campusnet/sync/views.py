"""Live views: local projections kept in sync with the store through the change feed.

A view is an async context manager. Entering it opens its feed
subscriptions and loads the initial state; every matching feed event then
triggers an authoritative reload from the store. Leaving the scope cancels
the listener and releases every subscription, so no subscription outlives
the view that owns it::

    async with MessageThreadView(redis, user_id=1, conversation_id=7) as thread:
        await thread.wait_for_update(timeout=5)
        print(thread.state)

Reloads triggered by the feed never raise: a store failure is logged and the
last good state is kept until the next event. When the target itself goes
away (deleted post, revoked membership) the view keeps its last state and is
flagged ``stale``.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from contextlib import AsyncExitStack
from dataclasses import dataclass, field, replace
from typing import Any, Generic, TypeVar

import structlog
from redis.exceptions import RedisError
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campusnet.database import get_session_factory
from campusnet.db.models import Notification
from campusnet.engagement.reactions import ReactionResult, ReactionType, TargetKind, reaction_breakdown, set_reaction
from campusnet.errors import CampusError, TransientStoreFailure
from campusnet.feed import changes
from campusnet.feed.changes import ChangeEvent, ChangeKind
from campusnet.feed.subscription import Subscription, SubscriptionClosed, Watch, watch
from campusnet.messaging import service as messaging
from campusnet.notifications import service as notifications
from campusnet.posts.service import get_post_view

logger = structlog.get_logger()

S = TypeVar("S")

_RELOAD_ERRORS = (TransientStoreFailure, OperationalError, InterfaceError, OSError)


class LiveView(ABC, Generic[S]):
    """Base class for feed-driven views."""

    poll_timeout: float = 1.0

    def __init__(
        self,
        redis: Any,
        user_id: int,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self.redis = redis
        self.user_id = user_id
        self._session_factory = session_factory
        self._stack: AsyncExitStack | None = None
        self._subscription: Subscription | None = None
        self._task: asyncio.Task[None] | None = None
        self._updated = asyncio.Event()
        self.state: S | None = None
        self.version = 0
        self.stale_reason: str | None = None

    @abstractmethod
    def watches(self) -> list[Watch]:
        """The feed scopes this view depends on."""

    @abstractmethod
    async def load(self, db: AsyncSession) -> S:
        """Read the authoritative state from the store."""

    @property
    def is_active(self) -> bool:
        return self._subscription is not None and self._subscription.is_open

    @property
    def stale(self) -> bool:
        """True once a reload was refused by the store (target gone or access lost)."""
        return self.stale_reason is not None

    def session(self) -> AsyncSession:
        factory = self._session_factory or get_session_factory()
        return factory()

    async def __aenter__(self) -> LiveView[S]:
        stack = AsyncExitStack()
        try:
            self._subscription = await stack.enter_async_context(Subscription(self.redis, *self.watches()))
            await self.refresh()
            self._task = asyncio.create_task(self._listen(self._subscription))
            stack.push_async_callback(self._stop_listener)
        except BaseException:
            await stack.aclose()
            self._subscription = None
            raise
        self._stack = stack
        logger.debug("live_view_opened", view=type(self).__name__, user_id=self.user_id)
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        stack, self._stack = self._stack, None
        if stack is not None:
            await stack.aclose()
        self._subscription = None
        logger.debug("live_view_closed", view=type(self).__name__, user_id=self.user_id)

    async def _stop_listener(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.warning("live_view_listener_failed", view=type(self).__name__, exc_info=True)

    async def refresh(self) -> S:
        """Reload from the store. Errors propagate to the caller."""
        async with self.session() as db:
            state = await self.load(db)
        self._set_state(state)
        return state

    def _set_state(self, state: S) -> None:
        self.state = state
        self.stale_reason = None
        self.version += 1
        self._updated.set()

    async def handle_event(self, event: ChangeEvent) -> None:
        """React to one feed event by reloading; failures keep the last good state."""
        try:
            await self.refresh()
        except _RELOAD_ERRORS:
            logger.warning(
                "live_view_reload_failed",
                view=type(self).__name__,
                table=event.table,
                exc_info=True,
            )
        except CampusError as e:
            self.stale_reason = e.detail
            logger.info(
                "live_view_stale",
                view=type(self).__name__,
                table=event.table,
                code=e.code,
                detail=e.detail,
            )
            self._updated.set()

    async def _listen(self, subscription: Subscription) -> None:
        while True:
            try:
                event = await subscription.next_event(timeout=self.poll_timeout)
            except SubscriptionClosed:
                return
            except RedisError:
                logger.warning("live_view_feed_error", view=type(self).__name__, exc_info=True)
                await asyncio.sleep(self.poll_timeout)
                continue
            if event is None:
                continue
            try:
                await self.handle_event(event)
            except Exception:
                logger.exception("live_view_event_failed", view=type(self).__name__, table=event.table)

    async def wait_for_update(self, timeout: float | None = None, *, since: int | None = None) -> bool:
        """Wait until ``version`` moves past ``since``; False on timeout.

        Capture ``view.version`` before acting and pass it as ``since`` so an
        update that lands before this call is not missed. Without ``since``
        the version at call time is used.
        """
        target = self.version if since is None else since
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self.version <= target:
            self._updated.clear()
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            try:
                await asyncio.wait_for(self._updated.wait(), remaining)
            except asyncio.TimeoutError:
                return self.version > target
            if self.stale and self.version <= target:
                return False
        return True


# ---------------------------------------------------------------------------
# Concrete views
# ---------------------------------------------------------------------------


@dataclass
class ConversationListState:
    conversations: list[messaging.ConversationSummary] = field(default_factory=list)
    total_unread: int = 0


class ConversationListView(LiveView[ConversationListState]):
    """The user's conversation list with unread counts."""

    def watches(self) -> list[Watch]:
        return [
            watch("conversations", participant_ids=self.user_id),
            watch("conversation_participants", user_id=self.user_id),
        ]

    async def load(self, db: AsyncSession) -> ConversationListState:
        summaries = await messaging.list_conversations(db, self.user_id)
        total = await messaging.get_unread_count(db, self.user_id)
        return ConversationListState(conversations=summaries, total_unread=total)


class MessageThreadView(LiveView[list]):
    """Messages of one conversation in store order."""

    def __init__(self, redis: Any, user_id: int, conversation_id: int, **kwargs: Any) -> None:
        super().__init__(redis, user_id, **kwargs)
        self.conversation_id = conversation_id

    def watches(self) -> list[Watch]:
        return [watch("messages", conversation_id=self.conversation_id)]

    async def load(self, db: AsyncSession) -> list:
        return await messaging.list_messages(db, self.conversation_id, self.user_id)


@dataclass
class NotificationsState:
    notifications: list[Notification] = field(default_factory=list)
    unread_count: int = 0


class NotificationsView(LiveView[NotificationsState]):
    """The receiver's newest notifications; only the receiver's channel is subscribed."""

    page_size = 50

    def watches(self) -> list[Watch]:
        return [watch("notifications", receiver_id=self.user_id)]

    async def load(self, db: AsyncSession) -> NotificationsState:
        items, _ = await notifications.get_notifications(db, self.user_id, per_page=self.page_size)
        unread = await notifications.get_unread_count(db, self.user_id)
        return NotificationsState(notifications=items, unread_count=unread)


@dataclass(frozen=True)
class PostEngagement:
    reactions_count: int
    comments_count: int
    participants_count: int
    user_reaction: str | None
    breakdown: dict[str, int] = field(default_factory=dict)
    optimistic: bool = False


class PostEngagementView(LiveView[PostEngagement]):
    """Counters of one visible post.

    ``react`` patches the local state before the write completes; the patch
    is flagged ``optimistic`` and replaced by the next authoritative reload.
    """

    def __init__(self, redis: Any, user_id: int, post_id: int, **kwargs: Any) -> None:
        super().__init__(redis, user_id, **kwargs)
        self.post_id = post_id

    def watches(self) -> list[Watch]:
        return [
            watch("reactions", post_id=self.post_id),
            watch("comments", post_id=self.post_id),
            watch("idea_participants", post_id=self.post_id),
            watch("posts", kinds=[ChangeKind.DELETE], id=self.post_id),
        ]

    async def load(self, db: AsyncSession) -> PostEngagement:
        view = await get_post_view(db, self.post_id, self.user_id)
        breakdown = await reaction_breakdown(db, self.post_id, TargetKind.POST)
        return PostEngagement(
            reactions_count=view.reactions_count,
            comments_count=view.comments_count,
            participants_count=view.participants_count,
            user_reaction=view.user_reaction,
            breakdown=breakdown,
        )

    def apply_optimistic_reaction(self, reaction_type: ReactionType | str) -> PostEngagement | None:
        """Patch the local state as if the reaction call had already succeeded."""
        current = self.state
        if current is None:
            return None
        new_type = ReactionType(reaction_type).value
        breakdown = dict(current.breakdown)
        previous = current.user_reaction
        if previous is not None:
            breakdown[previous] = max(breakdown.get(previous, 0) - 1, 0)

        if previous == new_type:
            user_reaction, delta = None, -1
        else:
            user_reaction, delta = new_type, 0 if previous is not None else 1
            breakdown[new_type] = breakdown.get(new_type, 0) + 1

        patched = replace(
            current,
            reactions_count=max(current.reactions_count + delta, 0),
            user_reaction=user_reaction,
            breakdown={k: v for k, v in breakdown.items() if v > 0},
            optimistic=True,
        )
        self._set_state(patched)
        return patched

    async def react(self, reaction_type: ReactionType | str) -> ReactionResult:
        """Optimistically apply, then write. On failure the store state is reloaded."""
        self.apply_optimistic_reaction(reaction_type)
        async with self.session() as db:
            try:
                result = await set_reaction(db, self.user_id, self.post_id, TargetKind.POST, reaction_type)
                await changes.commit(db, self.redis)
            except Exception:
                await changes.rollback(db)
                await self._reconcile_after_failure()
                raise
        await self.refresh()
        return result

    async def _reconcile_after_failure(self) -> None:
        try:
            await self.refresh()
        except (*_RELOAD_ERRORS, CampusError):
            logger.warning("live_view_reload_failed", view=type(self).__name__, post_id=self.post_id, exc_info=True)
