"""Scoped change-feed subscriptions.

A ``Subscription`` is an async context manager owning one Redis pub/sub
connection. Entering it subscribes, leaving it unsubscribes and closes the
connection, so a subscription can never outlive the scope that opened it::

    async with Subscription(redis, Watch("messages", {"conversation_id": 7})) as sub:
        event = await sub.next_event(timeout=5)
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog

from campusnet.feed.changes import (
    ROUTING_COLUMNS,
    ChangeEvent,
    ChangeKind,
    routed_channel,
    table_channel,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class Watch:
    """What a subscription listens for on one table.

    ``filters`` are equality predicates on row columns. A filter on the
    table's routing column narrows the Redis channel itself (server-side
    filtering); any remaining filters are applied on receipt.
    """

    table: str
    filters: dict[str, Any] = field(default_factory=dict)
    kinds: frozenset[ChangeKind] = frozenset(ChangeKind)

    @property
    def channel(self) -> str:
        column = ROUTING_COLUMNS.get(self.table)
        if column is not None and column in self.filters:
            return routed_channel(self.table, column, self.filters[column])
        return table_channel(self.table)

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table or event.kind not in self.kinds:
            return False
        for column, expected in self.filters.items():
            actual = event.row.get(column)
            if isinstance(actual, (list, tuple)):
                if expected not in actual:
                    return False
            elif actual != expected:
                return False
        return True


class SubscriptionClosed(RuntimeError):
    """Raised when reading from a subscription whose scope has ended."""


class Subscription:
    """A live feed subscription bound to an ``async with`` scope."""

    def __init__(
        self,
        redis: Any,
        *watches: Watch,
        predicate: Callable[[ChangeEvent], bool] | None = None,
    ) -> None:
        if not watches:
            msg = "Subscription needs at least one Watch"
            raise ValueError(msg)
        self._redis = redis
        self.watches: tuple[Watch, ...] = watches
        self._predicate = predicate
        self._pubsub: Any | None = None
        self._closed = False

    @property
    def channels(self) -> list[str]:
        return sorted({w.channel for w in self.watches})

    @property
    def is_open(self) -> bool:
        return self._pubsub is not None and not self._closed

    async def open(self) -> Subscription:
        if self._closed:
            raise SubscriptionClosed("subscription already released")
        self._pubsub = self._redis.pubsub()
        await self._pubsub.subscribe(*self.channels)
        logger.debug("feed_subscribed", channels=self.channels)
        return self

    async def close(self) -> None:
        """Release the pub/sub connection. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        pubsub, self._pubsub = self._pubsub, None
        if pubsub is None:
            return
        try:
            await pubsub.unsubscribe()
        finally:
            await pubsub.aclose()
        logger.debug("feed_unsubscribed", channels=self.channels)

    async def __aenter__(self) -> Subscription:
        return await self.open()

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def matches(self, event: ChangeEvent) -> bool:
        if not any(w.matches(event) for w in self.watches):
            return False
        return self._predicate is None or self._predicate(event)

    async def next_event(self, timeout: float | None = None) -> ChangeEvent | None:
        """Wait for the next matching event; ``None`` once ``timeout`` elapses."""
        if not self.is_open:
            raise SubscriptionClosed("subscription is not open")

        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            remaining = 1.0 if deadline is None else max(deadline - loop.time(), 0.0)
            message = await self._pubsub.get_message(  # type: ignore[union-attr]
                ignore_subscribe_messages=True,
                timeout=remaining,
            )
            if message is not None:
                event = self._decode(message)
                if event is not None and self.matches(event):
                    return event
            if deadline is not None and loop.time() >= deadline:
                return None
            if message is None:
                # get_message may return early without data
                await asyncio.sleep(0.01)

    def _decode(self, message: dict[str, Any]) -> ChangeEvent | None:
        try:
            return ChangeEvent.from_json(message.get("data", b""))
        except (ValueError, KeyError, TypeError, UnicodeDecodeError):
            logger.warning("feed_invalid_message", channel=message.get("channel"))
            return None

    async def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        while self.is_open:
            event = await self.next_event(timeout=1.0)
            if event is not None:
                yield event


def watch(table: str, kinds: Iterable[ChangeKind] | None = None, **filters: Any) -> Watch:
    """Shorthand: ``watch("messages", conversation_id=7)``."""
    return Watch(table=table, filters=filters, kinds=frozenset(kinds) if kinds else frozenset(ChangeKind))
