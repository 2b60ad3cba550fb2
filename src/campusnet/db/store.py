"""Store primitives shared by the engines.

* ``insert_ignore``: single-statement ``INSERT ... ON CONFLICT DO NOTHING``
  used wherever a uniqueness conflict means "already there".
* ``run_in_transaction``: executes a unit of work, translating connection
  failures into ``TransientStoreFailure`` and retrying idempotent work with
  exponential backoff.
* ``transact``: the request-level unit of work. Runs an operation, commits,
  then publishes its change-feed events.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.config import get_settings
from campusnet.db.base import Base
from campusnet.errors import ConstraintViolation, TransientStoreFailure
from campusnet.feed.changes import commit, discard_changes, rollback

logger = structlog.get_logger()

T = TypeVar("T")

_INSERT_BY_DIALECT = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


async def insert_ignore(
    db: AsyncSession,
    model: type[Base],
    values: dict[str, Any],
    conflict_columns: list[str],
) -> int | None:
    """Insert a row unless it violates the given unique key.

    Returns the new row id, or ``None`` when a row with the same key already
    exists (including one committed concurrently by another session).
    """
    dialect = db.get_bind().dialect.name
    insert_factory = _INSERT_BY_DIALECT.get(dialect)
    if insert_factory is None:
        msg = f"Unsupported dialect for insert_ignore: {dialect}"
        raise RuntimeError(msg)

    stmt = (
        insert_factory(model)
        .values(**values)
        .on_conflict_do_nothing(index_elements=conflict_columns)
        .returning(model.id)  # type: ignore[attr-defined]
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def run_in_transaction(
    db: AsyncSession,
    work: Callable[[], Awaitable[T]],
    *,
    idempotent: bool,
    attempts: int | None = None,
) -> T:
    """Run ``work`` (which must commit) with store-failure handling.

    Idempotent work is retried with exponential backoff after a rollback;
    non-idempotent work (plain message appends) is attempted exactly once.
    """
    settings = get_settings()
    max_attempts = (attempts or settings.store_retry_attempts) if idempotent else 1
    base_delay = settings.store_retry_base_delay_seconds

    for attempt in range(1, max_attempts + 1):
        try:
            return await work()
        except (OperationalError, InterfaceError, TransientStoreFailure) as exc:
            await db.rollback()
            discard_changes(db)
            if attempt >= max_attempts:
                logger.warning("store_unavailable", attempts=attempt, error=str(exc))
                raise TransientStoreFailure(str(exc)) from exc
            delay = base_delay * (2 ** (attempt - 1))
            logger.info("store_retry", attempt=attempt, delay=delay, error=str(exc))
            await asyncio.sleep(delay)

    msg = "unreachable"
    raise AssertionError(msg)


async def transact(
    db: AsyncSession,
    redis: Any | None,
    operation: Callable[[], Awaitable[T]],
    *,
    idempotent: bool = True,
) -> T:
    """Run ``operation``, commit, publish its changes; roll back on any error."""

    async def work() -> T:
        try:
            result = await operation()
            await commit(db, redis)
        except IntegrityError as exc:
            await rollback(db)
            raise ConstraintViolation(str(exc.orig)) from exc
        except Exception:
            await rollback(db)
            raise
        return result

    return await run_in_transaction(db, work, idempotent=idempotent)
