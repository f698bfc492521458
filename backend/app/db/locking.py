"""
Row locking helpers.

Rows read through these helpers are re-read from the database (never taken
from the session's identity map) and locked until the transaction ends.
SQLite ignores FOR UPDATE; its single writer gives the same ordering.

Lock order: a load before its offers, offers before the truck. Every
writer that touches more than one of these rows follows it.
"""

from typing import Optional, Type, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError

ModelT = TypeVar("ModelT")

# deadlock_detected, serialization_failure, lock_not_available
LOCK_CONFLICT_SQLSTATES = frozenset({"40P01", "40001", "55P03"})


async def lock_row(db: AsyncSession, model: Type[ModelT], row_id: int) -> Optional[ModelT]:
    """SELECT ... FOR UPDATE by primary key, refreshing any cached instance."""
    result = await db.execute(
        select(model)
        .where(model.id == row_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def is_lock_conflict(exc: DBAPIError) -> bool:
    """True when the database aborted the transaction over a lock (deadlock, serialization)."""
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in LOCK_CONFLICT_SQLSTATES:
        return True
    return "deadlock detected" in str(orig)
