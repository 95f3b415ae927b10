"""Per-user serialization for ledger mutations.

Two layers:

1. ``UserLocks``: an in-process ``asyncio.Lock`` per user id, so concurrent
   calls for the same user inside one worker run one at a time. Locks for
   different users are independent.
2. ``run_serialized``: runs the mutation in its own transaction. Ledger rows
   carry a ``version_id_col``; a write that loses a race against another
   process raises ``StaleDataError``, which is retried with backoff up to
   ``max_attempts`` times and then escalated as ``LedgerUpdateFailed``.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from stride.progression.errors import ConcurrentUpdateConflict, LedgerUpdateFailed

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BACKOFF_SECONDS = 0.01


class UserLocks:
    """Registry of per-user locks. Entries vanish once no coroutine holds them."""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()

    def for_user(self, user_id: int) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock


async def run_serialized(
    session_factory: async_sessionmaker[AsyncSession],
    locks: UserLocks,
    user_id: int,
    operation: Callable[[AsyncSession], Awaitable[T]],
    *,
    op_name: str,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
) -> T:
    """Run ``operation`` in one committed transaction, serialized per user.

    Domain errors raised by ``operation`` roll the transaction back and
    propagate unchanged.
    """
    async with locks.for_user(user_id):
        last_conflict: Exception | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                async with session_factory() as db, db.begin():
                    return await operation(db)
            except (StaleDataError, ConcurrentUpdateConflict) as exc:
                last_conflict = exc
                logger.warning(
                    "Conflict on %s for user %d (attempt %d/%d)",
                    op_name, user_id, attempt, max_attempts,
                )
                if attempt < max_attempts:
                    await asyncio.sleep(backoff_seconds * attempt)

        logger.error("Giving up on %s for user %d after %d attempts", op_name, user_id, max_attempts)
        msg = f"{op_name} for user {user_id} failed after {max_attempts} attempts"
        raise LedgerUpdateFailed(msg) from last_conflict
