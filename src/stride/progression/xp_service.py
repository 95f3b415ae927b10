"""XP history: append-only log of XP grants."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stride.db.models import XpEntry
from stride.progression.errors import InvalidAmount, InvalidArgument
from stride.progression.time_utils import utcnow

MAX_REASON_LENGTH = 255


def validate_grant(amount: int, reason: str) -> None:
    """Reject negative amounts and reasons longer than the column allows."""
    if amount < 0:
        msg = f"XP amount must be >= 0, got {amount}"
        raise InvalidAmount(msg)
    if len(reason) > MAX_REASON_LENGTH:
        msg = f"XP reason exceeds {MAX_REASON_LENGTH} characters"
        raise InvalidArgument(msg)


class XpHistory:
    """Reads and appends for the XP log. Entries are never updated."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    @staticmethod
    async def append(
        db: AsyncSession,
        user_id: int,
        amount: int,
        reason: str = "",
        occurred_at: datetime | None = None,
    ) -> XpEntry:
        """Insert a grant within the caller's transaction."""
        validate_grant(amount, reason)
        entry = XpEntry(
            user_id=user_id,
            amount=amount,
            reason=reason,
            occurred_at=occurred_at or utcnow(),
        )
        db.add(entry)
        await db.flush()
        return entry

    async def list_for_user(self, user_id: int, limit: int = 50, offset: int = 0) -> list[XpEntry]:
        """Grants for a user, newest first."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(XpEntry)
                .where(XpEntry.user_id == user_id)
                .order_by(XpEntry.occurred_at.desc(), XpEntry.id.desc())
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def count_for_user(self, user_id: int) -> int:
        async with self.session_factory() as db:
            result = await db.execute(select(func.count(XpEntry.id)).where(XpEntry.user_id == user_id))
            return int(result.scalar_one())

    async def total_for_user(self, user_id: int) -> int:
        """Cumulative XP ever granted to a user."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(func.coalesce(func.sum(XpEntry.amount), 0)).where(XpEntry.user_id == user_id)
            )
            return int(result.scalar_one())
