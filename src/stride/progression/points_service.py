"""Points ledger: redeemable balance and redemption history."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stride.db.models import PointsAccount, Redemption
from stride.db.upsert import insert_ignore
from stride.progression.concurrency import (
    DEFAULT_BACKOFF_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    UserLocks,
    run_serialized,
)
from stride.progression.errors import InsufficientBalance, InvalidAmount, InvalidArgument, UserNotFound
from stride.progression.events import CHANNEL_POINTS_UPDATE, publish_event
from stride.progression.leaderboard_service import invalidate_leaderboard_cache
from stride.progression.time_utils import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_REWARD_LABEL_LENGTH = 255


async def load_account(db: AsyncSession, user_id: int) -> PointsAccount | None:
    result = await db.execute(select(PointsAccount).where(PointsAccount.user_id == user_id))
    return result.scalar_one_or_none()


async def get_or_create_account(db: AsyncSession, user_id: int) -> PointsAccount:
    """Load the user's account, creating it at zero balance if absent."""
    account = await load_account(db, user_id)
    if account is None:
        now = utcnow()
        await insert_ignore(
            db,
            PointsAccount,
            {"user_id": user_id, "balance": 0, "version": 1, "created_at": now, "updated_at": now},
            ["user_id"],
        )
        result = await db.execute(select(PointsAccount).where(PointsAccount.user_id == user_id))
        account = result.scalar_one()
    return account


async def credit_points(db: AsyncSession, user_id: int, amount: int) -> PointsAccount:
    """Add ``amount`` inside the caller's transaction. Used by badge payouts."""
    if amount <= 0:
        msg = f"Points to add must be positive, got {amount}"
        raise InvalidAmount(msg)
    account = await get_or_create_account(db, user_id)
    account.balance += amount
    account.updated_at = utcnow()
    await db.flush()
    return account


async def debit_points(db: AsyncSession, user_id: int, amount: int) -> PointsAccount:
    """Remove ``amount`` inside the caller's transaction, never going below zero."""
    if amount <= 0:
        msg = f"Points to subtract must be positive, got {amount}"
        raise InvalidAmount(msg)
    account = await load_account(db, user_id)
    balance = account.balance if account is not None else 0
    if account is None or amount > balance:
        raise InsufficientBalance(user_id, balance, amount)
    account.balance -= amount
    account.updated_at = utcnow()
    await db.flush()
    return account


class PointsLedger:
    """Per-user point balances. All mutations are serialized per user."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis: object | None = None,
        locks: UserLocks | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
    ) -> None:
        self.session_factory = session_factory
        self.redis = redis
        self.locks = locks or UserLocks()
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds

    async def _mutate(
        self, user_id: int, operation: Callable[[AsyncSession], Awaitable[T]], op_name: str
    ) -> T:
        return await run_serialized(
            self.session_factory,
            self.locks,
            user_id,
            operation,
            op_name=op_name,
            max_attempts=self.max_attempts,
            backoff_seconds=self.backoff_seconds,
        )

    async def add_points(self, user_id: int, amount: int) -> int:
        """Credit ``amount`` points. Returns the new balance."""
        if amount <= 0:
            msg = f"Points to add must be positive, got {amount}"
            raise InvalidAmount(msg)

        async def _op(db: AsyncSession) -> int:
            account = await credit_points(db, user_id, amount)
            return account.balance

        balance = await self._mutate(user_id, _op, "add_points")
        await self._after_change(user_id, balance, amount)
        return balance

    async def subtract_points(self, user_id: int, amount: int) -> int:
        """Debit ``amount`` points. Returns the new balance."""
        if amount <= 0:
            msg = f"Points to subtract must be positive, got {amount}"
            raise InvalidAmount(msg)

        async def _op(db: AsyncSession) -> int:
            account = await debit_points(db, user_id, amount)
            return account.balance

        balance = await self._mutate(user_id, _op, "subtract_points")
        await self._after_change(user_id, balance, -amount)
        return balance

    async def record_redemption(self, user_id: int, reward_label: str, points_spent: int) -> Redemption:
        """Spend points on a reward. Returns the history row."""
        redemption, _ = await self.redeem(user_id, reward_label, points_spent)
        return redemption

    async def redeem(self, user_id: int, reward_label: str, points_spent: int) -> tuple[Redemption, int]:
        """Spend points on a reward. Returns the history row and the new balance.

        The balance check, debit and history append commit together or not
        at all, and the balance returned is the one that transaction wrote.
        """
        label = (reward_label or "").strip()
        if not label or len(label) > MAX_REWARD_LABEL_LENGTH:
            msg = f"Reward label must be 1-{MAX_REWARD_LABEL_LENGTH} characters"
            raise InvalidArgument(msg)
        if points_spent < 1:
            msg = f"Points spent must be at least 1, got {points_spent}"
            raise InvalidAmount(msg)

        async def _op(db: AsyncSession) -> tuple[Redemption, int]:
            account = await debit_points(db, user_id, points_spent)
            redemption = Redemption(
                user_id=user_id,
                reward_label=label,
                points_spent=points_spent,
                redeemed_at=utcnow(),
            )
            db.add(redemption)
            await db.flush()
            return redemption, account.balance

        redemption, balance = await self._mutate(user_id, _op, "record_redemption")
        logger.info("User %d redeemed %r for %d points", user_id, label, points_spent)
        await self._after_change(user_id, balance, -points_spent)
        return redemption, balance

    async def get_balance(self, user_id: int) -> int:
        """Current balance; 0 for users who never earned points."""
        async with self.session_factory() as db:
            account = await load_account(db, user_id)
            return account.balance if account is not None else 0

    async def get_account(self, user_id: int) -> PointsAccount:
        """Current account row. Raises ``UserNotFound`` if none exists yet."""
        async with self.session_factory() as db:
            account = await load_account(db, user_id)
        if account is None:
            raise UserNotFound(user_id, "points account")
        return account

    async def list_redemptions(self, user_id: int) -> list[Redemption]:
        """Redemption history, newest first."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(Redemption)
                .where(Redemption.user_id == user_id)
                .order_by(Redemption.redeemed_at.desc(), Redemption.id.desc())
            )
            return list(result.scalars().all())

    async def _after_change(self, user_id: int, balance: int, delta: int) -> None:
        await invalidate_leaderboard_cache(self.redis)
        await publish_event(
            self.redis,
            CHANNEL_POINTS_UPDATE,
            {"user_id": user_id, "balance": balance, "delta": delta},
        )
