"""Level engine: XP grants drive a cascading level threshold.

Every level costs ``next_level_threshold`` XP. Crossing it carries the
remainder into the next level and grows the threshold by 1.2x (floored).
A single grant may cross several thresholds.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from fractions import Fraction

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stride.db.models import LevelReward, LevelState
from stride.db.upsert import insert_ignore
from stride.progression.concurrency import (
    DEFAULT_BACKOFF_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    UserLocks,
    run_serialized,
)
from stride.progression.errors import InvalidArgument
from stride.progression.events import CHANNEL_LEVEL_UP, publish_event
from stride.progression.time_utils import utcnow
from stride.progression.xp_service import XpHistory, validate_grant

logger = logging.getLogger(__name__)

BASE_LEVEL_THRESHOLD = 100
# Exact 6/5 so floor() never suffers float rounding (e.g. 5 * 1.2 == 6.000000000000001).
LEVEL_GROWTH_FACTOR = Fraction(6, 5)
MAX_REWARD_VALUE_LENGTH = 255


class RewardType(str, Enum):
    BADGE = "badge"
    DISCOUNT = "discount"
    CUSTOMIZATION = "customization"


@dataclass(frozen=True)
class LevelProgress:
    level: int
    points_into_level: int
    next_level_threshold: int
    total_xp: int = 0
    levels_gained: int = 0


def next_threshold(threshold: int) -> int:
    """floor(threshold * 1.2)."""
    return math.floor(threshold * LEVEL_GROWTH_FACTOR)


def apply_level_cascade(points_into_level: int, level: int, threshold: int) -> LevelProgress:
    """Consume thresholds until the remainder no longer reaches the next one."""
    levels_gained = 0
    while points_into_level >= threshold:
        points_into_level -= threshold
        level += 1
        threshold = next_threshold(threshold)
        levels_gained += 1
    return LevelProgress(
        level=level,
        points_into_level=points_into_level,
        next_level_threshold=threshold,
        levels_gained=levels_gained,
    )


def _snapshot(state: LevelState | None, levels_gained: int = 0) -> LevelProgress:
    if state is None:
        return LevelProgress(level=1, points_into_level=0, next_level_threshold=BASE_LEVEL_THRESHOLD)
    return LevelProgress(
        level=state.level,
        points_into_level=state.points_into_level,
        next_level_threshold=state.next_level_threshold,
        total_xp=state.total_xp,
        levels_gained=levels_gained,
    )


async def load_level_state(db: AsyncSession, user_id: int) -> LevelState | None:
    result = await db.execute(select(LevelState).where(LevelState.user_id == user_id))
    return result.scalar_one_or_none()


async def get_or_create_level_state(db: AsyncSession, user_id: int) -> LevelState:
    """Get or create the level row with level 1 / threshold 100 defaults."""
    state = await load_level_state(db, user_id)
    if state is None:
        await insert_ignore(
            db,
            LevelState,
            {
                "user_id": user_id,
                "level": 1,
                "points_into_level": 0,
                "next_level_threshold": BASE_LEVEL_THRESHOLD,
                "total_xp": 0,
                "version": 1,
                "updated_at": utcnow(),
            },
            ["user_id"],
        )
        result = await db.execute(select(LevelState).where(LevelState.user_id == user_id))
        state = result.scalar_one()
    return state


class LevelEngine:
    """Applies XP grants to per-user level state."""

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

    async def add_xp(
        self,
        user_id: int,
        amount: int,
        reason: str = "",
        occurred_at: datetime | None = None,
    ) -> LevelProgress:
        """Grant XP and run the level-up cascade.

        The history append and the level update commit together. A zero
        grant is logged but cannot level the user up.
        """
        validate_grant(amount, reason)

        async def _op(db: AsyncSession) -> tuple[LevelProgress, int]:
            await XpHistory.append(db, user_id, amount, reason, occurred_at)
            state = await get_or_create_level_state(db, user_id)
            old_level = state.level

            cascade = apply_level_cascade(
                state.points_into_level + amount,
                state.level,
                state.next_level_threshold,
            )
            state.points_into_level = cascade.points_into_level
            state.level = cascade.level
            state.next_level_threshold = cascade.next_level_threshold
            state.total_xp += amount
            state.updated_at = utcnow()
            await db.flush()
            return _snapshot(state, cascade.levels_gained), old_level

        progress, old_level = await run_serialized(
            self.session_factory,
            self.locks,
            user_id,
            _op,
            op_name="add_xp",
            max_attempts=self.max_attempts,
            backoff_seconds=self.backoff_seconds,
        )

        if progress.levels_gained:
            logger.info("User %d levelled up %d -> %d", user_id, old_level, progress.level)
            await publish_event(
                self.redis,
                CHANNEL_LEVEL_UP,
                {"user_id": user_id, "old_level": old_level, "new_level": progress.level},
            )
        return progress

    async def add_reward(self, user_id: int, reward_type: RewardType | str, value: str) -> LevelReward:
        """Attach a reward to the user's level track. Duplicates are allowed."""
        try:
            kind = RewardType(reward_type)
        except ValueError:
            msg = f"Unknown reward type: {reward_type!r}"
            raise InvalidArgument(msg) from None
        if not value or len(value) > MAX_REWARD_VALUE_LENGTH:
            msg = f"Reward value must be 1-{MAX_REWARD_VALUE_LENGTH} characters"
            raise InvalidArgument(msg)

        async def _op(db: AsyncSession) -> LevelReward:
            await get_or_create_level_state(db, user_id)
            reward = LevelReward(
                user_id=user_id,
                reward_type=kind.value,
                value=value,
                achieved_at=utcnow(),
            )
            db.add(reward)
            await db.flush()
            return reward

        return await run_serialized(
            self.session_factory,
            self.locks,
            user_id,
            _op,
            op_name="add_reward",
            max_attempts=self.max_attempts,
            backoff_seconds=self.backoff_seconds,
        )

    async def get_level(self, user_id: int) -> LevelProgress:
        """Current level; defaults for users with no XP yet."""
        async with self.session_factory() as db:
            return _snapshot(await load_level_state(db, user_id))

    async def list_rewards(self, user_id: int) -> list[LevelReward]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(LevelReward)
                .where(LevelReward.user_id == user_id)
                .order_by(LevelReward.achieved_at.asc(), LevelReward.id.asc())
            )
            return list(result.scalars().all())
