"""Check-in streaks with a 36-hour grace window."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stride.db.models import StreakState
from stride.db.upsert import insert_ignore
from stride.progression.concurrency import (
    DEFAULT_BACKOFF_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    UserLocks,
    run_serialized,
)
from stride.progression.events import CHANNEL_STREAK_UPDATE, publish_event
from stride.progression.time_utils import as_utc, utcnow

logger = logging.getLogger(__name__)

# 1.5 days: tolerates checking in at a different hour each day, still breaks after a skipped day.
STREAK_GRACE_WINDOW = timedelta(hours=36)


@dataclass(frozen=True)
class StreakSnapshot:
    streak_count: int
    longest_streak: int
    last_check_in: datetime | None
    continued: bool = False


def continues_streak(last_check_in: datetime | None, now: datetime) -> bool:
    """True if a check-in at ``now`` extends a streak last touched at ``last_check_in``."""
    if last_check_in is None:
        return False
    return as_utc(now) - as_utc(last_check_in) <= STREAK_GRACE_WINDOW


def _snapshot(state: StreakState | None, continued: bool = False) -> StreakSnapshot:
    if state is None:
        return StreakSnapshot(streak_count=0, longest_streak=0, last_check_in=None)
    return StreakSnapshot(
        streak_count=state.streak_count,
        longest_streak=state.longest_streak,
        last_check_in=as_utc(state.last_check_in) if state.last_check_in else None,
        continued=continued,
    )


async def load_streak_state(db: AsyncSession, user_id: int) -> StreakState | None:
    result = await db.execute(select(StreakState).where(StreakState.user_id == user_id))
    return result.scalar_one_or_none()


async def get_or_create_streak_state(db: AsyncSession, user_id: int) -> StreakState:
    state = await load_streak_state(db, user_id)
    if state is None:
        await insert_ignore(
            db,
            StreakState,
            {
                "user_id": user_id,
                "streak_count": 0,
                "longest_streak": 0,
                "last_check_in": None,
                "version": 1,
                "updated_at": utcnow(),
            },
            ["user_id"],
        )
        result = await db.execute(select(StreakState).where(StreakState.user_id == user_id))
        state = result.scalar_one()
    return state


class StreakTracker:
    """Consecutive check-in counter per user.

    There is no once-per-day guard: each check-in inside the grace window
    increments. Callers that need daily semantics gate before calling.
    """

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

    async def record_check_in(self, user_id: int, now: datetime | None = None) -> StreakSnapshot:
        """Extend the streak if within the grace window, otherwise restart it at 1."""
        check_in_at = as_utc(now) if now is not None else utcnow()

        async def _op(db: AsyncSession) -> tuple[StreakSnapshot, int]:
            state = await get_or_create_streak_state(db, user_id)
            previous = state.streak_count
            continued = continues_streak(state.last_check_in, check_in_at)

            state.streak_count = previous + 1 if continued else 1
            state.longest_streak = max(state.longest_streak, state.streak_count)
            state.last_check_in = check_in_at
            state.updated_at = utcnow()
            await db.flush()
            return _snapshot(state, continued), previous

        snapshot, previous = await run_serialized(
            self.session_factory,
            self.locks,
            user_id,
            _op,
            op_name="record_check_in",
            max_attempts=self.max_attempts,
            backoff_seconds=self.backoff_seconds,
        )

        if not snapshot.continued and previous > 1:
            logger.info("User %d broke a %d-check-in streak", user_id, previous)
            await publish_event(
                self.redis,
                CHANNEL_STREAK_UPDATE,
                {"user_id": user_id, "event": "streak_broken", "streak_length": previous},
            )
        await publish_event(
            self.redis,
            CHANNEL_STREAK_UPDATE,
            {"user_id": user_id, "event": "check_in", "streak_length": snapshot.streak_count},
        )
        return snapshot

    async def reset_streak(self, user_id: int) -> StreakSnapshot:
        """Administrative reset: count 0, no last check-in. Longest streak is kept."""

        async def _op(db: AsyncSession) -> StreakSnapshot:
            state = await load_streak_state(db, user_id)
            if state is None:
                return _snapshot(None)
            state.streak_count = 0
            state.last_check_in = None
            state.updated_at = utcnow()
            await db.flush()
            return _snapshot(state)

        snapshot = await run_serialized(
            self.session_factory,
            self.locks,
            user_id,
            _op,
            op_name="reset_streak",
            max_attempts=self.max_attempts,
            backoff_seconds=self.backoff_seconds,
        )
        logger.info("Streak reset for user %d", user_id)
        return snapshot

    async def get_streak(self, user_id: int) -> StreakSnapshot:
        async with self.session_factory() as db:
            return _snapshot(await load_streak_state(db, user_id))
