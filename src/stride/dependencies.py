"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stride.config import Settings, get_settings
from stride.database import get_session as _get_session
from stride.database import get_session_factory as _get_session_factory
from stride.progression.badge_service import BadgeEngine
from stride.progression.concurrency import UserLocks
from stride.progression.leaderboard_service import LeaderboardAggregator
from stride.progression.level_service import LevelEngine
from stride.progression.points_service import PointsLedger
from stride.progression.streak_service import StreakTracker
from stride.progression.xp_service import XpHistory
from stride.redis_client import get_optional_redis

get_db = _get_session


async def get_redis_dep() -> AsyncGenerator[object | None, None]:
    """Yield the Redis client, or None when Redis is disabled."""
    yield get_optional_redis()


def get_session_factory_dep() -> async_sessionmaker[AsyncSession]:
    return _get_session_factory()


@lru_cache
def get_user_locks() -> UserLocks:
    """One lock registry per process, shared by every ledger service."""
    return UserLocks()


def get_points_ledger(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory_dep),  # noqa: B008
    redis: object = Depends(get_redis_dep),  # noqa: B008
    locks: UserLocks = Depends(get_user_locks),  # noqa: B008
    settings: Settings = Depends(get_settings),  # noqa: B008
) -> PointsLedger:
    return PointsLedger(
        session_factory,
        redis,
        locks,
        max_attempts=settings.ledger_max_attempts,
        backoff_seconds=settings.ledger_retry_backoff_seconds,
    )


def get_level_engine(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory_dep),  # noqa: B008
    redis: object = Depends(get_redis_dep),  # noqa: B008
    locks: UserLocks = Depends(get_user_locks),  # noqa: B008
    settings: Settings = Depends(get_settings),  # noqa: B008
) -> LevelEngine:
    return LevelEngine(
        session_factory,
        redis,
        locks,
        max_attempts=settings.ledger_max_attempts,
        backoff_seconds=settings.ledger_retry_backoff_seconds,
    )


def get_xp_history(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory_dep),  # noqa: B008
) -> XpHistory:
    return XpHistory(session_factory)


def get_streak_tracker(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory_dep),  # noqa: B008
    redis: object = Depends(get_redis_dep),  # noqa: B008
    locks: UserLocks = Depends(get_user_locks),  # noqa: B008
    settings: Settings = Depends(get_settings),  # noqa: B008
) -> StreakTracker:
    return StreakTracker(
        session_factory,
        redis,
        locks,
        max_attempts=settings.ledger_max_attempts,
        backoff_seconds=settings.ledger_retry_backoff_seconds,
    )


def get_badge_engine(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory_dep),  # noqa: B008
    redis: object = Depends(get_redis_dep),  # noqa: B008
    locks: UserLocks = Depends(get_user_locks),  # noqa: B008
    settings: Settings = Depends(get_settings),  # noqa: B008
) -> BadgeEngine:
    return BadgeEngine(
        session_factory,
        redis,
        locks,
        max_attempts=settings.ledger_max_attempts,
        backoff_seconds=settings.ledger_retry_backoff_seconds,
    )


def get_leaderboard(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory_dep),  # noqa: B008
    redis: object = Depends(get_redis_dep),  # noqa: B008
    settings: Settings = Depends(get_settings),  # noqa: B008
) -> LeaderboardAggregator:
    return LeaderboardAggregator(
        session_factory,
        redis,
        cache_ttl_seconds=settings.leaderboard_cache_ttl_seconds,
        max_page_size=settings.leaderboard_max_page_size,
    )
