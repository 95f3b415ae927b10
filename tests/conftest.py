"""Shared test fixtures.

Each test gets its own file-backed SQLite database (via aiosqlite) so the
dialect-aware upserts and version-column CAS run without Postgres. Redis is
either absent or an ``AsyncMock``.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from stride.db import models  # noqa: F401
from stride.db.base import Base
from stride.dependencies import get_db, get_redis_dep, get_session_factory_dep
from stride.main import create_app
from stride.progression.badge_service import BadgeEngine
from stride.progression.concurrency import UserLocks
from stride.progression.leaderboard_service import LeaderboardAggregator
from stride.progression.level_service import LevelEngine
from stride.progression.points_service import PointsLedger
from stride.progression.seed import seed_badges
from stride.progression.streak_service import StreakTracker
from stride.progression.xp_service import XpHistory


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh schema in a per-test SQLite file."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'stride.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory
    await engine.dispose()


@pytest_asyncio.fixture
async def seeded_factory(session_factory) -> async_sessionmaker[AsyncSession]:
    """Session factory with the default badge definitions loaded."""
    async with session_factory() as db:
        await seed_badges(db)
    return session_factory


@pytest.fixture
def mock_redis() -> MagicMock:
    """Redis stand-in recording publishes and cache traffic."""
    redis = MagicMock()
    redis.publish = AsyncMock(return_value=1)
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=0)
    redis.incr = AsyncMock(return_value=1)

    async def _scan_iter(match=None):  # noqa: ANN001, ARG001
        for key in ():
            yield key

    redis.scan_iter = MagicMock(side_effect=_scan_iter)
    return redis


@pytest.fixture
def memory_redis() -> MagicMock:
    """Redis stand-in backed by a dict, for tests that need cache reads to see cache writes."""
    store: dict[str, str] = {}
    redis = MagicMock()
    redis.store = store

    async def _get(key):  # noqa: ANN001
        return store.get(key)

    async def _set(key, value, ex=None):  # noqa: ANN001, ARG001
        store[key] = value
        return True

    async def _incr(key):  # noqa: ANN001
        store[key] = str(int(store.get(key, 0)) + 1)
        return int(store[key])

    async def _delete(*keys):  # noqa: ANN002
        return sum(store.pop(key, None) is not None for key in keys)

    async def _scan_iter(match=None):  # noqa: ANN001
        prefix = (match or "*").rstrip("*")
        for key in [k for k in store if k.startswith(prefix)]:
            yield key

    redis.get = AsyncMock(side_effect=_get)
    redis.set = AsyncMock(side_effect=_set)
    redis.incr = AsyncMock(side_effect=_incr)
    redis.delete = AsyncMock(side_effect=_delete)
    redis.scan_iter = MagicMock(side_effect=_scan_iter)
    redis.publish = AsyncMock(return_value=0)
    return redis


@pytest.fixture
def locks() -> UserLocks:
    return UserLocks()


@pytest.fixture
def points_ledger(session_factory, locks) -> PointsLedger:
    return PointsLedger(session_factory, locks=locks)


@pytest.fixture
def xp_history(session_factory) -> XpHistory:
    return XpHistory(session_factory)


@pytest.fixture
def level_engine(session_factory, locks) -> LevelEngine:
    return LevelEngine(session_factory, locks=locks)


@pytest.fixture
def streak_tracker(session_factory, locks) -> StreakTracker:
    return StreakTracker(session_factory, locks=locks)


@pytest.fixture
def badge_engine(seeded_factory, locks) -> BadgeEngine:
    return BadgeEngine(seeded_factory, locks=locks)


@pytest.fixture
def leaderboard(session_factory) -> LeaderboardAggregator:
    return LeaderboardAggregator(session_factory)


@pytest_asyncio.fixture
async def client(seeded_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, wired to the per-test database and no Redis."""
    app = create_app()

    async def _db() -> AsyncGenerator[AsyncSession, None]:
        async with seeded_factory() as session:
            yield session

    async def _redis() -> AsyncGenerator[object, None]:
        yield None

    app.dependency_overrides[get_session_factory_dep] = lambda: seeded_factory
    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_redis_dep] = _redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
