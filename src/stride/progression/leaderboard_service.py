"""Leaderboard projection: ranks users by goals, milestones, then points.

Ordering is fixed: completed_goals DESC, completed_milestones DESC,
total_points DESC, user_id ASC. Pages and single-user positions are both
read from the same ``row_number()`` window, so they always agree.

Rendered pages are cached in Redis under a generation number. Any change to
standings or balances bumps the generation before dropping cached pages, so
a page computed from a read that raced the change is written under a key
nothing reads any more. Redis failures fall back to the database.
"""

from __future__ import annotations

import logging
import math

from sqlalchemy import delete, func, select, union
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql.selectable import Subquery

from stride.db.models import LeaderboardStanding, PointsAccount
from stride.db.upsert import dialect_insert
from stride.progression.errors import InvalidAmount, InvalidArgument, UserNotFound
from stride.progression.schemas import LeaderboardEntry, LeaderboardPage
from stride.progression.time_utils import utcnow

logger = logging.getLogger(__name__)

CACHE_PREFIX = "leaderboard:"
# Outside CACHE_PREFIX so invalidation never deletes it.
GENERATION_KEY = "leaderboard_generation"
DEFAULT_CACHE_TTL_SECONDS = 60
DEFAULT_MAX_PAGE_SIZE = 100


def build_page_key(page: int, per_page: int, generation: int = 0) -> str:
    return f"{CACHE_PREFIX}page:{generation}:{page}:{per_page}"


async def invalidate_leaderboard_cache(redis: object | None) -> None:
    """Bump the cache generation, then drop every cached leaderboard page."""
    if redis is None:
        return
    try:
        await redis.incr(GENERATION_KEY)  # type: ignore[attr-defined]
        keys = [key async for key in redis.scan_iter(match=f"{CACHE_PREFIX}*")]  # type: ignore[attr-defined]
        if keys:
            await redis.delete(*keys)  # type: ignore[attr-defined]
    except Exception:
        logger.warning("Failed to invalidate leaderboard cache", exc_info=True)


def ranked_standings() -> Subquery:
    """Every user with a standing or a points account, with their 1-based position."""
    population = union(
        select(LeaderboardStanding.user_id.label("user_id")),
        select(PointsAccount.user_id.label("user_id")),
    ).subquery("population")

    goals = func.coalesce(LeaderboardStanding.completed_goals, 0)
    milestones = func.coalesce(LeaderboardStanding.completed_milestones, 0)
    points = func.coalesce(PointsAccount.balance, 0)

    return (
        select(
            population.c.user_id,
            goals.label("completed_goals"),
            milestones.label("completed_milestones"),
            points.label("total_points"),
            func.row_number()
            .over(order_by=(goals.desc(), milestones.desc(), points.desc(), population.c.user_id.asc()))
            .label("position"),
        )
        .select_from(population)
        .outerjoin(LeaderboardStanding, LeaderboardStanding.user_id == population.c.user_id)
        .outerjoin(PointsAccount, PointsAccount.user_id == population.c.user_id)
        .subquery("ranked")
    )


def _entry(row) -> LeaderboardEntry:  # noqa: ANN001
    return LeaderboardEntry(
        position=int(row.position),
        user_id=int(row.user_id),
        completed_goals=int(row.completed_goals),
        completed_milestones=int(row.completed_milestones),
        total_points=int(row.total_points),
    )


class LeaderboardAggregator:
    """Read-only ranking over points balances and external completion counts."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis: object | None = None,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        max_page_size: int = DEFAULT_MAX_PAGE_SIZE,
    ) -> None:
        self.session_factory = session_factory
        self.redis = redis
        self.cache_ttl_seconds = cache_ttl_seconds
        self.max_page_size = max_page_size

    async def rank(self, page: int = 1, page_size: int = 50) -> LeaderboardPage:
        """One page of the leaderboard, best first."""
        if page < 1:
            msg = f"page must be >= 1, got {page}"
            raise InvalidArgument(msg)
        if not 1 <= page_size <= self.max_page_size:
            msg = f"page_size must be between 1 and {self.max_page_size}, got {page_size}"
            raise InvalidArgument(msg)

        # Read before querying: a change committed mid-query bumps it past this page.
        generation = await self._cache_generation()
        cache_key = build_page_key(page, page_size, generation) if generation is not None else None
        if cache_key is not None:
            cached = await self._cache_get(cache_key)
            if cached is not None:
                return cached

        ranked = ranked_standings()
        async with self.session_factory() as db:
            total = int((await db.execute(select(func.count()).select_from(ranked))).scalar_one())
            rows = await db.execute(
                select(ranked)
                .order_by(ranked.c.position)
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            entries = [_entry(row) for row in rows]

        result = LeaderboardPage(
            entries=entries,
            total_entries=total,
            current_page=page,
            total_pages=math.ceil(total / page_size) if total else 0,
            per_page=page_size,
        )
        if cache_key is not None:
            await self._cache_set(cache_key, result)
        return result

    async def entry_for(self, user_id: int) -> LeaderboardEntry:
        """The user's ranked entry. Raises ``UserNotFound`` if not on the board."""
        ranked = ranked_standings()
        async with self.session_factory() as db:
            row = (await db.execute(select(ranked).where(ranked.c.user_id == user_id))).first()
        if row is None:
            raise UserNotFound(user_id, "leaderboard entry")
        return _entry(row)

    async def position_of(self, user_id: int) -> int:
        """1-based rank under the same ordering as ``rank``."""
        return (await self.entry_for(user_id)).position

    async def update_counts(self, user_id: int, completed_goals: int, completed_milestones: int) -> None:
        """Record a user's externally-owned goal and milestone completion counts."""
        if completed_goals < 0 or completed_milestones < 0:
            msg = "Completion counts cannot be negative"
            raise InvalidAmount(msg)

        now = utcnow()
        async with self.session_factory() as db, db.begin():
            stmt = dialect_insert(db, LeaderboardStanding).values(
                user_id=user_id,
                completed_goals=completed_goals,
                completed_milestones=completed_milestones,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id"],
                set_={
                    "completed_goals": stmt.excluded.completed_goals,
                    "completed_milestones": stmt.excluded.completed_milestones,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await db.execute(stmt)

        await invalidate_leaderboard_cache(self.redis)
        logger.info("Leaderboard counts updated for user %d", user_id)

    async def reset(self) -> int:
        """Clear all standings. Points balances are untouched."""
        async with self.session_factory() as db, db.begin():
            result = await db.execute(delete(LeaderboardStanding))
        await invalidate_leaderboard_cache(self.redis)
        logger.info("Leaderboard reset (%d standings removed)", result.rowcount)
        return int(result.rowcount or 0)

    async def _cache_generation(self) -> int | None:
        """Current cache generation, or None when the cache is unusable."""
        if self.redis is None:
            return None
        try:
            raw = await self.redis.get(GENERATION_KEY)  # type: ignore[attr-defined]
        except Exception:
            logger.warning("Leaderboard cache generation read failed", exc_info=True)
            return None
        return int(raw) if raw else 0

    async def _cache_get(self, key: str) -> LeaderboardPage | None:
        if self.redis is None:
            return None
        try:
            raw = await self.redis.get(key)  # type: ignore[attr-defined]
        except Exception:
            logger.warning("Leaderboard cache read failed", exc_info=True)
            return None
        if not raw:
            return None
        return LeaderboardPage.model_validate_json(raw)

    async def _cache_set(self, key: str, page: LeaderboardPage) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.set(key, page.model_dump_json(), ex=self.cache_ttl_seconds)  # type: ignore[attr-defined]
        except Exception:
            logger.warning("Leaderboard cache write failed", exc_info=True)
