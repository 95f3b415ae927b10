"""Badge engine: tiered (bronze/silver/gold) awards paid out in points.

Each (user, badge, tier) is awarded at most once, ever. The UNIQUE
constraint on badge_awards is the dedup mechanism: a tier is paid only when
this call's INSERT ... ON CONFLICT DO NOTHING actually created the row, and
the insert and the payout commit in the same transaction.

Evaluation always re-checks every tier against the current thresholds, so a
counter that jumps straight past gold earns bronze, silver and gold at once,
and repeating the call with the same (or a smaller) counter is a no-op.
"""

from __future__ import annotations

import logging
from enum import Enum

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stride.db.models import BadgeAward, BadgeDefinition
from stride.db.upsert import insert_ignore
from stride.progression.concurrency import (
    DEFAULT_BACKOFF_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    UserLocks,
    run_serialized,
)
from stride.progression.errors import ConfigurationError, InvalidAmount
from stride.progression.events import CHANNEL_BADGE_EARNED, publish_event
from stride.progression.leaderboard_service import invalidate_leaderboard_cache
from stride.progression.points_service import credit_points
from stride.progression.time_utils import utcnow

logger = logging.getLogger(__name__)


class BadgeTier(str, Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"


# Highest first.
TIER_ORDER: tuple[BadgeTier, ...] = (BadgeTier.GOLD, BadgeTier.SILVER, BadgeTier.BRONZE)


def tier_threshold(badge: BadgeDefinition, tier: BadgeTier) -> int:
    return getattr(badge, f"{tier.value}_threshold")


def tier_points(badge: BadgeDefinition, tier: BadgeTier) -> int:
    return getattr(badge, f"{tier.value}_points")


def validate_definition(badge: BadgeDefinition) -> None:
    """Raise ``ConfigurationError`` unless bronze <= silver <= gold and nothing is negative."""
    bronze, silver, gold = badge.bronze_threshold, badge.silver_threshold, badge.gold_threshold
    if not bronze <= silver <= gold:
        msg = f"Badge {badge.slug!r} has non-monotonic thresholds {bronze}/{silver}/{gold}"
        raise ConfigurationError(msg)
    if bronze < 0:
        msg = f"Badge {badge.slug!r} has a negative bronze threshold"
        raise ConfigurationError(msg)
    if min(badge.bronze_points or 0, badge.silver_points or 0, badge.gold_points or 0) < 0:
        msg = f"Badge {badge.slug!r} has a negative point award"
        raise ConfigurationError(msg)


def reachable_tiers(badge: BadgeDefinition, counter: int) -> list[BadgeTier]:
    """Tiers whose threshold ``counter`` meets, highest first."""
    return [tier for tier in TIER_ORDER if counter >= tier_threshold(badge, tier)]


async def awarded_tiers(db: AsyncSession, user_id: int, badge_id: int) -> set[BadgeTier]:
    result = await db.execute(
        select(BadgeAward.tier).where(
            BadgeAward.user_id == user_id,
            BadgeAward.badge_id == badge_id,
        )
    )
    return {BadgeTier(tier) for tier in result.scalars()}


class BadgeEngine:
    """Evaluates badge definitions against a user's running counters."""

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

    async def evaluate(self, user_id: int, badge: BadgeDefinition, counter: int) -> set[BadgeTier]:
        """Award every newly reachable tier of ``badge``. Returns the tiers awarded by this call."""
        validate_definition(badge)
        if counter < 0:
            msg = f"Badge counter cannot be negative, got {counter}"
            raise InvalidAmount(msg)

        candidates = reachable_tiers(badge, counter)
        if not candidates:
            return set()

        async def _op(db: AsyncSession) -> tuple[set[BadgeTier], int]:
            already = await awarded_tiers(db, user_id, badge.id)
            now = utcnow()
            new_tiers: set[BadgeTier] = set()
            payout = 0
            for tier in candidates:
                if tier in already:
                    continue
                created = await insert_ignore(
                    db,
                    BadgeAward,
                    {"user_id": user_id, "badge_id": badge.id, "tier": tier.value, "awarded_at": now},
                    ["user_id", "badge_id", "tier"],
                )
                if created:
                    new_tiers.add(tier)
                    payout += tier_points(badge, tier)
            if payout > 0:
                await credit_points(db, user_id, payout)
            return new_tiers, payout

        new_tiers, payout = await run_serialized(
            self.session_factory,
            self.locks,
            user_id,
            _op,
            op_name="evaluate_badge",
            max_attempts=self.max_attempts,
            backoff_seconds=self.backoff_seconds,
        )

        if new_tiers:
            logger.info(
                "User %d earned %s on badge %s (+%d points)",
                user_id, sorted(t.value for t in new_tiers), badge.slug, payout,
            )
            if payout:
                await invalidate_leaderboard_cache(self.redis)
            for tier in TIER_ORDER:
                if tier in new_tiers:
                    await publish_event(
                        self.redis,
                        CHANNEL_BADGE_EARNED,
                        {
                            "user_id": user_id,
                            "badge_slug": badge.slug,
                            "badge_name": badge.name,
                            "tier": tier.value,
                            "points": tier_points(badge, tier),
                        },
                    )
        return new_tiers

    async def evaluate_condition(
        self, user_id: int, condition_type: str, counter: int
    ) -> dict[str, set[BadgeTier]]:
        """Evaluate every active badge watching ``condition_type``.

        Misconfigured definitions are logged and skipped; the rest still run.
        Only badges that awarded something appear in the result.
        """
        awarded: dict[str, set[BadgeTier]] = {}
        for badge in await self.load_definitions(condition_type):
            try:
                tiers = await self.evaluate(user_id, badge, counter)
            except ConfigurationError:
                logger.error("Skipping misconfigured badge %s", badge.slug, exc_info=True)
                continue
            if tiers:
                awarded[badge.slug] = tiers
        return awarded

    async def load_definitions(self, condition_type: str | None = None) -> list[BadgeDefinition]:
        """Active badge definitions, optionally filtered by watched condition."""
        stmt = select(BadgeDefinition).where(BadgeDefinition.is_active.is_(True))
        if condition_type is not None:
            stmt = stmt.where(BadgeDefinition.condition_type == condition_type)
        async with self.session_factory() as db:
            result = await db.execute(stmt.order_by(BadgeDefinition.sort_order, BadgeDefinition.id))
            return list(result.scalars().all())

    async def get_definition(self, slug: str) -> BadgeDefinition | None:
        async with self.session_factory() as db:
            result = await db.execute(select(BadgeDefinition).where(BadgeDefinition.slug == slug))
            return result.scalar_one_or_none()

    async def list_awards(self, user_id: int) -> list[tuple[BadgeAward, BadgeDefinition]]:
        """Every tier a user holds with its definition, most recent first."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(BadgeAward, BadgeDefinition)
                .join(BadgeDefinition, BadgeAward.badge_id == BadgeDefinition.id)
                .where(BadgeAward.user_id == user_id)
                .order_by(BadgeAward.awarded_at.desc(), BadgeAward.id.desc())
            )
            return [(row.BadgeAward, row.BadgeDefinition) for row in result]
