"""Badge seed data: tiered definitions for each tracked condition."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from stride.db.models import BadgeDefinition
from stride.db.upsert import dialect_insert
from stride.progression.badge_service import validate_definition
from stride.progression.errors import ConfigurationError

logger = logging.getLogger(__name__)

BADGE_SEED_DATA: list[dict] = [
    {
        "slug": "goal_completed",
        "name": "Goal Getter",
        "description": "Complete goals you set for yourself",
        "condition_type": "goal_completed",
        "bronze_threshold": 1,
        "silver_threshold": 10,
        "gold_threshold": 50,
        "bronze_points": 50,
        "silver_points": 100,
        "gold_points": 200,
        "sort_order": 1,
    },
    {
        "slug": "milestone_achiever",
        "name": "Milestone Achiever",
        "description": "Hit milestones on the way to your goals",
        "condition_type": "milestone_achiever",
        "bronze_threshold": 5,
        "silver_threshold": 25,
        "gold_threshold": 100,
        "bronze_points": 100,
        "silver_points": 200,
        "gold_points": 400,
        "sort_order": 2,
    },
    {
        "slug": "consistency_master",
        "name": "Consistency Master",
        "description": "Keep a daily check-in streak alive",
        "condition_type": "consistency_master",
        "bronze_threshold": 7,
        "silver_threshold": 30,
        "gold_threshold": 100,
        "bronze_points": 75,
        "silver_points": 150,
        "gold_points": 300,
        "sort_order": 3,
    },
    {
        "slug": "point_earner",
        "name": "Point Earner",
        "description": "Accumulate experience across everything you do",
        "condition_type": "point_earner",
        "bronze_threshold": 500,
        "silver_threshold": 2500,
        "gold_threshold": 10000,
        "bronze_points": 40,
        "silver_points": 80,
        "gold_points": 160,
        "sort_order": 4,
    },
    {
        "slug": "helper",
        "name": "Helper",
        "description": "Support other members of your groups",
        "condition_type": "helper",
        "bronze_threshold": 1,
        "silver_threshold": 20,
        "gold_threshold": 100,
        "bronze_points": 30,
        "silver_points": 60,
        "gold_points": 120,
        "sort_order": 5,
    },
    {
        "slug": "event_badge",
        "name": "Event Regular",
        "description": "Take part in community events",
        "condition_type": "event_badge",
        "bronze_threshold": 1,
        "silver_threshold": 5,
        "gold_threshold": 20,
        "bronze_points": 20,
        "silver_points": 40,
        "gold_points": 80,
        "sort_order": 6,
    },
]

_UPDATABLE_COLUMNS = (
    "name",
    "description",
    "condition_type",
    "bronze_threshold",
    "silver_threshold",
    "gold_threshold",
    "bronze_points",
    "silver_points",
    "gold_points",
    "sort_order",
)


async def seed_badges(db: AsyncSession, definitions: list[dict] | None = None) -> int:
    """Upsert badge definitions by slug. Returns the number seeded.

    A definition failing validation is logged and skipped; the others still load.
    """
    seeded = 0
    for badge_data in definitions if definitions is not None else BADGE_SEED_DATA:
        try:
            validate_definition(BadgeDefinition(**badge_data))
        except ConfigurationError:
            logger.error("Rejected badge definition %s", badge_data.get("slug"), exc_info=True)
            continue

        stmt = dialect_insert(db, BadgeDefinition).values(**badge_data)
        stmt = stmt.on_conflict_do_update(
            index_elements=["slug"],
            set_={column: getattr(stmt.excluded, column) for column in _UPDATABLE_COLUMNS},
        )
        await db.execute(stmt)
        seeded += 1

    await db.commit()
    logger.info("Seeded %d badge definitions", seeded)
    return seeded
