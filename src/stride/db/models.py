"""ORM models for the progression & rewards ledgers.

Per-user state rows (points, level, streak) carry a ``version`` column used
as SQLAlchemy's ``version_id_col``: every UPDATE is a compare-and-swap on it.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column

from stride.db.base import BigIntPK, Base

# ---------------------------------------------------------------------------
# Points
# ---------------------------------------------------------------------------


class PointsAccount(Base):
    """Redeemable point balance, one row per user, created on first earn."""

    __tablename__ = "points_accounts"
    __table_args__ = (CheckConstraint("balance >= 0", name="points_accounts_balance_non_negative"),)

    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __mapper_args__ = {"version_id_col": version}  # noqa: RUF012


class Redemption(Base):
    """Reward redemption history. Never deleted."""

    __tablename__ = "point_redemptions"
    __table_args__ = (
        CheckConstraint("points_spent >= 1", name="point_redemptions_points_spent_positive"),
        Index("idx_point_redemptions_user", "user_id", "redeemed_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("points_accounts.user_id"), nullable=False
    )
    reward_label: Mapped[str] = mapped_column(String(255), nullable=False)
    points_spent: Mapped[int] = mapped_column(BigInteger, nullable=False)
    redeemed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# XP & Levels
# ---------------------------------------------------------------------------


class XpEntry(Base):
    """Immutable XP grant log."""

    __tablename__ = "xp_entries"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="xp_entries_amount_non_negative"),
        Index("idx_xp_entries_user_occurred", "user_id", "occurred_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class LevelState(Base):
    """Current level progress: points_into_level < next_level_threshold after every write."""

    __tablename__ = "level_states"

    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    points_into_level: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    next_level_threshold: Mapped[int] = mapped_column(BigInteger, nullable=False, default=100, server_default="100")
    total_xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __mapper_args__ = {"version_id_col": version}  # noqa: RUF012


class LevelReward(Base):
    """Rewards attached to a user's level track (badge, discount, customization)."""

    __tablename__ = "level_rewards"
    __table_args__ = (Index("idx_level_rewards_user", "user_id"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("level_states.user_id"), nullable=False)
    reward_type: Mapped[str] = mapped_column(String(16), nullable=False)
    value: Mapped[str] = mapped_column(String(255), nullable=False)
    achieved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Streaks
# ---------------------------------------------------------------------------


class StreakState(Base):
    """Consecutive daily check-ins with a 36h grace window."""

    __tablename__ = "streak_states"

    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    streak_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_check_in: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __mapper_args__ = {"version_id_col": version}  # noqa: RUF012


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------


class BadgeDefinition(Base):
    """Tiered badge configuration, seeded on startup."""

    __tablename__ = "badge_definitions"
    __table_args__ = (Index("idx_badge_defs_condition", "condition_type"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    condition_type: Mapped[str] = mapped_column(String(32), nullable=False)
    bronze_threshold: Mapped[int] = mapped_column(Integer, nullable=False)
    silver_threshold: Mapped[int] = mapped_column(Integer, nullable=False)
    gold_threshold: Mapped[int] = mapped_column(Integer, nullable=False)
    bronze_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    silver_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    gold_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())


class BadgeAward(Base):
    """Tiers granted to users. UNIQUE(user_id, badge_id, tier) is the dedup mechanism."""

    __tablename__ = "badge_awards"
    __table_args__ = (
        UniqueConstraint("user_id", "badge_id", "tier", name="badge_awards_user_badge_tier_key"),
        Index("idx_badge_awards_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    badge_id: Mapped[int] = mapped_column(Integer, ForeignKey("badge_definitions.id"), nullable=False)
    tier: Mapped[str] = mapped_column(String(8), nullable=False)
    awarded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------


class LeaderboardStanding(Base):
    """Externally-owned goal / milestone completion counts used for ranking."""

    __tablename__ = "leaderboard_standings"
    __table_args__ = (
        CheckConstraint("completed_goals >= 0", name="leaderboard_standings_goals_non_negative"),
        CheckConstraint("completed_milestones >= 0", name="leaderboard_standings_milestones_non_negative"),
    )

    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    completed_goals: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    completed_milestones: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
