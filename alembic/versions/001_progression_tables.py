"""Progression tables.

Creates the points, XP/level, streak, badge and leaderboard tables.

Revision ID: 001_progression_tables
Revises:
Create Date: 2026-10-17
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_progression_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Points ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS points_accounts (
            user_id BIGINT PRIMARY KEY,
            balance BIGINT NOT NULL DEFAULT 0,
            version INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT points_accounts_balance_non_negative CHECK (balance >= 0)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS point_redemptions (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES points_accounts(user_id),
            reward_label VARCHAR(255) NOT NULL,
            points_spent BIGINT NOT NULL,
            redeemed_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT point_redemptions_points_spent_positive CHECK (points_spent >= 1)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_point_redemptions_user
        ON point_redemptions(user_id, redeemed_at)
    """)

    # --- XP & Levels ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS xp_entries (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL,
            amount INTEGER NOT NULL,
            reason VARCHAR(255) NOT NULL DEFAULT '',
            occurred_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT xp_entries_amount_non_negative CHECK (amount >= 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_xp_entries_user_occurred
        ON xp_entries(user_id, occurred_at)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS level_states (
            user_id BIGINT PRIMARY KEY,
            level INTEGER NOT NULL DEFAULT 1,
            points_into_level BIGINT NOT NULL DEFAULT 0,
            next_level_threshold BIGINT NOT NULL DEFAULT 100,
            total_xp BIGINT NOT NULL DEFAULT 0,
            version INTEGER NOT NULL DEFAULT 1,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS level_rewards (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES level_states(user_id),
            reward_type VARCHAR(16) NOT NULL,
            value VARCHAR(255) NOT NULL,
            achieved_at TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_level_rewards_user
        ON level_rewards(user_id)
    """)

    # --- Streaks ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS streak_states (
            user_id BIGINT PRIMARY KEY,
            streak_count INTEGER NOT NULL DEFAULT 0,
            longest_streak INTEGER NOT NULL DEFAULT 0,
            last_check_in TIMESTAMPTZ,
            version INTEGER NOT NULL DEFAULT 1,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Badges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badge_definitions (
            id SERIAL PRIMARY KEY,
            slug VARCHAR(64) UNIQUE NOT NULL,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL,
            condition_type VARCHAR(32) NOT NULL,
            bronze_threshold INTEGER NOT NULL,
            silver_threshold INTEGER NOT NULL,
            gold_threshold INTEGER NOT NULL,
            bronze_points INTEGER NOT NULL,
            silver_points INTEGER NOT NULL,
            gold_points INTEGER NOT NULL,
            sort_order INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_badge_defs_condition
        ON badge_definitions(condition_type)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS badge_awards (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL,
            badge_id INTEGER NOT NULL REFERENCES badge_definitions(id),
            tier VARCHAR(8) NOT NULL,
            awarded_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT badge_awards_user_badge_tier_key UNIQUE (user_id, badge_id, tier)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_badge_awards_user
        ON badge_awards(user_id)
    """)

    # --- Leaderboard ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS leaderboard_standings (
            user_id BIGINT PRIMARY KEY,
            completed_goals INTEGER NOT NULL DEFAULT 0,
            completed_milestones INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT leaderboard_standings_goals_non_negative CHECK (completed_goals >= 0),
            CONSTRAINT leaderboard_standings_milestones_non_negative CHECK (completed_milestones >= 0)
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS leaderboard_standings CASCADE")
    op.execute("DROP TABLE IF EXISTS badge_awards CASCADE")
    op.execute("DROP TABLE IF EXISTS badge_definitions CASCADE")
    op.execute("DROP TABLE IF EXISTS streak_states CASCADE")
    op.execute("DROP TABLE IF EXISTS level_rewards CASCADE")
    op.execute("DROP TABLE IF EXISTS level_states CASCADE")
    op.execute("DROP TABLE IF EXISTS xp_entries CASCADE")
    op.execute("DROP TABLE IF EXISTS point_redemptions CASCADE")
    op.execute("DROP TABLE IF EXISTS points_accounts CASCADE")
