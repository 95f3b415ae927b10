"""Pydantic models for progression endpoints and the leaderboard cache."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

# --- Points ---


class RedemptionResponse(BaseModel):
    id: int
    reward: str
    points_spent: int
    redeemed_at: datetime


class PointsResponse(BaseModel):
    user_id: int
    balance: int
    redemptions: list[RedemptionResponse]


class RedemptionRequest(BaseModel):
    reward: str = Field(min_length=1, max_length=255)
    points_spent: int = Field(ge=1)


class RedemptionResult(BaseModel):
    redemption: RedemptionResponse
    balance: int


# --- Level / XP ---


class LevelRewardResponse(BaseModel):
    type: str
    value: str
    achieved_at: datetime


class LevelResponse(BaseModel):
    user_id: int
    level: int
    points_into_level: int
    next_level_threshold: int
    total_xp: int
    rewards: list[LevelRewardResponse] = []


class XpHistoryEntry(BaseModel):
    amount: int
    reason: str
    occurred_at: datetime


class XpHistoryResponse(BaseModel):
    entries: list[XpHistoryEntry]
    total: int
    page: int
    per_page: int


# --- Streak ---


class StreakResponse(BaseModel):
    user_id: int
    streak_count: int
    longest_streak: int
    last_check_in: datetime | None = None


# --- Badges ---


class BadgeDefinitionResponse(BaseModel):
    slug: str
    name: str
    description: str
    condition_type: str
    thresholds: dict[str, int]
    points: dict[str, int]


class AllBadgesResponse(BaseModel):
    badges: list[BadgeDefinitionResponse]


class BadgeAwardResponse(BaseModel):
    slug: str
    name: str
    tier: str
    awarded_at: datetime


class UserBadgesResponse(BaseModel):
    awards: list[BadgeAwardResponse]
    total_awarded: int


# --- Leaderboard ---


class LeaderboardEntry(BaseModel):
    position: int
    user_id: int
    completed_goals: int
    completed_milestones: int
    total_points: int


class LeaderboardPage(BaseModel):
    entries: list[LeaderboardEntry]
    total_entries: int
    current_page: int
    total_pages: int
    per_page: int


class LeaderboardPositionResponse(BaseModel):
    position: int
    entry: LeaderboardEntry
