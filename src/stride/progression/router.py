"""Progression API endpoints: read surface plus reward redemption."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from stride.config import Settings, get_settings
from stride.db.models import Redemption
from stride.dependencies import (
    get_badge_engine,
    get_leaderboard,
    get_level_engine,
    get_points_ledger,
    get_streak_tracker,
    get_xp_history,
)
from stride.progression.badge_service import TIER_ORDER, BadgeEngine, tier_points, tier_threshold
from stride.progression.leaderboard_service import LeaderboardAggregator
from stride.progression.level_service import LevelEngine
from stride.progression.points_service import PointsLedger
from stride.progression.schemas import (
    AllBadgesResponse,
    BadgeAwardResponse,
    BadgeDefinitionResponse,
    LeaderboardPage,
    LeaderboardPositionResponse,
    LevelResponse,
    LevelRewardResponse,
    PointsResponse,
    RedemptionRequest,
    RedemptionResponse,
    RedemptionResult,
    StreakResponse,
    UserBadgesResponse,
    XpHistoryEntry,
    XpHistoryResponse,
)
from stride.progression.streak_service import StreakTracker
from stride.progression.xp_service import XpHistory

router = APIRouter(prefix="/api/v1", tags=["Progression"])


def _redemption(r: Redemption) -> RedemptionResponse:
    return RedemptionResponse(
        id=r.id,
        reward=r.reward_label,
        points_spent=r.points_spent,
        redeemed_at=r.redeemed_at,
    )


# ── Points ──


@router.get("/users/{user_id}/points", response_model=PointsResponse)
async def get_points(user_id: int, ledger: PointsLedger = Depends(get_points_ledger)):  # noqa: B008
    """Balance and redemption history, newest first."""
    balance = await ledger.get_balance(user_id)
    redemptions = await ledger.list_redemptions(user_id)
    return PointsResponse(
        user_id=user_id,
        balance=balance,
        redemptions=[_redemption(r) for r in redemptions],
    )


@router.post("/users/{user_id}/points/redemptions", response_model=RedemptionResult, status_code=201)
async def redeem_reward(
    user_id: int,
    body: RedemptionRequest,
    ledger: PointsLedger = Depends(get_points_ledger),  # noqa: B008
):
    """Spend points on a reward. 409 when the balance does not cover it."""
    redemption, balance = await ledger.redeem(user_id, body.reward, body.points_spent)
    return RedemptionResult(redemption=_redemption(redemption), balance=balance)


# ── Level / XP ──


@router.get("/users/{user_id}/level", response_model=LevelResponse)
async def get_level(user_id: int, engine: LevelEngine = Depends(get_level_engine)):  # noqa: B008
    progress = await engine.get_level(user_id)
    rewards = await engine.list_rewards(user_id)
    return LevelResponse(
        user_id=user_id,
        level=progress.level,
        points_into_level=progress.points_into_level,
        next_level_threshold=progress.next_level_threshold,
        total_xp=progress.total_xp,
        rewards=[
            LevelRewardResponse(type=r.reward_type, value=r.value, achieved_at=r.achieved_at)
            for r in rewards
        ],
    )


@router.get("/users/{user_id}/xp", response_model=XpHistoryResponse)
async def get_xp_history(
    user_id: int,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    history: XpHistory = Depends(get_xp_history),  # noqa: B008
):
    """Paginated XP grants, newest first."""
    entries = await history.list_for_user(user_id, limit=per_page, offset=(page - 1) * per_page)
    total = await history.count_for_user(user_id)
    return XpHistoryResponse(
        entries=[
            XpHistoryEntry(amount=e.amount, reason=e.reason, occurred_at=e.occurred_at)
            for e in entries
        ],
        total=total,
        page=page,
        per_page=per_page,
    )


# ── Streak ──


@router.get("/users/{user_id}/streak", response_model=StreakResponse)
async def get_streak(user_id: int, tracker: StreakTracker = Depends(get_streak_tracker)):  # noqa: B008
    snapshot = await tracker.get_streak(user_id)
    return StreakResponse(
        user_id=user_id,
        streak_count=snapshot.streak_count,
        longest_streak=snapshot.longest_streak,
        last_check_in=snapshot.last_check_in,
    )


# ── Badges ──


@router.get("/users/{user_id}/badges", response_model=UserBadgesResponse)
async def get_user_badges(user_id: int, engine: BadgeEngine = Depends(get_badge_engine)):  # noqa: B008
    """Every tier the user holds, most recent first."""
    awards = await engine.list_awards(user_id)
    return UserBadgesResponse(
        awards=[
            BadgeAwardResponse(slug=badge.slug, name=badge.name, tier=award.tier, awarded_at=award.awarded_at)
            for award, badge in awards
        ],
        total_awarded=len(awards),
    )


@router.get("/badges", response_model=AllBadgesResponse)
async def list_badges(engine: BadgeEngine = Depends(get_badge_engine)):  # noqa: B008
    """All active badge definitions."""
    badges = await engine.load_definitions()
    return AllBadgesResponse(
        badges=[
            BadgeDefinitionResponse(
                slug=b.slug,
                name=b.name,
                description=b.description,
                condition_type=b.condition_type,
                thresholds={tier.value: tier_threshold(b, tier) for tier in reversed(TIER_ORDER)},
                points={tier.value: tier_points(b, tier) for tier in reversed(TIER_ORDER)},
            )
            for b in badges
        ]
    )


# ── Leaderboard ──


@router.get("/leaderboard", response_model=LeaderboardPage)
async def get_leaderboard_page(
    page: int = Query(1, ge=1),
    per_page: int | None = Query(None, ge=1),
    leaderboard: LeaderboardAggregator = Depends(get_leaderboard),  # noqa: B008
    settings: Settings = Depends(get_settings),  # noqa: B008
):
    """Ranked by goals, then milestones, then points."""
    return await leaderboard.rank(page, per_page or settings.leaderboard_default_page_size)


@router.get("/leaderboard/users/{user_id}", response_model=LeaderboardPositionResponse)
async def get_leaderboard_position(
    user_id: int,
    leaderboard: LeaderboardAggregator = Depends(get_leaderboard),  # noqa: B008
):
    entry = await leaderboard.entry_for(user_id)
    return LeaderboardPositionResponse(position=entry.position, entry=entry)
