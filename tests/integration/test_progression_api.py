"""HTTP surface tests: read endpoints, redemption, error mapping."""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from stride.progression.badge_service import BadgeEngine
from stride.progression.leaderboard_service import LeaderboardAggregator
from stride.progression.level_service import LevelEngine
from stride.progression.points_service import PointsLedger
from stride.progression.streak_service import StreakTracker


class TestProbes:
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient) -> None:
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_version(self, client: AsyncClient) -> None:
        data = (await client.get("/version")).json()
        assert "version" in data
        assert "environment" in data

    @pytest.mark.asyncio
    async def test_ready_without_redis(self, client: AsyncClient) -> None:
        data = (await client.get("/ready")).json()
        assert data["status"] == "ready"
        assert data["checks"] == {"database": "ok", "badge_definitions": 6, "redis": "disabled"}

    @pytest.mark.asyncio
    async def test_request_id_generated(self, client: AsyncClient) -> None:
        response = await client.get("/health")
        assert len(response.headers["x-request-id"]) == 36

    @pytest.mark.asyncio
    async def test_request_id_preserved(self, client: AsyncClient) -> None:
        response = await client.get("/health", headers={"X-Request-Id": "abc-123"})
        assert response.headers["x-request-id"] == "abc-123"


class TestPointsEndpoints:
    @pytest.mark.asyncio
    async def test_unknown_user_has_zero_balance(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/users/1/points")
        assert response.status_code == 200
        assert response.json() == {"user_id": 1, "balance": 0, "redemptions": []}

    @pytest.mark.asyncio
    async def test_redeem(self, client: AsyncClient, seeded_factory) -> None:
        await PointsLedger(seeded_factory).add_points(1, 100)

        response = await client.post(
            "/api/v1/users/1/points/redemptions",
            json={"reward": "Movie ticket", "points_spent": 80},
        )
        assert response.status_code == 201
        data = response.json()
        assert data["balance"] == 20
        assert data["redemption"]["reward"] == "Movie ticket"

        points = (await client.get("/api/v1/users/1/points")).json()
        assert points["balance"] == 20
        assert [r["points_spent"] for r in points["redemptions"]] == [80]

    @pytest.mark.asyncio
    async def test_redeem_insufficient_balance(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/v1/users/1/points/redemptions",
            json={"reward": "Movie ticket", "points_spent": 80},
        )
        assert response.status_code == 409
        assert response.json()["code"] == "insufficient_balance"

    @pytest.mark.asyncio
    async def test_redeem_validation(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/v1/users/1/points/redemptions",
            json={"reward": "", "points_spent": 0},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_blank_label_maps_to_invalid_argument(self, client: AsyncClient, seeded_factory) -> None:
        await PointsLedger(seeded_factory).add_points(1, 10)
        response = await client.post(
            "/api/v1/users/1/points/redemptions",
            json={"reward": "   ", "points_spent": 1},
        )
        assert response.status_code == 422
        assert response.json()["code"] == "invalid_argument"


class TestLevelEndpoints:
    @pytest.mark.asyncio
    async def test_default_level(self, client: AsyncClient) -> None:
        data = (await client.get("/api/v1/users/1/level")).json()
        assert (data["level"], data["points_into_level"], data["next_level_threshold"]) == (1, 0, 100)
        assert data["rewards"] == []

    @pytest.mark.asyncio
    async def test_level_and_rewards(self, client: AsyncClient, seeded_factory) -> None:
        engine = LevelEngine(seeded_factory)
        await engine.add_xp(1, 125, "goal")
        await engine.add_reward(1, "discount", "5% off")

        data = (await client.get("/api/v1/users/1/level")).json()
        assert (data["level"], data["points_into_level"], data["next_level_threshold"]) == (2, 25, 120)
        assert data["total_xp"] == 125
        assert [(r["type"], r["value"]) for r in data["rewards"]] == [("discount", "5% off")]

    @pytest.mark.asyncio
    async def test_xp_history_paging(self, client: AsyncClient, seeded_factory) -> None:
        engine = LevelEngine(seeded_factory)
        start = datetime(2026, 5, 1, tzinfo=timezone.utc)
        for i in range(3):
            await engine.add_xp(1, 10 * (i + 1), f"grant {i}", occurred_at=start + timedelta(hours=i))

        data = (await client.get("/api/v1/users/1/xp", params={"page": 1, "per_page": 2})).json()
        assert data["total"] == 3
        assert [e["amount"] for e in data["entries"]] == [30, 20]

        data = (await client.get("/api/v1/users/1/xp", params={"page": 2, "per_page": 2})).json()
        assert [e["reason"] for e in data["entries"]] == ["grant 0"]


class TestStreakEndpoint:
    @pytest.mark.asyncio
    async def test_streak(self, client: AsyncClient, seeded_factory) -> None:
        tracker = StreakTracker(seeded_factory)
        start = datetime(2026, 5, 1, 9, tzinfo=timezone.utc)
        await tracker.record_check_in(1, start)
        await tracker.record_check_in(1, start + timedelta(days=1))

        data = (await client.get("/api/v1/users/1/streak")).json()
        assert (data["streak_count"], data["longest_streak"]) == (2, 2)
        assert data["last_check_in"] is not None


class TestBadgeEndpoints:
    @pytest.mark.asyncio
    async def test_list_definitions(self, client: AsyncClient) -> None:
        data = (await client.get("/api/v1/badges")).json()
        assert len(data["badges"]) == 6
        goal = data["badges"][0]
        assert goal["slug"] == "goal_completed"
        assert goal["thresholds"] == {"bronze": 1, "silver": 10, "gold": 50}
        assert goal["points"] == {"bronze": 50, "silver": 100, "gold": 200}

    @pytest.mark.asyncio
    async def test_user_badges(self, client: AsyncClient, seeded_factory) -> None:
        engine = BadgeEngine(seeded_factory)
        await engine.evaluate_condition(1, "goal_completed", 10)

        data = (await client.get("/api/v1/users/1/badges")).json()
        assert data["total_awarded"] == 2
        assert {a["tier"] for a in data["awards"]} == {"bronze", "silver"}

        points = (await client.get("/api/v1/users/1/points")).json()
        assert points["balance"] == 150


class TestLeaderboardEndpoints:
    @pytest.mark.asyncio
    async def test_page_and_position(self, client: AsyncClient, seeded_factory) -> None:
        board = LeaderboardAggregator(seeded_factory)
        await board.update_counts(1, 1, 0)
        await board.update_counts(2, 3, 0)

        data = (await client.get("/api/v1/leaderboard")).json()
        assert [e["user_id"] for e in data["entries"]] == [2, 1]
        assert data["per_page"] == 50

        position = (await client.get("/api/v1/leaderboard/users/1")).json()
        assert position["position"] == 2
        assert position["entry"]["completed_goals"] == 1

    @pytest.mark.asyncio
    async def test_unknown_user_position(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/leaderboard/users/404")
        assert response.status_code == 404
        assert response.json()["code"] == "user_not_found"

    @pytest.mark.asyncio
    async def test_page_size_over_limit(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/leaderboard", params={"per_page": 500})
        assert response.status_code == 422
        assert response.json()["code"] == "invalid_argument"
