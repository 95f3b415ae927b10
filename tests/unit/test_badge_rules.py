"""Badge tier rules: reachable tiers and definition validation."""

import pytest

from stride.db.models import BadgeDefinition
from stride.progression.badge_service import (
    TIER_ORDER,
    BadgeTier,
    reachable_tiers,
    tier_points,
    tier_threshold,
    validate_definition,
)
from stride.progression.errors import ConfigurationError
from stride.progression.seed import BADGE_SEED_DATA


def _badge(bronze=1, silver=10, gold=50, points=(50, 100, 200)) -> BadgeDefinition:
    return BadgeDefinition(
        slug="test_badge",
        name="Test",
        description="",
        condition_type="test",
        bronze_threshold=bronze,
        silver_threshold=silver,
        gold_threshold=gold,
        bronze_points=points[0],
        silver_points=points[1],
        gold_points=points[2],
    )


class TestReachableTiers:
    """Tiers a counter qualifies for, highest first."""

    def test_below_bronze(self):
        assert reachable_tiers(_badge(bronze=2), 1) == []

    def test_bronze_only(self):
        assert reachable_tiers(_badge(), 1) == [BadgeTier.BRONZE]

    def test_silver_includes_bronze(self):
        assert reachable_tiers(_badge(), 10) == [BadgeTier.SILVER, BadgeTier.BRONZE]

    def test_past_gold_reaches_all(self):
        assert reachable_tiers(_badge(), 1000) == [BadgeTier.GOLD, BadgeTier.SILVER, BadgeTier.BRONZE]

    def test_equal_thresholds_award_together(self):
        assert reachable_tiers(_badge(bronze=5, silver=5, gold=5), 5) == list(TIER_ORDER)


class TestTierAccessors:
    def test_threshold_and_points(self):
        badge = _badge()
        assert tier_threshold(badge, BadgeTier.SILVER) == 10
        assert tier_points(badge, BadgeTier.GOLD) == 200


class TestValidateDefinition:
    """bronze <= silver <= gold, nothing negative."""

    def test_valid_definition_passes(self):
        validate_definition(_badge())

    def test_silver_below_bronze(self):
        with pytest.raises(ConfigurationError):
            validate_definition(_badge(bronze=10, silver=5, gold=50))

    def test_gold_below_silver(self):
        with pytest.raises(ConfigurationError):
            validate_definition(_badge(bronze=1, silver=10, gold=9))

    def test_negative_threshold(self):
        with pytest.raises(ConfigurationError):
            validate_definition(_badge(bronze=-1))

    def test_negative_points(self):
        with pytest.raises(ConfigurationError):
            validate_definition(_badge(points=(10, -5, 20)))

    def test_seed_data_is_valid(self):
        for data in BADGE_SEED_DATA:
            validate_definition(BadgeDefinition(**data))

    def test_seed_slugs_unique(self):
        slugs = [data["slug"] for data in BADGE_SEED_DATA]
        assert len(slugs) == len(set(slugs))
