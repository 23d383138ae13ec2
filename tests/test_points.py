"""
Unit tests for points balance rules.
"""

from datetime import datetime, timedelta

import pytest

from job_quota_guard.core.points import (
    calculate_available_points,
    calculate_usage_stats,
    can_afford_action,
    get_effective_cost,
    get_next_reset_date,
    is_points_reset_needed,
    validate_points_award,
    validate_points_spend,
)
from job_quota_guard.core.pricing import (
    DEFAULT_COST_TABLE,
    PointsSource,
    SpendType,
    SubscriptionTier,
)
from job_quota_guard.storage.models import (
    PointsAward,
    PointsBalance,
    PointsTransaction,
    SpendRequest,
)


def make_balance(available, tier=SubscriptionTier.FREE):
    return PointsBalance(monthly=available, used=0, earned=0, available=available, tier=tier)


class TestAvailablePoints:
    """Test balance arithmetic."""

    def test_basic_balance(self):
        assert calculate_available_points(100, 30, 10) == 80

    @pytest.mark.parametrize("monthly,used,earned", [
        (0, 0, 0),
        (10, 50, 0),
        (0, 1, 0),
        (5, 100, 20),
    ])
    def test_never_negative(self, monthly, used, earned):
        """Test that overspent accounts report zero, not a negative balance."""
        assert calculate_available_points(monthly, used, earned) >= 0


class TestEffectiveCost:
    """Test tier-discounted costs."""

    def test_free_tier_pays_base_cost(self):
        assert get_effective_cost(SpendType.JOB_QUERY, SubscriptionTier.FREE, DEFAULT_COST_TABLE) == 1

    def test_premium_search_for_starter(self):
        """Test that 5 * 0.90 rounds up to 5."""
        cost = get_effective_cost(SpendType.PREMIUM_SEARCH, SubscriptionTier.STARTER, DEFAULT_COST_TABLE)
        assert cost == 5

    def test_bulk_application_for_expert(self):
        """Test that 8 * 0.80 = 6.4 rounds up to 7."""
        cost = get_effective_cost(SpendType.BULK_APPLICATION, SubscriptionTier.EXPERT, DEFAULT_COST_TABLE)
        assert cost == 7


class TestCanAfford:
    """Test affordability checks."""

    def test_affordable(self):
        check = can_afford_action(SpendType.PREMIUM_SEARCH, make_balance(10, SubscriptionTier.PRO), DEFAULT_COST_TABLE)
        assert check.can_afford
        assert check.cost == 5
        assert check.shortfall is None

    def test_exact_balance_is_affordable(self):
        check = can_afford_action(SpendType.BULK_APPLICATION, make_balance(8), DEFAULT_COST_TABLE)
        assert check.can_afford

    def test_shortfall(self):
        check = can_afford_action(SpendType.PREMIUM_SEARCH, make_balance(3, SubscriptionTier.STARTER), DEFAULT_COST_TABLE)
        assert not check.can_afford
        assert check.cost == 5
        assert check.shortfall == 2


class TestValidatePointsSpend:
    """Test spend request validation."""

    def test_valid_job_query(self):
        request = SpendRequest("dev", 1, SpendType.JOB_QUERY, "job query")
        assert validate_points_spend(request, DEFAULT_COST_TABLE).is_valid

    def test_negative_amount(self):
        request = SpendRequest("dev", -1, SpendType.JOB_QUERY, "job query")
        result = validate_points_spend(request, DEFAULT_COST_TABLE)

        assert not result.is_valid
        assert result.reason == "Points spend amount cannot be negative"

    def test_amount_must_match_cost(self):
        """Test that a caller cannot choose its own price."""
        request = SpendRequest("dev", 2, SpendType.BULK_APPLICATION, "bulk")
        result = validate_points_spend(request, DEFAULT_COST_TABLE)

        assert not result.is_valid
        assert "does not match expected cost 8" in result.reason

    def test_amount_uses_tier_cost(self):
        request = SpendRequest("dev", 7, SpendType.BULK_APPLICATION, "bulk")
        assert validate_points_spend(request, DEFAULT_COST_TABLE, SubscriptionTier.EXPERT).is_valid

    def test_cover_letter_requires_role_id(self):
        request = SpendRequest("dev", 1, SpendType.COVER_LETTER, "letter")
        result = validate_points_spend(request, DEFAULT_COST_TABLE)

        assert not result.is_valid
        assert result.reason == "COVER_LETTER requires role ID"

    def test_cover_letter_with_role_id(self):
        request = SpendRequest("dev", 1, SpendType.COVER_LETTER, "letter", source_id="role-1")
        assert validate_points_spend(request, DEFAULT_COST_TABLE).is_valid

    def test_cv_suggestion_requires_id(self):
        request = SpendRequest("dev", 1, SpendType.CV_SUGGESTION, "cv")
        result = validate_points_spend(request, DEFAULT_COST_TABLE)

        assert not result.is_valid
        assert "analysis or suggestion ID" in result.reason


class TestValidatePointsAward:
    """Test award caps."""

    def test_valid_promotional_award(self):
        award = PointsAward("dev", 20, PointsSource.PROMOTIONAL, "welcome")
        assert validate_points_award(award).is_valid

    def test_award_over_maximum(self):
        award = PointsAward("dev", 101, PointsSource.ADMIN_ADJUSTMENT, "too much")
        result = validate_points_award(award)

        assert not result.is_valid
        assert "exceeds maximum bonus 100" in result.reason

    def test_achievement_requires_id(self):
        award = PointsAward("dev", 10, PointsSource.ACHIEVEMENT_BONUS, "first search")
        assert not validate_points_award(award).is_valid

    def test_streak_cap(self):
        award = PointsAward("dev", 51, PointsSource.STREAK_BONUS, "streak")
        assert not validate_points_award(award).is_valid

    def test_level_cap(self):
        assert validate_points_award(PointsAward("dev", 25, PointsSource.LEVEL_BONUS, "lvl")).is_valid
        assert not validate_points_award(PointsAward("dev", 26, PointsSource.LEVEL_BONUS, "lvl")).is_valid


class TestResetHelpers:
    """Test monthly reset helpers."""

    def test_reset_needed_without_date(self):
        assert is_points_reset_needed(None)

    def test_reset_needed_after_date(self):
        now = datetime(2024, 3, 1)
        assert is_points_reset_needed(now - timedelta(seconds=1), now)
        assert not is_points_reset_needed(now + timedelta(days=1), now)

    def test_next_reset_date(self):
        now = datetime(2024, 3, 1)
        assert get_next_reset_date(now) == datetime(2024, 3, 31)


class TestUsageStats:
    """Test transaction aggregation."""

    def test_spending_and_earning(self):
        created = datetime(2024, 1, 1)
        transactions = [
            PointsTransaction("1", "dev", -5, PointsSource.SUBSCRIPTION_MONTHLY, "premium search",
                              created, spend_type=SpendType.PREMIUM_SEARCH),
            PointsTransaction("2", "dev", -1, PointsSource.SUBSCRIPTION_MONTHLY, "job query",
                              created, spend_type=SpendType.JOB_QUERY),
            PointsTransaction("3", "dev", -5, PointsSource.SUBSCRIPTION_MONTHLY, "premium search",
                              created, spend_type=SpendType.PREMIUM_SEARCH),
            PointsTransaction("4", "dev", 20, PointsSource.STREAK_BONUS, "streak", created),
        ]

        stats = calculate_usage_stats(transactions)

        assert stats.total_spent == 11
        assert stats.total_earned == 20
        assert stats.spending_by_type == {"PREMIUM_SEARCH": 10, "JOB_QUERY": 1}
        assert stats.earning_by_source == {"STREAK_BONUS": 20}

    def test_empty(self):
        stats = calculate_usage_stats([])
        assert stats.total_spent == 0
        assert stats.spending_by_type == {}
