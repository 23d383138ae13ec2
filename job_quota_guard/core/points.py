"""
Points balance rules.

Pure calculations and validation for the points ledger. Nothing here
touches storage; the atomic operations live in ``core.ledger``.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional

from .pricing import (
    CostProvider,
    PointsSource,
    SpendType,
    SubscriptionTier,
    apply_tier_discount,
)
from job_quota_guard.storage.models import (
    PointsAward,
    PointsBalance,
    PointsTransaction,
    SpendRequest,
)

MAX_AWARD_POINTS = 100
MAX_STREAK_BONUS = 50
MAX_LEVEL_BONUS = 25
RESET_PERIOD_DAYS = 30

# Spend types tied to a generated artifact must carry its id
SOURCE_ID_REQUIRED: Dict[SpendType, str] = {
    SpendType.COVER_LETTER: "COVER_LETTER requires role ID",
    SpendType.OUTREACH_MESSAGE: "OUTREACH_MESSAGE requires role ID",
    SpendType.CV_SUGGESTION: "CV suggestion requires analysis or suggestion ID",
}


@dataclass(frozen=True)
class AffordCheck:
    """Result of checking a balance against an action's cost."""
    can_afford: bool
    cost: int
    shortfall: Optional[int] = None


@dataclass(frozen=True)
class SpendValidation:
    """Outcome of validating a spend or award."""
    is_valid: bool
    reason: Optional[str] = None


@dataclass
class UsageStats:
    """Aggregated points movement over a set of transactions."""
    total_spent: int = 0
    total_earned: int = 0
    spending_by_type: Dict[str, int] = field(default_factory=dict)
    earning_by_source: Dict[str, int] = field(default_factory=dict)


def calculate_available_points(monthly: int, used: int, earned: int) -> int:
    """Available balance, never negative."""
    return max(0, monthly + earned - used)


def get_effective_cost(
    spend_type: SpendType,
    tier: SubscriptionTier,
    cost_provider: CostProvider
) -> int:
    """Tier-discounted cost of an action, rounded up to a whole point.

    Args:
        spend_type: Paid action
        tier: Subscription tier of the payer
        cost_provider: Source of base costs

    Returns:
        Effective cost in points
    """
    base_cost = cost_provider.get_points_cost(spend_type)
    return apply_tier_discount(base_cost, tier)


def can_afford_action(
    spend_type: SpendType,
    balance: PointsBalance,
    cost_provider: CostProvider
) -> AffordCheck:
    """Check whether a balance covers the effective cost of an action."""
    cost = get_effective_cost(spend_type, balance.tier, cost_provider)
    if balance.available >= cost:
        return AffordCheck(can_afford=True, cost=cost)
    return AffordCheck(can_afford=False, cost=cost, shortfall=cost - balance.available)


def validate_points_spend(
    request: SpendRequest,
    cost_provider: CostProvider,
    tier: SubscriptionTier = SubscriptionTier.FREE
) -> SpendValidation:
    """Validate a spend request before it is applied.

    The amount must match the expected effective cost so that callers
    cannot choose their own price.

    Args:
        request: Spend to validate
        cost_provider: Source of base costs
        tier: Tier used to compute the expected cost

    Returns:
        SpendValidation with the first failing reason, if any
    """
    if request.amount < 0:
        return SpendValidation(False, "Points spend amount cannot be negative")

    expected = get_effective_cost(request.spend_type, tier, cost_provider)
    if request.amount != expected:
        return SpendValidation(
            False,
            f"Points amount {request.amount} does not match expected cost "
            f"{expected} for {request.spend_type.value}"
        )

    if request.spend_type in SOURCE_ID_REQUIRED and not request.source_id:
        return SpendValidation(False, SOURCE_ID_REQUIRED[request.spend_type])

    return SpendValidation(True)


def validate_points_award(award: PointsAward) -> SpendValidation:
    """Validate a points award against the bonus caps."""
    if award.amount < 0:
        return SpendValidation(False, "Points award amount cannot be negative")
    if award.amount > MAX_AWARD_POINTS:
        return SpendValidation(
            False,
            f"Points award {award.amount} exceeds maximum bonus {MAX_AWARD_POINTS}"
        )

    if award.source == PointsSource.ACHIEVEMENT_BONUS and not award.source_id:
        return SpendValidation(False, "Achievement bonus requires achievement ID")
    if award.source == PointsSource.STREAK_BONUS and award.amount > MAX_STREAK_BONUS:
        return SpendValidation(
            False, f"Streak bonus cannot exceed {MAX_STREAK_BONUS} points"
        )
    if award.source == PointsSource.LEVEL_BONUS and award.amount > MAX_LEVEL_BONUS:
        return SpendValidation(
            False, f"Level bonus cannot exceed {MAX_LEVEL_BONUS} points"
        )

    return SpendValidation(True)


def is_points_reset_needed(reset_date: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if reset_date is None:
        return True
    return (now or datetime.now()) >= reset_date


def get_next_reset_date(now: Optional[datetime] = None) -> datetime:
    return (now or datetime.now()) + timedelta(days=RESET_PERIOD_DAYS)


def calculate_usage_stats(transactions: Iterable[PointsTransaction]) -> UsageStats:
    """Summarize spending and earning across transactions."""
    spent_by_type: Dict[str, int] = defaultdict(int)
    earned_by_source: Dict[str, int] = defaultdict(int)
    stats = UsageStats()

    for tx in transactions:
        if tx.amount < 0:
            stats.total_spent += -tx.amount
            if tx.spend_type is not None:
                spent_by_type[tx.spend_type.value] += -tx.amount
        else:
            stats.total_earned += tx.amount
            earned_by_source[tx.source.value] += tx.amount

    stats.spending_by_type = dict(spent_by_type)
    stats.earning_by_source = dict(earned_by_source)
    return stats
