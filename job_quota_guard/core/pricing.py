"""
Points pricing and subscription tier tables.

Handles point costs for paid actions and the tier discount applied to them.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_UP
from enum import Enum
from typing import Dict, Protocol


class SpendType(Enum):
    """Paid actions that debit points."""
    JOB_QUERY = "JOB_QUERY"
    COVER_LETTER = "COVER_LETTER"
    OUTREACH_MESSAGE = "OUTREACH_MESSAGE"
    CV_SUGGESTION = "CV_SUGGESTION"
    BULK_APPLICATION = "BULK_APPLICATION"
    PREMIUM_ANALYSIS = "PREMIUM_ANALYSIS"
    PREMIUM_SEARCH = "PREMIUM_SEARCH"


class PointsSource(Enum):
    """Where a points transaction originates."""
    SUBSCRIPTION_MONTHLY = "SUBSCRIPTION_MONTHLY"
    ACHIEVEMENT_BONUS = "ACHIEVEMENT_BONUS"
    STREAK_BONUS = "STREAK_BONUS"
    LEVEL_BONUS = "LEVEL_BONUS"
    PROMOTIONAL = "PROMOTIONAL"
    ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"


class SubscriptionTier(Enum):
    """Subscription tiers, ordered from cheapest to most expensive."""
    FREE = "FREE"
    BASIC = "BASIC"
    STARTER = "STARTER"
    PRO = "PRO"
    EXPERT = "EXPERT"


@dataclass(frozen=True)
class TierConfig:
    """Allocation attached to a subscription tier."""
    monthly_points: int
    xp_multiplier: float


class CostProvider(Protocol):
    """Source of point costs and tier allocations."""

    def get_points_cost(self, spend_type: SpendType) -> int:
        ...

    def get_subscription_tier(self, tier: SubscriptionTier) -> TierConfig:
        ...


@dataclass(frozen=True)
class CostTable:
    """Fixed cost table for paid actions and tiers."""
    points_costs: Dict[SpendType, int]
    tiers: Dict[SubscriptionTier, TierConfig]

    def get_points_cost(self, spend_type: SpendType) -> int:
        """Get the base point cost of an action.

        Args:
            spend_type: Paid action

        Returns:
            Base cost before any tier discount

        Raises:
            ValueError: If the action has no configured cost
        """
        if spend_type not in self.points_costs:
            raise ValueError(f"Unsupported spend type: {spend_type.value}")
        return self.points_costs[spend_type]

    def get_subscription_tier(self, tier: SubscriptionTier) -> TierConfig:
        """Get allocation for a subscription tier.

        Raises:
            ValueError: If the tier is not configured
        """
        if tier not in self.tiers:
            raise ValueError(f"Unsupported subscription tier: {tier.value}")
        return self.tiers[tier]


DEFAULT_COST_TABLE = CostTable(
    points_costs={
        SpendType.JOB_QUERY: 1,
        SpendType.COVER_LETTER: 1,
        SpendType.OUTREACH_MESSAGE: 1,
        SpendType.CV_SUGGESTION: 1,
        SpendType.BULK_APPLICATION: 8,  # 3 queries + 5 cover letters
        SpendType.PREMIUM_ANALYSIS: 5,
        SpendType.PREMIUM_SEARCH: 5,
    },
    tiers={
        SubscriptionTier.FREE: TierConfig(monthly_points=10, xp_multiplier=1.0),
        SubscriptionTier.BASIC: TierConfig(monthly_points=30, xp_multiplier=1.2),
        SubscriptionTier.STARTER: TierConfig(monthly_points=75, xp_multiplier=1.5),
        SubscriptionTier.PRO: TierConfig(monthly_points=200, xp_multiplier=1.75),
        SubscriptionTier.EXPERT: TierConfig(monthly_points=500, xp_multiplier=2.0),
    }
)

# Non-increasing with tier quality
TIER_EFFICIENCY: Dict[SubscriptionTier, Decimal] = {
    SubscriptionTier.FREE: Decimal("1.00"),
    SubscriptionTier.BASIC: Decimal("0.95"),
    SubscriptionTier.STARTER: Decimal("0.90"),
    SubscriptionTier.PRO: Decimal("0.85"),
    SubscriptionTier.EXPERT: Decimal("0.80"),
}

PREMIUM_ELIGIBLE_TIERS = frozenset({
    SubscriptionTier.STARTER,
    SubscriptionTier.PRO,
    SubscriptionTier.EXPERT,
})


def get_tier_factor(tier: SubscriptionTier) -> Decimal:
    """Discount factor for a tier, 1.00 for unknown tiers."""
    return TIER_EFFICIENCY.get(tier, Decimal("1.00"))


def apply_tier_discount(base_cost: int, tier: SubscriptionTier) -> int:
    """Apply the tier discount with conservative rounding.

    The discounted value is always rounded UP to a whole point so the
    provider is never undercharged.

    Args:
        base_cost: Undiscounted point cost
        tier: Subscription tier of the payer

    Returns:
        Effective cost in whole points
    """
    discounted = Decimal(base_cost) * get_tier_factor(tier)
    return int(discounted.to_integral_value(rounding=ROUND_UP))


def is_premium_eligible(tier: SubscriptionTier) -> bool:
    return tier in PREMIUM_ELIGIBLE_TIERS
