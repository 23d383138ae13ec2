"""
Data models for storage layer.

Defines ledger entities and value objects.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from job_quota_guard.core.pricing import PointsSource, SpendType, SubscriptionTier


@dataclass(frozen=True)
class PointsAccount:
    """Point balance row for one developer.

    Mutated only through the ledger's atomic operations.
    """
    developer_id: str
    monthly_points: int
    points_used: int
    points_earned: int
    subscription_tier: SubscriptionTier
    reset_date: Optional[datetime] = None


@dataclass(frozen=True)
class PointsTransaction:
    """Immutable audit record of a points movement.

    Append-only entries that create an auditable ledger of point usage.
    Once written, these records must never be modified.
    """
    id: str
    developer_id: str
    amount: int  # negative for spends
    source: PointsSource
    description: str
    created_at: datetime
    spend_type: Optional[SpendType] = None
    source_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SpendRequest:
    """A points spend to be validated before reaching the ledger."""
    user_id: str
    amount: int
    spend_type: SpendType
    description: str
    source_id: Optional[str] = None


@dataclass(frozen=True)
class PointsAward:
    """A points award to be validated before reaching the ledger."""
    user_id: str
    amount: int
    source: PointsSource
    description: str
    source_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PointsBalance:
    """Read model of an account's balance."""
    monthly: int
    used: int
    earned: int
    available: int
    tier: SubscriptionTier
    reset_date: Optional[datetime] = None
