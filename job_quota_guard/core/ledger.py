"""
Points ledger with race-free debits.

Every balance change re-reads the account inside a serializable
transaction and writes the balance update and its audit record together.
"""

import logging
import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .errors import ErrorKind, StoreUnavailableError
from .points import (
    calculate_available_points,
    get_effective_cost,
    validate_points_award,
)
from .pricing import CostProvider, DEFAULT_COST_TABLE, PointsSource, SpendType
from job_quota_guard.storage.models import PointsAward, PointsBalance
from job_quota_guard.storage.repository import LedgerRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpendResult:
    """Outcome of an atomic spend."""
    success: bool
    points_spent: int = 0
    new_balance: Optional[int] = None
    transaction_id: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    shortfall: Optional[int] = None


@dataclass(frozen=True)
class AwardResult:
    """Outcome of an atomic award."""
    success: bool
    new_balance: Optional[int] = None
    transaction_id: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class _SpendRejected(Exception):
    """Aborts a ledger transaction, rolling it back."""

    def __init__(self, result):
        super().__init__(result.error)
        self.result = result


class PointsLedger:
    """Owns point balances and applies atomic spends and awards."""

    def __init__(
        self,
        repository: LedgerRepository,
        cost_provider: CostProvider = DEFAULT_COST_TABLE
    ):
        self.repository = repository
        self.cost_provider = cost_provider

    def get_balance(self, user_id: str) -> Optional[PointsBalance]:
        """Current balance for a user, or None if the account is unknown."""
        account = self.repository.get_account(user_id)
        if account is None:
            return None
        return PointsBalance(
            monthly=account.monthly_points,
            used=account.points_used,
            earned=account.points_earned,
            available=calculate_available_points(
                account.monthly_points, account.points_used, account.points_earned
            ),
            tier=account.subscription_tier,
            reset_date=account.reset_date
        )

    def spend_points_atomic(
        self,
        user_id: str,
        spend_type: SpendType,
        source_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> SpendResult:
        """Debit the effective cost of an action exactly once.

        Runs as a single serializable transaction that re-reads the account,
        recomputes the available balance from that fresh row, and either
        rejects the spend leaving the account unchanged or increments
        ``points_used`` and appends the audit record together.

        Args:
            user_id: Developer whose balance is debited
            spend_type: Paid action
            source_id: Id of the artifact the spend pays for
            metadata: Extra data stored on the transaction

        Returns:
            SpendResult; insufficient balance and unknown users are
            reported through ``error_kind`` rather than raised

        Raises:
            StoreUnavailableError: If the backing store fails
        """
        try:
            with self.repository.transaction() as conn:
                account = self.repository.fetch_account(conn, user_id)
                if account is None:
                    raise _SpendRejected(SpendResult(
                        success=False,
                        error="User not found",
                        error_kind=ErrorKind.USER_NOT_FOUND
                    ))

                cost = get_effective_cost(spend_type, account.subscription_tier, self.cost_provider)
                available = calculate_available_points(
                    account.monthly_points, account.points_used, account.points_earned
                )
                if available < cost:
                    raise _SpendRejected(SpendResult(
                        success=False,
                        new_balance=available,
                        error=f"Insufficient points: need {cost}, have {available}",
                        error_kind=ErrorKind.INSUFFICIENT_POINTS,
                        shortfall=cost - available
                    ))

                self.repository.increment_points_used(conn, user_id, cost)
                tx = self.repository.append_transaction(
                    conn,
                    developer_id=user_id,
                    amount=-cost,
                    source=PointsSource.SUBSCRIPTION_MONTHLY,
                    description=f"{spend_type.value.lower().replace('_', ' ')} action",
                    spend_type=spend_type,
                    source_id=source_id,
                    metadata=metadata
                )
        except _SpendRejected as rejected:
            logger.info("Spend of %s rejected for %s: %s",
                        spend_type.value, user_id, rejected.result.error)
            return rejected.result
        except sqlite3.Error as e:
            logger.error("Ledger store failure during spend for %s: %s", user_id, e)
            raise StoreUnavailableError(str(e)) from e

        new_balance = available - cost
        logger.info("Spent %d points on %s for %s, balance now %d",
                    cost, spend_type.value, user_id, new_balance)
        return SpendResult(
            success=True,
            points_spent=cost,
            new_balance=new_balance,
            transaction_id=tx.id
        )

    def award_points_atomic(self, award: PointsAward) -> AwardResult:
        """Credit earned points and record the award in one transaction.

        Raises:
            StoreUnavailableError: If the backing store fails
        """
        validation = validate_points_award(award)
        if not validation.is_valid:
            return AwardResult(
                success=False,
                error=validation.reason,
                error_kind=ErrorKind.VALIDATION
            )

        try:
            with self.repository.transaction() as conn:
                account = self.repository.fetch_account(conn, award.user_id)
                if account is None:
                    raise _SpendRejected(AwardResult(
                        success=False,
                        error="User not found",
                        error_kind=ErrorKind.USER_NOT_FOUND
                    ))
                self.repository.increment_points_earned(conn, award.user_id, award.amount)
                tx = self.repository.append_transaction(
                    conn,
                    developer_id=award.user_id,
                    amount=award.amount,
                    source=award.source,
                    description=award.description,
                    source_id=award.source_id,
                    metadata=award.metadata
                )
        except _SpendRejected as rejected:
            return rejected.result
        except sqlite3.Error as e:
            logger.error("Ledger store failure during award for %s: %s", award.user_id, e)
            raise StoreUnavailableError(str(e)) from e

        new_balance = calculate_available_points(
            account.monthly_points, account.points_used, account.points_earned + award.amount
        )
        return AwardResult(success=True, new_balance=new_balance, transaction_id=tx.id)
