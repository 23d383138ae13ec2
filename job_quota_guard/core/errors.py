"""
Error taxonomy shared across the guard.

Recoverable conditions (insufficient points, guard denial, validation
problems) travel as ErrorKind values on result objects. Only backing-store
and upstream failures are raised.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Failure categories surfaced to callers."""
    VALIDATION = "validation"
    INSUFFICIENT_POINTS = "insufficient_points"
    USER_NOT_FOUND = "user_not_found"
    CREDIT_EXHAUSTED = "credit_exhausted"
    UNAUTHORIZED = "unauthorized"
    TIER_INELIGIBLE = "tier_ineligible"
    UPSTREAM_FAILURE = "upstream_failure"
    STORE_UNAVAILABLE = "store_unavailable"


class UpstreamFailureKind(Enum):
    """Classification of failed calls to the job-search provider."""
    RATE_LIMITED = "rate_limited"
    UNAUTHORIZED = "unauthorized"
    BAD_REQUEST = "bad_request"
    UPSTREAM_5XX = "upstream_5xx"
    TIMEOUT = "timeout"
    INVALID_RESPONSE = "invalid_response"
    UNCLASSIFIED = "unclassified"


class QuotaGuardError(Exception):
    """Base class for raised guard errors."""
    kind: ErrorKind = ErrorKind.STORE_UNAVAILABLE


class StoreUnavailableError(QuotaGuardError):
    """Raised when the ledger or cache backing store fails."""
    kind = ErrorKind.STORE_UNAVAILABLE


class UpstreamError(QuotaGuardError):
    """Raised when the job-search provider call fails."""
    kind = ErrorKind.UPSTREAM_FAILURE

    def __init__(
        self,
        message: str,
        failure_kind: UpstreamFailureKind,
        status_code: Optional[int] = None
    ):
        super().__init__(message)
        self.failure_kind = failure_kind
        self.status_code = status_code
