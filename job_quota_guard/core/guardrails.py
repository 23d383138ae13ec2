"""
Upstream credit guardrails.

Decides from the tracked usage window whether a new provider call fits in
the remaining API budget.

Check Order:
1. Job credits - the per-result budget drains fastest
2. Request credits - each call costs at least one request
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from .params import Endpoint
from .usage import UsageWindowTracker

DEFAULT_MAX_JOBS_PER_REQUEST = 100


def _default_endpoint_weights() -> Dict[str, int]:
    return {
        Endpoint.WEEK.value: 1,
        Endpoint.DAY.value: 2,
        Endpoint.HOUR.value: 2,
    }


@dataclass(frozen=True)
class CreditGuardConfig:
    """Cost model for provider calls."""
    max_jobs_per_request: int = DEFAULT_MAX_JOBS_PER_REQUEST
    endpoint_request_weights: Dict[str, int] = field(default_factory=_default_endpoint_weights)

    def __post_init__(self):
        if self.max_jobs_per_request <= 0:
            raise ValueError("max_jobs_per_request must be > 0")
        for endpoint, weight in self.endpoint_request_weights.items():
            if weight <= 0:
                raise ValueError(f"request weight for endpoint {endpoint} must be > 0")


@dataclass(frozen=True)
class CreditEstimate:
    """Credits one provider call is expected to consume."""
    jobs: int
    requests: int


@dataclass(frozen=True)
class GuardDecision:
    """Whether a provider call may proceed."""
    allowed: bool
    estimate: CreditEstimate
    reason: Optional[str] = None


class CreditGuard:
    """Read-only gate in front of the provider's metered API."""

    def __init__(self, tracker: UsageWindowTracker, config: CreditGuardConfig = CreditGuardConfig()):
        self.tracker = tracker
        self.config = config

    def estimate_consumption(self, params: Mapping[str, Any]) -> CreditEstimate:
        """Estimate credits for a call with these normalized parameters.

        Jobs scale with the requested limit; premium endpoints weigh more
        request credits per call.
        """
        limit = int(params.get("limit", 10))
        endpoint = str(params.get("endpoint", Endpoint.WEEK.value))
        return CreditEstimate(
            jobs=min(limit, self.config.max_jobs_per_request),
            requests=self.config.endpoint_request_weights.get(endpoint, 1)
        )

    def can_make_request(self, params: Mapping[str, Any]) -> GuardDecision:
        """Check the estimate against the current window.

        A pure query: neither the window nor any cache is modified. With
        no usage data yet the call is allowed.
        """
        estimate = self.estimate_consumption(params)
        window = self.tracker.current
        if window is None:
            return GuardDecision(allowed=True, estimate=estimate)

        if window.jobs_remaining is not None and window.jobs_remaining < estimate.jobs:
            return GuardDecision(
                allowed=False,
                estimate=estimate,
                reason=(
                    f"Insufficient job credits. Need {estimate.jobs}, "
                    f"have {window.jobs_remaining}"
                )
            )

        if window.requests_remaining is not None and window.requests_remaining < estimate.requests:
            return GuardDecision(
                allowed=False,
                estimate=estimate,
                reason=(
                    f"Insufficient request credits. Need {estimate.requests}, "
                    f"have {window.requests_remaining}"
                )
            )

        return GuardDecision(allowed=True, estimate=estimate)
