"""
End-to-end search flow.

Flow Order:
1. Validate - normalize parameters, reject on errors
2. Cache lookup - a live entry is returned with its stored usage headers
3. Credit check - refuse calls that would overrun the provider budget
4. Premium gate - session, tier and an atomic points spend
5. Upstream call - skipped in STOP mode
6. Usage update and cache write - only after a complete response
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from .cache_key import make_cache_key
from .errors import ErrorKind, StoreUnavailableError, UpstreamError, UpstreamFailureKind
from .guardrails import CreditGuard
from .ledger import PointsLedger
from .params import SearchDefaults, is_premium_endpoint, normalize_search_params, to_query_params
from .pricing import SpendType, is_premium_eligible
from .usage import UsageWarningLevel, UsageWindowTracker, extract_usage_headers
from job_quota_guard.sdk.jobs_client import JobSearchClient
from job_quota_guard.storage.cache import ResponseCache

logger = logging.getLogger(__name__)


class ExecutionMode(Enum):
    """How a search treats the real provider call.

    OFF and LOG call the provider; LOG also logs request details. STOP
    skips the provider call but still runs the premium points debit so
    billing can be exercised without spending provider quota.
    """
    OFF = "off"
    LOG = "log"
    STOP = "stop"


def parse_execution_mode(value: Optional[str]) -> ExecutionMode:
    """Parse a mode switch; unknown values fall back to OFF."""
    if value is None:
        return ExecutionMode.OFF
    normalized = value.strip().lower()
    if normalized == "true":
        return ExecutionMode.LOG
    try:
        return ExecutionMode(normalized)
    except ValueError:
        logger.warning("Unknown execution mode %r, using off", value)
        return ExecutionMode.OFF


@dataclass(frozen=True)
class Session:
    """Authenticated caller supplied by the session provider."""
    user_id: str
    email: Optional[str] = None


@dataclass
class SearchOutcome:
    """Everything a transport layer needs to answer a search."""
    status_code: int
    results: List[Any] = field(default_factory=list)
    points_spent: int = 0
    new_balance: Optional[int] = None
    usage_headers: Dict[str, str] = field(default_factory=dict)
    cache_status: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    details: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    upstream_kind: Optional[UpstreamFailureKind] = None
    debug_info: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.status_code == 200

    def to_response(self) -> Dict[str, Any]:
        """JSON body for the HTTP surface."""
        if self.ok:
            body: Dict[str, Any] = {
                "results": self.results,
                "pointsSpent": self.points_spent,
                "newBalance": self.new_balance,
                "usageHeaders": self.usage_headers,
                "cacheStatus": self.cache_status,
            }
            if self.warnings:
                body["warnings"] = self.warnings
        else:
            body = {
                "error": self.error,
                "errorKind": self.error_kind.value if self.error_kind else None,
                "details": self.details,
                "results": [],
            }
            if self.upstream_kind is not None:
                body["upstreamKind"] = self.upstream_kind.value
        if self.debug_info is not None:
            body["debugInfo"] = self.debug_info
        return body


_UPSTREAM_STATUS = {
    UpstreamFailureKind.UNCLASSIFIED: 500,
}


class SearchOrchestrator:
    """Composes validation, caching, credit guarding and billing."""

    def __init__(
        self,
        cache: ResponseCache,
        tracker: UsageWindowTracker,
        guard: CreditGuard,
        ledger: PointsLedger,
        client: Optional[JobSearchClient] = None,
        defaults: SearchDefaults = SearchDefaults()
    ):
        self.cache = cache
        self.tracker = tracker
        self.guard = guard
        self.ledger = ledger
        self.client = client
        self.defaults = defaults

    def search(
        self,
        raw_params: Mapping[str, Any],
        session: Optional[Session] = None,
        mode: ExecutionMode = ExecutionMode.OFF
    ) -> SearchOutcome:
        """Run one search request through the full flow.

        Args:
            raw_params: Parameters as received
            session: Authenticated caller, if any
            mode: Provider call behaviour for this request

        Returns:
            SearchOutcome; expected refusals come back as non-200 outcomes
            with zero results
        """
        debug: Optional[Dict[str, Any]] = (
            {"mode": mode.value, "cacheHit": False, "upstreamCalled": False}
            if mode != ExecutionMode.OFF else None
        )

        validation = normalize_search_params(raw_params, self.defaults)
        if not validation.valid:
            logger.warning("Search parameter validation failed: %s", validation.errors)
            return SearchOutcome(
                status_code=400,
                error="Invalid search parameters",
                error_kind=ErrorKind.VALIDATION,
                details=validation.errors,
                warnings=validation.warnings,
                debug_info=debug
            )
        if validation.warnings:
            logger.warning("Search parameter warnings: %s", validation.warnings)

        params = validation.normalized
        user_id = session.user_id if session else None
        key = make_cache_key(params, user_id, self.defaults)

        try:
            return self._run(params, key, session, mode, validation.warnings, debug)
        except StoreUnavailableError as e:
            logger.exception("Backing store unavailable during search")
            return SearchOutcome(
                status_code=500,
                error=str(e),
                error_kind=ErrorKind.STORE_UNAVAILABLE,
                debug_info=debug
            )

    def _run(
        self,
        params: Dict[str, Any],
        key: str,
        session: Optional[Session],
        mode: ExecutionMode,
        warnings: List[str],
        debug: Optional[Dict[str, Any]]
    ) -> SearchOutcome:
        cached = self.cache.get(key)
        if cached is not None:
            logger.info("Cache hit for %s (age %.0fs)", key, cached.age)
            if debug is not None:
                debug["cacheHit"] = True
                debug["cacheAgeSeconds"] = int(cached.age)
            return SearchOutcome(
                status_code=200,
                results=list(cached.payload),
                usage_headers=cached.usage_headers,
                cache_status="HIT",
                warnings=warnings,
                debug_info=debug
            )
        logger.info("Cache miss for %s", key)

        decision = self.guard.can_make_request(params)
        if not decision.allowed:
            logger.warning("Provider call blocked by credit guard: %s", decision.reason)
            return SearchOutcome(
                status_code=429,
                error="API request blocked",
                error_kind=ErrorKind.CREDIT_EXHAUSTED,
                details=[decision.reason or "Credit limit reached"],
                debug_info=debug
            )

        points_spent = 0
        new_balance: Optional[int] = None
        if is_premium_endpoint(params.get("endpoint")):
            gate = self._premium_gate(params, session)
            if isinstance(gate, SearchOutcome):
                gate.debug_info = debug
                return gate
            points_spent, new_balance = gate

        if mode == ExecutionMode.LOG:
            logger.info(
                "Provider request: endpoint=%s query=%s estimate=%s",
                params.get("endpoint"), to_query_params(params), decision.estimate
            )

        if mode == ExecutionMode.STOP:
            logger.info("STOP mode: provider call suppressed for %s", key)
            return SearchOutcome(
                status_code=200,
                points_spent=points_spent,
                new_balance=new_balance,
                cache_status="BYPASS",
                warnings=warnings,
                debug_info=debug
            )

        if self.client is None:
            raise ValueError("A job-search client is required unless mode is STOP")

        try:
            response = self.client.fetch_jobs(params)
        except UpstreamError as e:
            logger.error("Provider call failed (%s): %s", e.failure_kind.value, e)
            return SearchOutcome(
                status_code=_UPSTREAM_STATUS.get(e.failure_kind, 502),
                points_spent=points_spent,
                new_balance=new_balance,
                error=str(e),
                error_kind=ErrorKind.UPSTREAM_FAILURE,
                upstream_kind=e.failure_kind,
                debug_info=debug
            )
        if debug is not None:
            debug["upstreamCalled"] = True

        usage_headers = extract_usage_headers(response.headers)
        window = self.tracker.update_usage(usage_headers)
        if window is not None:
            self.cache.save_usage_window(window)
        self.cache.put(key, params, response.payload, usage_headers)

        warning = self.tracker.warning_level()
        if warning != UsageWarningLevel.NONE:
            logger.warning("Provider quota running low (%s)", warning.value)
        if debug is not None:
            debug["usageWarning"] = warning.value

        return SearchOutcome(
            status_code=200,
            results=response.payload,
            points_spent=points_spent,
            new_balance=new_balance,
            usage_headers=usage_headers,
            cache_status="MISS",
            warnings=warnings,
            debug_info=debug
        )

    def _premium_gate(self, params: Dict[str, Any], session: Optional[Session]):
        """Authorize and bill a premium endpoint request.

        Returns:
            ``(points_spent, new_balance)`` on success, otherwise the
            refusal as a SearchOutcome
        """
        endpoint = params.get("endpoint")
        if session is None:
            return SearchOutcome(
                status_code=401,
                error="Authentication required for premium endpoints",
                error_kind=ErrorKind.UNAUTHORIZED
            )

        balance = self.ledger.get_balance(session.user_id)
        if balance is None:
            return SearchOutcome(
                status_code=404,
                error="User not found",
                error_kind=ErrorKind.USER_NOT_FOUND
            )
        if not is_premium_eligible(balance.tier):
            return SearchOutcome(
                status_code=402,
                error=f"Endpoint {endpoint} requires a STARTER, PRO or EXPERT subscription",
                error_kind=ErrorKind.TIER_INELIGIBLE
            )

        result = self.ledger.spend_points_atomic(
            session.user_id,
            SpendType.PREMIUM_SEARCH,
            metadata={"endpoint": endpoint, "limit": params.get("limit")}
        )
        if not result.success:
            status = 402 if result.error_kind == ErrorKind.INSUFFICIENT_POINTS else 404
            details = []
            if result.shortfall is not None:
                details.append(f"Short by {result.shortfall} points")
            return SearchOutcome(
                status_code=status,
                error=result.error,
                error_kind=result.error_kind,
                details=details,
                new_balance=result.new_balance
            )
        return result.points_spent, result.new_balance
