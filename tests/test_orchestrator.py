"""
Tests for the end-to-end search flow.

Components are real; only the provider is faked through an httpx mock
transport.
"""
import os
import shutil
import tempfile
from unittest.mock import patch

import httpx
import pytest

from job_quota_guard.core.cache_key import make_cache_key
from job_quota_guard.core.errors import ErrorKind, StoreUnavailableError, UpstreamFailureKind
from job_quota_guard.core.guardrails import CreditGuard
from job_quota_guard.core.ledger import PointsLedger
from job_quota_guard.core.orchestrator import (
    ExecutionMode,
    SearchOrchestrator,
    Session,
    parse_execution_mode,
)
from job_quota_guard.core.params import normalize_search_params
from job_quota_guard.core.pricing import SubscriptionTier
from job_quota_guard.core.usage import UsageWindowTracker
from job_quota_guard.sdk.jobs_client import JobSearchClient
from job_quota_guard.storage.cache import ResponseCache
from job_quota_guard.storage.models import PointsAccount
from job_quota_guard.storage.repository import LedgerRepository, initialize_schema

JOBS = [{"id": "1", "title": "Engineer", "organization": "Acme"}]
USAGE = {
    "x-ratelimit-jobs-remaining": "900",
    "x-ratelimit-requests-remaining": "40",
}


class FakeProvider:
    """Records provider calls and answers with a canned response."""

    def __init__(self, status=200, payload=JOBS, headers=USAGE):
        self.calls = []
        self.status = status
        self.payload = payload
        self.headers = headers

    def __call__(self, request):
        self.calls.append(request)
        return httpx.Response(self.status, json=self.payload, headers=self.headers)


class TestSearchOrchestrator:
    """Test the search state machine."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(db_path)
        self.repo = LedgerRepository(db_path)
        self.ledger = PointsLedger(self.repo)
        self.cache = ResponseCache(os.path.join(self.temp_dir, "cache"))
        self.tracker = UsageWindowTracker()
        self.provider = FakeProvider()
        self.orchestrator = self._build(self.provider)

    def teardown_method(self):
        """Clean up test environment."""
        self.cache.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _build(self, provider):
        client = JobSearchClient(
            api_key="test-key",
            http_client=httpx.Client(transport=httpx.MockTransport(provider))
        )
        return SearchOrchestrator(
            cache=self.cache,
            tracker=self.tracker,
            guard=CreditGuard(self.tracker),
            ledger=self.ledger,
            client=client
        )

    def create_account(self, developer_id="dev-1", monthly=75, used=0,
                       tier=SubscriptionTier.STARTER):
        self.repo.create_account(PointsAccount(
            developer_id=developer_id,
            monthly_points=monthly,
            points_used=used,
            points_earned=0,
            subscription_tier=tier
        ))

    # Standard endpoint

    def test_miss_then_hit(self):
        """Test that a second identical search is served from cache."""
        first = self.orchestrator.search({"title": "Engineer"})
        second = self.orchestrator.search({"title_filter": "Engineer", "limit": 10})

        assert first.status_code == 200
        assert first.cache_status == "MISS"
        assert first.results == JOBS
        assert first.points_spent == 0
        assert second.cache_status == "HIT"
        assert second.results == JOBS
        assert second.usage_headers == USAGE
        assert len(self.provider.calls) == 1

    def test_miss_updates_usage_window(self):
        self.orchestrator.search({"title": "Engineer"})

        assert self.tracker.current.jobs_remaining == 900
        assert self.tracker.current.requests_remaining == 40

    def test_miss_saves_usage_window(self):
        self.orchestrator.search({"title": "Engineer"})

        saved = self.cache.load_usage_window()
        assert saved == self.tracker.current
        assert saved.jobs_remaining == 900

    def test_hit_bypasses_exhausted_guard(self):
        """Test that cached results are served even with no credits left."""
        self.orchestrator.search({"title": "Engineer"})
        self.tracker.update_usage({"x-ratelimit-jobs-remaining": "0"})

        outcome = self.orchestrator.search({"title": "Engineer"})

        assert outcome.cache_status == "HIT"

    def test_validation_error_touches_nothing(self):
        outcome = self.orchestrator.search(
            {"limit": "many", "endpoint": "24h"}, session=Session("dev-1")
        )

        assert outcome.status_code == 400
        assert outcome.error_kind == ErrorKind.VALIDATION
        assert outcome.results == []
        assert outcome.details
        assert self.provider.calls == []
        assert self.cache.stats().size == 0

    def test_guard_denial(self):
        self.tracker.update_usage({"x-ratelimit-jobs-remaining": "5"})

        outcome = self.orchestrator.search({"title": "Engineer", "limit": 10})

        assert outcome.status_code == 429
        assert outcome.error_kind == ErrorKind.CREDIT_EXHAUSTED
        assert outcome.details == ["Insufficient job credits. Need 10, have 5"]
        assert outcome.results == []
        assert self.provider.calls == []

    def test_users_do_not_share_cache(self):
        self.create_account("alice")
        self.create_account("bob")

        self.orchestrator.search({"title": "Engineer"}, session=Session("alice"))
        outcome = self.orchestrator.search({"title": "Engineer"}, session=Session("bob"))

        assert outcome.cache_status == "MISS"
        assert len(self.provider.calls) == 2

    # Premium endpoints

    def test_premium_requires_session(self):
        outcome = self.orchestrator.search({"endpoint": "24h"})

        assert outcome.status_code == 401
        assert outcome.error_kind == ErrorKind.UNAUTHORIZED
        assert self.provider.calls == []

    def test_premium_unknown_user(self):
        outcome = self.orchestrator.search({"endpoint": "1h"}, session=Session("ghost"))

        assert outcome.status_code == 404
        assert outcome.error_kind == ErrorKind.USER_NOT_FOUND

    def test_premium_tier_ineligible(self):
        self.create_account(monthly=30, tier=SubscriptionTier.BASIC)

        outcome = self.orchestrator.search({"endpoint": "24h"}, session=Session("dev-1"))

        assert outcome.status_code == 402
        assert outcome.error_kind == ErrorKind.TIER_INELIGIBLE
        assert self.ledger.get_balance("dev-1").used == 0
        assert self.provider.calls == []

    def test_premium_insufficient_points(self):
        """Test available 3 against a required 5."""
        self.create_account(monthly=75, used=72)

        outcome = self.orchestrator.search({"endpoint": "24h"}, session=Session("dev-1"))

        assert outcome.status_code == 402
        assert outcome.error_kind == ErrorKind.INSUFFICIENT_POINTS
        assert outcome.details == ["Short by 2 points"]
        assert outcome.results == []
        assert self.ledger.get_balance("dev-1").available == 3
        assert self.repo.fetch_transactions("dev-1") == []
        assert self.provider.calls == []

    def test_premium_success_debits_once(self):
        self.create_account(monthly=75, tier=SubscriptionTier.PRO)

        outcome = self.orchestrator.search({"endpoint": "1h"}, session=Session("dev-1"))

        assert outcome.status_code == 200
        assert outcome.cache_status == "MISS"
        assert outcome.points_spent == 5
        assert outcome.new_balance == 70
        assert self.ledger.get_balance("dev-1").available == 70
        transactions = self.repo.fetch_transactions("dev-1")
        assert len(transactions) == 1
        assert transactions[0].metadata == {"endpoint": "1h", "limit": 10}

    def test_premium_cache_hit_is_free(self):
        self.create_account(monthly=75)

        self.orchestrator.search({"endpoint": "24h"}, session=Session("dev-1"))
        outcome = self.orchestrator.search({"endpoint": "24h"}, session=Session("dev-1"))

        assert outcome.cache_status == "HIT"
        assert outcome.points_spent == 0
        assert self.ledger.get_balance("dev-1").available == 70

    # Upstream failures

    @pytest.mark.parametrize("status,kind", [
        (429, UpstreamFailureKind.RATE_LIMITED),
        (401, UpstreamFailureKind.UNAUTHORIZED),
        (400, UpstreamFailureKind.BAD_REQUEST),
        (502, UpstreamFailureKind.UPSTREAM_5XX),
    ])
    def test_upstream_failure_maps_to_502(self, status, kind):
        orchestrator = self._build(FakeProvider(status=status, payload={"message": "error"}))

        outcome = orchestrator.search({"title": "Engineer"})

        assert outcome.status_code == 502
        assert outcome.error_kind == ErrorKind.UPSTREAM_FAILURE
        assert outcome.upstream_kind == kind
        assert outcome.to_response()["upstreamKind"] == kind.value
        assert self.cache.stats().size == 0
        assert self.tracker.current is None

    def test_timeout_maps_to_502(self):
        """Test that a provider timeout leaves the cache and usage window untouched."""
        def time_out(request):
            raise httpx.ReadTimeout("timed out", request=request)

        outcome = self._build(time_out).search({"title": "Engineer"})

        assert outcome.status_code == 502
        assert outcome.upstream_kind == UpstreamFailureKind.TIMEOUT
        assert self.cache.stats().size == 0
        assert self.tracker.current is None

    def test_unusable_reset_header_still_succeeds(self):
        """Test that a reset offset that cannot become a time is ignored."""
        orchestrator = self._build(FakeProvider(headers={"x-ratelimit-jobs-reset": "nan"}))

        outcome = orchestrator.search({"title": "Engineer"})

        assert outcome.status_code == 200
        assert outcome.cache_status == "MISS"
        assert outcome.usage_headers == {"x-ratelimit-jobs-reset": "nan"}
        assert self.tracker.current is None
        assert self.cache.load_usage_window() is None

    def test_unclassified_failure_maps_to_500(self):
        orchestrator = self._build(FakeProvider(status=404, payload={"message": "gone"}))

        outcome = orchestrator.search({"title": "Engineer"})

        assert outcome.status_code == 500
        assert outcome.upstream_kind == UpstreamFailureKind.UNCLASSIFIED

    def test_invalid_payload_not_cached(self):
        orchestrator = self._build(FakeProvider(payload={"jobs": []}))

        outcome = orchestrator.search({"title": "Engineer"})

        assert outcome.status_code == 502
        assert outcome.upstream_kind == UpstreamFailureKind.INVALID_RESPONSE
        assert self.cache.stats().size == 0

    def test_premium_spend_kept_when_upstream_fails(self):
        """Test that a failed call after billing reports the spend."""
        self.create_account(monthly=75)
        orchestrator = self._build(FakeProvider(status=503, payload={}))

        outcome = orchestrator.search({"endpoint": "24h"}, session=Session("dev-1"))

        assert outcome.status_code == 502
        assert outcome.points_spent == 5
        assert self.ledger.get_balance("dev-1").available == 70

    def test_store_failure_maps_to_500(self):
        with patch.object(self.cache, "get", side_effect=StoreUnavailableError("database is locked")):
            outcome = self.orchestrator.search({"title": "Engineer"})

        assert outcome.status_code == 500
        assert outcome.error_kind == ErrorKind.STORE_UNAVAILABLE
        assert outcome.error == "database is locked"

    # Execution modes

    def test_stop_mode_skips_upstream_but_debits(self):
        self.create_account(monthly=75)

        outcome = self.orchestrator.search(
            {"endpoint": "24h"}, session=Session("dev-1"), mode=ExecutionMode.STOP
        )

        assert outcome.status_code == 200
        assert outcome.cache_status == "BYPASS"
        assert outcome.results == []
        assert outcome.points_spent == 5
        assert self.ledger.get_balance("dev-1").available == 70
        assert self.provider.calls == []
        assert self.cache.stats().size == 0
        assert self.tracker.current is None
        assert outcome.debug_info == {"mode": "stop", "cacheHit": False, "upstreamCalled": False}

    def test_stop_mode_without_client(self):
        orchestrator = SearchOrchestrator(
            cache=self.cache,
            tracker=self.tracker,
            guard=CreditGuard(self.tracker),
            ledger=self.ledger
        )

        outcome = orchestrator.search({"title": "Engineer"}, mode=ExecutionMode.STOP)

        assert outcome.cache_status == "BYPASS"

    def test_log_mode_calls_upstream_with_debug_info(self):
        outcome = self.orchestrator.search({"title": "Engineer"}, mode=ExecutionMode.LOG)

        assert outcome.cache_status == "MISS"
        assert outcome.debug_info["upstreamCalled"] is True
        assert outcome.to_response()["debugInfo"]["mode"] == "log"
        assert outcome.debug_info["usageWarning"] == "none"
        assert len(self.provider.calls) == 1

    def test_debug_info_reports_low_quota(self):
        orchestrator = self._build(FakeProvider(headers={
            "x-ratelimit-jobs-limit": "1000",
            "x-ratelimit-jobs-remaining": "50",
        }))

        outcome = orchestrator.search({"title": "Engineer"}, mode=ExecutionMode.LOG)

        assert outcome.debug_info["usageWarning"] == "critical"

    def test_off_mode_has_no_debug_info(self):
        outcome = self.orchestrator.search({"title": "Engineer"})

        assert outcome.debug_info is None
        assert "debugInfo" not in outcome.to_response()

    def test_cache_written_under_normalized_key(self):
        self.orchestrator.search({"title": "Engineer", "unknown": "x"})

        params = normalize_search_params({"title_filter": "Engineer"}).normalized
        assert self.cache.get(make_cache_key(params)) is not None


class TestSearchOutcomeResponse:
    """Test the transport body shape."""

    def test_success_body(self):
        from job_quota_guard.core.orchestrator import SearchOutcome

        body = SearchOutcome(status_code=200, results=JOBS, cache_status="MISS").to_response()

        assert body == {
            "results": JOBS,
            "pointsSpent": 0,
            "newBalance": None,
            "usageHeaders": {},
            "cacheStatus": "MISS",
        }

    def test_error_body_has_no_results(self):
        from job_quota_guard.core.orchestrator import SearchOutcome

        body = SearchOutcome(
            status_code=429,
            error="API request blocked",
            error_kind=ErrorKind.CREDIT_EXHAUSTED,
            details=["Insufficient job credits. Need 10, have 5"]
        ).to_response()

        assert body["results"] == []
        assert body["errorKind"] == "credit_exhausted"
        assert "upstreamKind" not in body


class TestParseExecutionMode:
    """Test the mode switch parser."""

    @pytest.mark.parametrize("value,expected", [
        (None, ExecutionMode.OFF),
        ("off", ExecutionMode.OFF),
        ("LOG", ExecutionMode.LOG),
        (" stop ", ExecutionMode.STOP),
        ("true", ExecutionMode.LOG),
        ("mock", ExecutionMode.OFF),
    ])
    def test_parse(self, value, expected):
        assert parse_execution_mode(value) == expected
