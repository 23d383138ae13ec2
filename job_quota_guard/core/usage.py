"""
Upstream credit usage tracking.

Parses the provider's rate-limit headers into an approximate picture of
the remaining API budget.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

USAGE_HEADER_PREFIXES = ("x-ratelimit-", "x-rapidapi-")

# header name -> window field
_INT_HEADERS = {
    "x-ratelimit-jobs-limit": "jobs_limit",
    "x-ratelimit-jobs-remaining": "jobs_remaining",
    "x-ratelimit-requests-limit": "requests_limit",
    "x-ratelimit-requests-remaining": "requests_remaining",
    "x-rapidapi-requests-remaining": "requests_remaining",
    "x-rapidapi-requests-left": "requests_remaining",
}
_RESET_HEADERS = ("x-ratelimit-jobs-reset", "x-rapidapi-quota-reset")

LOW_USAGE_PERCENT = 25
CRITICAL_USAGE_PERCENT = 10


class UsageWarningLevel(Enum):
    NONE = "none"
    LOW = "low"
    CRITICAL = "critical"


@dataclass(frozen=True)
class CreditUsageWindow:
    """Snapshot of the provider's remaining quota.

    An approximation refreshed after each real upstream call; it may be
    stale. Unknown values are None.
    """
    requests_remaining: Optional[int] = None
    jobs_remaining: Optional[int] = None
    reset_at: Optional[datetime] = None
    requests_limit: Optional[int] = None
    jobs_limit: Optional[int] = None


def _lower_keys(headers: Mapping[str, str]) -> Dict[str, str]:
    return {str(key).lower(): str(value) for key, value in headers.items()}


def extract_usage_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Keep only the provider's rate-limit headers, with lowercase names."""
    return {
        key: value
        for key, value in _lower_keys(headers).items()
        if key.startswith(USAGE_HEADER_PREFIXES)
    }


def parse_usage_headers(
    headers: Mapping[str, str],
    previous: CreditUsageWindow,
    now: float
) -> Optional[CreditUsageWindow]:
    """Merge rate-limit headers into a new window.

    Fields without a header keep their previous value.

    Args:
        headers: Response headers, any case
        previous: Window to carry missing fields over from
        now: Current epoch seconds, used to turn reset offsets into times

    Returns:
        The new window, or None when no usable header is present or any
        present header is malformed
    """
    lowered = _lower_keys(headers)
    updates: Dict[str, object] = {}

    for header, attr in _INT_HEADERS.items():
        if header not in lowered:
            continue
        try:
            value = int(lowered[header].strip())
        except ValueError:
            logger.warning("Malformed usage header %s=%r", header, lowered[header])
            return None
        if value < 0:
            logger.warning("Negative usage header %s=%r", header, lowered[header])
            return None
        updates.setdefault(attr, value)

    for header in _RESET_HEADERS:
        if header not in lowered:
            continue
        try:
            seconds = float(lowered[header].strip())
            if not math.isfinite(seconds) or seconds < 0:
                raise ValueError(f"reset offset out of range: {seconds}")
            reset_at = datetime.fromtimestamp(now + seconds)
        except (ValueError, OverflowError, OSError):
            logger.warning("Malformed usage header %s=%r", header, lowered[header])
            return None
        updates.setdefault("reset_at", reset_at)

    if not updates:
        return None
    return replace(previous, **updates)


class UsageWindowTracker:
    """Holds the latest credit usage window.

    Updates swap in a new immutable window under a lock; readers take the
    current reference without blocking.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        initial: Optional[CreditUsageWindow] = None
    ):
        """Create a tracker, optionally resuming from a saved window."""
        self._clock = clock
        self._lock = threading.Lock()
        self._window: Optional[CreditUsageWindow] = initial

    @property
    def current(self) -> Optional[CreditUsageWindow]:
        """Latest window, None until the first usable headers arrive."""
        return self._window

    def update_usage(self, headers: Mapping[str, str]) -> Optional[CreditUsageWindow]:
        """Apply response headers; absent or malformed headers change nothing."""
        with self._lock:
            previous = self._window or CreditUsageWindow()
            window = parse_usage_headers(headers, previous, self._clock())
            if window is None:
                return self._window
            self._window = window
        logger.info(
            "Upstream usage updated: jobs_remaining=%s requests_remaining=%s reset_at=%s",
            window.jobs_remaining, window.requests_remaining, window.reset_at
        )
        return window

    def warning_level(self) -> UsageWarningLevel:
        """How close the tracked quota is to exhaustion."""
        window = self._window
        if window is None:
            return UsageWarningLevel.NONE

        percentages = []
        if window.jobs_limit and window.jobs_remaining is not None:
            percentages.append(window.jobs_remaining / window.jobs_limit * 100)
        if window.requests_limit and window.requests_remaining is not None:
            percentages.append(window.requests_remaining / window.requests_limit * 100)
        if not percentages:
            return UsageWarningLevel.NONE

        lowest = min(percentages)
        if lowest < CRITICAL_USAGE_PERCENT:
            return UsageWarningLevel.CRITICAL
        if lowest < LOW_USAGE_PERCENT:
            return UsageWarningLevel.LOW
        return UsageWarningLevel.NONE
