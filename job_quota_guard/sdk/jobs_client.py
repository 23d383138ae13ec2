"""
Job-search provider client.

Issues the metered GET against the provider and classifies failures.
Failures are loud and never retried here.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

import httpx

from ..core.errors import UpstreamError, UpstreamFailureKind
from ..core.params import Endpoint, to_query_params

logger = logging.getLogger(__name__)

DEFAULT_HOST = "linkedin-job-search-api.p.rapidapi.com"
DEFAULT_TIMEOUT_SECONDS = 15.0

ENDPOINT_PATHS = {
    Endpoint.WEEK.value: "active-jb-7d",
    Endpoint.DAY.value: "active-jb-24h",
    Endpoint.HOUR.value: "active-jb-1h",
}


@dataclass(frozen=True)
class UpstreamResponse:
    """A complete, validated provider response."""
    payload: List[Dict[str, Any]]
    headers: Dict[str, str]
    status_code: int


def classify_status(status_code: int) -> UpstreamFailureKind:
    """Map a provider error status to a failure kind."""
    if status_code == 429:
        return UpstreamFailureKind.RATE_LIMITED
    if status_code in (401, 403):
        return UpstreamFailureKind.UNAUTHORIZED
    if status_code == 400:
        return UpstreamFailureKind.BAD_REQUEST
    if status_code >= 500:
        return UpstreamFailureKind.UPSTREAM_5XX
    return UpstreamFailureKind.UNCLASSIFIED


class JobSearchClient:
    """Thin wrapper around the provider's listing endpoints.

    Builds the endpoint URL and auth headers, enforces a timeout, and
    returns only complete responses.
    """

    def __init__(
        self,
        api_key: str,
        host: str = DEFAULT_HOST,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        http_client: Optional[httpx.Client] = None
    ):
        """Initialize the provider client.

        Args:
            api_key: Provider API key (required)
            host: Provider host name
            timeout: Seconds before an upstream call is abandoned
            http_client: Preconfigured client, mainly for tests

        Raises:
            ValueError: If api_key is missing/empty
        """
        if not api_key or not api_key.strip():
            raise ValueError("api_key is required and cannot be empty")

        self.host = host
        self.base_url = f"https://{host}"
        self._api_key = api_key
        self.client = http_client or httpx.Client(timeout=httpx.Timeout(timeout))

    def build_url(self, endpoint: str) -> str:
        if endpoint not in ENDPOINT_PATHS:
            raise ValueError(f"Unsupported endpoint: {endpoint}")
        return f"{self.base_url}/{ENDPOINT_PATHS[endpoint]}"

    def fetch_jobs(self, params: Mapping[str, Any]) -> UpstreamResponse:
        """Fetch job listings for normalized search parameters.

        Args:
            params: Normalized parameters; ``endpoint`` selects the path and
                everything else becomes the query string

        Returns:
            UpstreamResponse with the decoded job list and response headers

        Raises:
            UpstreamError: On timeout, transport failure, error status or a
                payload that is not a JSON list
        """
        url = self.build_url(str(params.get("endpoint", Endpoint.WEEK.value)))
        query = to_query_params(params)
        headers = {
            "x-rapidapi-key": self._api_key,
            "x-rapidapi-host": self.host,
        }

        logger.info("Calling job-search provider %s with %d parameters", url, len(query))
        try:
            response = self.client.get(url, params=query, headers=headers)
        except httpx.TimeoutException as e:
            raise UpstreamError(
                f"Upstream request timed out: {e}", UpstreamFailureKind.TIMEOUT
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamError(
                f"Upstream request failed: {e}", UpstreamFailureKind.UNCLASSIFIED
            ) from e

        if response.is_error:
            kind = classify_status(response.status_code)
            raise UpstreamError(
                f"Job-search provider returned {response.status_code}: {response.text[:500]}",
                kind,
                response.status_code
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamError(
                "Invalid API response format - body is not JSON",
                UpstreamFailureKind.INVALID_RESPONSE,
                response.status_code
            ) from e

        if not isinstance(payload, list):
            raise UpstreamError(
                "Invalid API response format - expected array of jobs",
                UpstreamFailureKind.INVALID_RESPONSE,
                response.status_code
            )

        logger.info("Job-search provider returned %d jobs", len(payload))
        return UpstreamResponse(
            payload=payload,
            headers=dict(response.headers),
            status_code=response.status_code
        )

    def close(self) -> None:
        self.client.close()
