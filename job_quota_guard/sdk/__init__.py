"""
SDK for Job Quota Guard.

Provides the client for the metered job-search provider.
"""

from .jobs_client import JobSearchClient, UpstreamResponse

__all__ = ["JobSearchClient", "UpstreamResponse"]
