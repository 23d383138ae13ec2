"""
Core modules for Job Quota Guard.

This package contains search parameter normalization, cache keys,
upstream credit tracking, the points ledger rules and the search
orchestrator.
"""
