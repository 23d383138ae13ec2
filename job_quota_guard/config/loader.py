"""
Configuration management and loading.

Handles the cost/tier YAML file and environment settings.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from job_quota_guard.core.guardrails import CreditGuardConfig
from job_quota_guard.core.orchestrator import ExecutionMode, parse_execution_mode
from job_quota_guard.core.params import Endpoint, SearchDefaults
from job_quota_guard.core.pricing import (
    DEFAULT_COST_TABLE,
    CostTable,
    SpendType,
    SubscriptionTier,
    TierConfig,
)
from job_quota_guard.sdk.jobs_client import DEFAULT_HOST, DEFAULT_TIMEOUT_SECONDS
from job_quota_guard.storage.cache import DEFAULT_CACHE_DIR, DEFAULT_TTL_SECONDS
from job_quota_guard.storage.db import DEFAULT_DB_PATH


@dataclass(frozen=True)
class GuardConfig:
    """Complete cost and guard configuration."""
    cost_table: CostTable = DEFAULT_COST_TABLE
    credit_guard: CreditGuardConfig = field(default_factory=CreditGuardConfig)
    cache_ttl_seconds: int = DEFAULT_TTL_SECONDS


@dataclass(frozen=True)
class Settings:
    """Environment-driven runtime settings."""
    defaults: SearchDefaults = SearchDefaults()
    mode: ExecutionMode = ExecutionMode.OFF
    api_key: Optional[str] = None
    api_host: str = DEFAULT_HOST
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    db_path: str = DEFAULT_DB_PATH
    cache_dir: str = DEFAULT_CACHE_DIR


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Read settings from environment variables.

    Only the composition root calls this; core components receive the
    resulting values explicitly.

    Args:
        environ: Variables to read, defaults to ``os.environ``

    Returns:
        Validated Settings

    Raises:
        ValueError: If a numeric or enumerated value is invalid
    """
    env = os.environ if environ is None else environ

    raw_limit = env.get("JOB_SEARCH_DEFAULT_LIMIT")
    try:
        limit = int(raw_limit) if raw_limit else SearchDefaults.limit
    except ValueError:
        raise ValueError(f"JOB_SEARCH_DEFAULT_LIMIT must be an integer, got {raw_limit!r}")

    endpoint = env.get("JOB_SEARCH_DEFAULT_ENDPOINT") or Endpoint.WEEK.value
    defaults = SearchDefaults(limit=limit, endpoint=endpoint)

    raw_timeout = env.get("RAPIDAPI_TIMEOUT_SECONDS")
    try:
        timeout = float(raw_timeout) if raw_timeout else DEFAULT_TIMEOUT_SECONDS
    except ValueError:
        raise ValueError(f"RAPIDAPI_TIMEOUT_SECONDS must be a number, got {raw_timeout!r}")
    if timeout <= 0:
        raise ValueError("RAPIDAPI_TIMEOUT_SECONDS must be > 0")

    api_key = (env.get("RAPIDAPI_KEY") or "").strip() or None

    return Settings(
        defaults=defaults,
        mode=parse_execution_mode(env.get("DEBUG_RAPIDAPI")),
        api_key=api_key,
        api_host=env.get("RAPIDAPI_HOST") or DEFAULT_HOST,
        timeout_seconds=timeout,
        db_path=env.get("JOB_QUOTA_GUARD_DB") or DEFAULT_DB_PATH,
        cache_dir=env.get("JOB_QUOTA_GUARD_CACHE_DIR") or DEFAULT_CACHE_DIR
    )


def load_guard_config(path: str) -> GuardConfig:
    """Load and validate cost configuration from YAML file.

    Strict validation ensures no silent misconfigurations that could
    lead to undercharging users or overrunning the provider budget.
    Omitted sections keep their built-in defaults.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated GuardConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Guard config file not found: {path}")

    # Load YAML content
    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    # Validate top-level structure
    allowed_top_keys = {'points_costs', 'tiers', 'credit_guard', 'cache'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    points_costs = dict(DEFAULT_COST_TABLE.points_costs)
    if 'points_costs' in raw_config:
        points_costs.update(_parse_points_costs(raw_config['points_costs']))

    tiers = dict(DEFAULT_COST_TABLE.tiers)
    if 'tiers' in raw_config:
        tiers.update(_parse_tiers(raw_config['tiers']))

    credit_guard = CreditGuardConfig()
    if 'credit_guard' in raw_config:
        credit_guard = _parse_credit_guard(raw_config['credit_guard'])

    cache_ttl = DEFAULT_TTL_SECONDS
    if 'cache' in raw_config:
        cache_ttl = _parse_cache(raw_config['cache'])

    return GuardConfig(
        cost_table=CostTable(points_costs=points_costs, tiers=tiers),
        credit_guard=credit_guard,
        cache_ttl_seconds=cache_ttl
    )


def _require_dict(data: Any, path: str) -> Dict:
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")
    return data


def _positive_int(value: Any, path: str, allow_zero: bool = False) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{path}' must be an integer")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValueError(f"'{path}' must be {'>= 0' if allow_zero else '> 0'}")
    return value


def _parse_points_costs(data: Any) -> Dict[SpendType, int]:
    """Parse and validate the spend type -> cost mapping.

    Raises:
        ValueError: If a spend type is unknown or a cost is negative
    """
    data = _require_dict(data, 'points_costs')
    valid_types = [t.value for t in SpendType]
    costs = {}
    for name, cost in data.items():
        if name not in valid_types:
            raise ValueError(f"Unknown spend type in points_costs: {name}. Valid types: {valid_types}")
        costs[SpendType(name)] = _positive_int(cost, f"points_costs.{name}", allow_zero=True)
    return costs


def _parse_tiers(data: Any) -> Dict[SubscriptionTier, TierConfig]:
    """Parse and validate subscription tier allocations.

    Raises:
        ValueError: If a tier or one of its keys is unknown or invalid
    """
    data = _require_dict(data, 'tiers')
    valid_tiers = [t.value for t in SubscriptionTier]
    tiers = {}
    for name, tier_data in data.items():
        if name not in valid_tiers:
            raise ValueError(f"Unknown subscription tier: {name}. Valid tiers: {valid_tiers}")
        tier_data = _require_dict(tier_data, f"tiers.{name}")

        allowed_keys = {'monthly_points', 'xp_multiplier'}
        unknown_keys = set(tier_data.keys()) - allowed_keys
        if unknown_keys:
            raise ValueError(f"Unknown keys in tiers.{name}: {unknown_keys}")
        for key in allowed_keys:
            if key not in tier_data:
                raise ValueError(f"Missing required '{key}' in tiers.{name}")

        multiplier = tier_data['xp_multiplier']
        if not isinstance(multiplier, (int, float)) or multiplier <= 0:
            raise ValueError(f"'xp_multiplier' in tiers.{name} must be > 0")

        tiers[SubscriptionTier(name)] = TierConfig(
            monthly_points=_positive_int(
                tier_data['monthly_points'], f"tiers.{name}.monthly_points", allow_zero=True
            ),
            xp_multiplier=float(multiplier)
        )
    return tiers


def _parse_credit_guard(data: Any) -> CreditGuardConfig:
    """Parse and validate the provider cost model.

    Raises:
        ValueError: If configuration is invalid
    """
    data = _require_dict(data, 'credit_guard')
    allowed_keys = {'max_jobs_per_request', 'endpoint_request_weights'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in credit_guard: {unknown_keys}")

    defaults = CreditGuardConfig()
    max_jobs = defaults.max_jobs_per_request
    if 'max_jobs_per_request' in data:
        max_jobs = _positive_int(data['max_jobs_per_request'], 'credit_guard.max_jobs_per_request')

    weights = dict(defaults.endpoint_request_weights)
    if 'endpoint_request_weights' in data:
        raw_weights = _require_dict(data['endpoint_request_weights'], 'credit_guard.endpoint_request_weights')
        valid_endpoints = [e.value for e in Endpoint]
        for endpoint, weight in raw_weights.items():
            endpoint = str(endpoint)
            if endpoint not in valid_endpoints:
                raise ValueError(f"Unknown endpoint in credit_guard weights: {endpoint}")
            weights[endpoint] = _positive_int(weight, f"credit_guard.endpoint_request_weights.{endpoint}")

    return CreditGuardConfig(max_jobs_per_request=max_jobs, endpoint_request_weights=weights)


def _parse_cache(data: Any) -> int:
    data = _require_dict(data, 'cache')
    unknown_keys = set(data.keys()) - {'ttl_seconds'}
    if unknown_keys:
        raise ValueError(f"Unknown keys in cache: {unknown_keys}")
    if 'ttl_seconds' not in data:
        raise ValueError("Missing required 'ttl_seconds' in cache")
    return _positive_int(data['ttl_seconds'], 'cache.ttl_seconds')
