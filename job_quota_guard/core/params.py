"""
Search parameter validation and normalization.

Turns raw query parameters into the canonical form that is hashed into
cache keys and sent to the job-search provider.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

NormalizedSearchParams = Dict[str, Union[str, int]]


class Endpoint(Enum):
    """Provider listing windows."""
    WEEK = "7d"
    DAY = "24h"
    HOUR = "1h"


PREMIUM_ENDPOINTS = frozenset({Endpoint.DAY.value, Endpoint.HOUR.value})

MIN_LIMIT = 1
MAX_LIMIT = 50

ALIASES = {
    "title": "title_filter",
    "location": "location_filter",
}

STRING_MAX_LENGTHS = {
    "title_filter": 500,
    "advanced_title_filter": 500,
    "location_filter": 200,
    "industry_filter": 200,
    "organization_description_filter": 300,
    "organization_specialties_filter": 300,
    "organization_slug_filter": 300,
}

# Exceeding these only risks provider timeouts
SOFT_MAX_LENGTHS = {
    "description_filter": 200,
}

BOOLEAN_FILTERS = frozenset({
    "remote",
    "agency",
    "external_apply_url",
    "directapply",
    "include_ai",
    "ai_has_salary",
    "ai_visa_sponsorship_filter",
})

JOB_TYPES = frozenset({
    "CONTRACTOR", "FULL_TIME", "INTERN", "OTHER", "PART_TIME", "TEMPORARY", "VOLUNTEER",
})

SENIORITY_LEVELS = frozenset({
    "Associate", "Director", "Executive", "Mid-Senior level",
    "Entry level", "Not Applicable", "Internship",
})

CHOICE_FILTERS = {
    "order": frozenset({"asc", "desc"}),
    "description_type": frozenset({"text", "html"}),
    "ai_work_arrangement_filter": frozenset({"On-site", "Hybrid", "Remote OK", "Remote Solely"}),
    "ai_experience_level_filter": frozenset({"0-2", "2-5", "5-10", "10+"}),
}

NON_NEGATIVE_INTS = ("offset", "employees_gte", "employees_lte")

BANNED_LOCATION_ABBREVIATIONS = {
    "US": "United States",
    "UK": "United Kingdom",
}

KNOWN_KEYS = frozenset(
    {"limit", "endpoint", "date_filter", "type_filter", "seniority_filter"}
    | set(STRING_MAX_LENGTHS)
    | set(SOFT_MAX_LENGTHS)
    | BOOLEAN_FILTERS
    | set(CHOICE_FILTERS)
    | set(NON_NEGATIVE_INTS)
)


@dataclass(frozen=True)
class SearchDefaults:
    """Values filled in when a request omits them."""
    limit: int = 10
    endpoint: str = Endpoint.WEEK.value

    def __post_init__(self):
        if not MIN_LIMIT <= self.limit <= MAX_LIMIT:
            raise ValueError(f"default limit must be between {MIN_LIMIT} and {MAX_LIMIT}")
        if self.endpoint not in {e.value for e in Endpoint}:
            raise ValueError(f"default endpoint must be one of: {[e.value for e in Endpoint]}")


@dataclass
class NormalizationResult:
    """Normalized parameters plus hard errors and soft warnings."""
    normalized: NormalizedSearchParams
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def is_premium_endpoint(endpoint: Optional[str]) -> bool:
    return endpoint in PREMIUM_ENDPOINTS


def drop_empty(params: Mapping[str, Any]) -> Dict[str, Any]:
    """Drop None values and blank strings."""
    cleaned = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        cleaned[key] = value
    return cleaned


def apply_defaults(params: Mapping[str, Any], defaults: SearchDefaults = SearchDefaults()) -> Dict[str, Any]:
    """Drop empty values and fill the limit and endpoint defaults.

    Idempotent on already-normalized parameters.
    """
    filled = drop_empty(params)
    filled.setdefault("limit", defaults.limit)
    filled.setdefault("endpoint", defaults.endpoint)
    return filled


def _parse_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _parse_bool_string(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower()
    return None


def _check_comma_list(key: str, value: str, allowed: frozenset, errors: List[str]) -> None:
    if ", " in value:
        errors.append(f"{key} values should be comma-delimited without spaces")
    for item in (part.strip() for part in value.split(",")):
        if item not in allowed:
            errors.append(
                f"Invalid {key} value: \"{item}\". Allowed values: {', '.join(sorted(allowed))}"
            )


def _check_title(value: str, errors: List[str], warnings: List[str]) -> None:
    if value.count('"') % 2 != 0:
        errors.append("Unbalanced quotes in title filter - ensure all quotes are properly closed")
    if "AND" in value and "OR" in value and "(" not in value:
        warnings.append("Complex boolean expressions should use parentheses for clarity")


def _check_location(value: str, errors: List[str], warnings: List[str]) -> None:
    tokens = set(value.replace(",", " ").replace('"', " ").split())
    for abbr, full in BANNED_LOCATION_ABBREVIATIONS.items():
        if abbr in tokens:
            errors.append(f"Use \"{full}\" instead of \"{abbr}\" abbreviation")
    if "OR" in tokens and '"' not in value:
        warnings.append("When using OR with locations, consider quoting location names")


def _check_date(value: str, errors: List[str]) -> None:
    try:
        datetime.fromisoformat(value)
    except ValueError:
        try:
            date.fromisoformat(value)
        except ValueError:
            errors.append(f"date_filter must be an ISO date or datetime, got \"{value}\"")


def normalize_search_params(
    raw: Mapping[str, Any],
    defaults: SearchDefaults = SearchDefaults()
) -> NormalizationResult:
    """Validate and canonicalize raw search parameters.

    Applies defaults, clamps ``limit``, validates enumerations and string
    lengths, and lowercases boolean-as-string filters. Unknown keys are
    dropped with a warning so they never reach the provider.

    Args:
        raw: Parameters as received, typically from a query string
        defaults: Default limit and endpoint

    Returns:
        NormalizationResult whose ``normalized`` mapping has sorted keys
    """
    errors: List[str] = []
    warnings: List[str] = []
    params: Dict[str, Any] = {}

    cleaned = drop_empty(raw)
    for key, value in cleaned.items():
        if key in ALIASES:
            continue
        if key not in KNOWN_KEYS:
            warnings.append(f"Ignoring unsupported parameter \"{key}\"")
            continue
        params[key] = value.strip() if isinstance(value, str) else value

    # Aliases win over their canonical keys regardless of order
    for alias, target in ALIASES.items():
        if alias not in cleaned:
            continue
        if target in params:
            warnings.append(f"Parameter \"{alias}\" overrides \"{target}\"")
        value = cleaned[alias]
        params[target] = value.strip() if isinstance(value, str) else value

    normalized: Dict[str, Any] = {}

    limit = params.pop("limit", defaults.limit)
    parsed_limit = _parse_int(limit)
    if parsed_limit is None:
        errors.append(f"limit must be an integer, got \"{limit}\"")
    else:
        clamped = min(max(parsed_limit, MIN_LIMIT), MAX_LIMIT)
        if clamped != parsed_limit:
            warnings.append(f"limit {parsed_limit} clamped to {clamped}")
        normalized["limit"] = clamped

    endpoint = str(params.pop("endpoint", defaults.endpoint))
    if endpoint not in {e.value for e in Endpoint}:
        errors.append(f"Endpoint must be one of: {', '.join(e.value for e in Endpoint)}")
    else:
        normalized["endpoint"] = endpoint

    for key, value in params.items():
        if key in BOOLEAN_FILTERS:
            parsed = _parse_bool_string(value)
            if parsed is None:
                errors.append(f"{key} must be \"true\" or \"false\", got \"{value}\"")
            else:
                normalized[key] = parsed
            continue

        if key in NON_NEGATIVE_INTS:
            parsed_int = _parse_int(value)
            if parsed_int is None or parsed_int < 0:
                errors.append(f"{key} must be a non-negative integer, got \"{value}\"")
            else:
                normalized[key] = parsed_int
            continue

        if not isinstance(value, str):
            errors.append(f"{key} must be a string")
            continue

        if key in STRING_MAX_LENGTHS and len(value) > STRING_MAX_LENGTHS[key]:
            errors.append(f"{key} exceeds maximum length of {STRING_MAX_LENGTHS[key]} characters")
        if key in SOFT_MAX_LENGTHS and len(value) > SOFT_MAX_LENGTHS[key]:
            warnings.append(f"{key} is long ({len(value)} chars) - may cause timeouts")
        if key in CHOICE_FILTERS and value not in CHOICE_FILTERS[key]:
            errors.append(
                f"{key} must be one of: {', '.join(sorted(CHOICE_FILTERS[key]))}"
            )
        if key == "type_filter":
            _check_comma_list(key, value, JOB_TYPES, errors)
        elif key == "seniority_filter":
            _check_comma_list(key, value, SENIORITY_LEVELS, errors)
        elif key == "title_filter":
            _check_title(value, errors, warnings)
        elif key == "location_filter":
            _check_location(value, errors, warnings)
        elif key == "date_filter":
            _check_date(value, errors)
        normalized[key] = value

    if "title_filter" in normalized and "advanced_title_filter" in normalized:
        errors.append("title_filter cannot be combined with advanced_title_filter")

    gte = normalized.get("employees_gte")
    lte = normalized.get("employees_lte")
    if isinstance(gte, int) and isinstance(lte, int) and gte > lte:
        errors.append("employees_gte cannot be greater than employees_lte")

    if "description_filter" in normalized and normalized.get("limit", 0) > 10:
        warnings.append("description_filter with limit > 10 may cause timeouts")

    return NormalizationResult(
        normalized={key: normalized[key] for key in sorted(normalized)},
        errors=errors,
        warnings=warnings
    )


def to_query_params(params: Mapping[str, Any]) -> Dict[str, str]:
    """Provider query string: every normalized key except ``endpoint``."""
    return {key: str(value) for key, value in params.items() if key != "endpoint"}
