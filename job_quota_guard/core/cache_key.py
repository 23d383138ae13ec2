"""
Cache key derivation for search results.
"""

import hashlib
import json
from typing import Any, Mapping, Optional

from .params import SearchDefaults, apply_defaults

ANONYMOUS_SCOPE = "anon:"


def scope_prefix(user_id: Optional[str]) -> str:
    """Scope marker keeping one user's cached results away from another's."""
    if user_id:
        return f"user:{user_id}:"
    return ANONYMOUS_SCOPE


def make_cache_key(
    params: Mapping[str, Any],
    user_id: Optional[str] = None,
    defaults: SearchDefaults = SearchDefaults()
) -> str:
    """Deterministic cache key for a parameter set.

    Parameters are default-filled and serialized with sorted keys, so
    insertion order and reliance on a default do not change the key.

    Args:
        params: Normalized search parameters
        user_id: Owner of the cached result, None for anonymous
        defaults: Defaults used when the request was normalized

    Returns:
        Scope prefix followed by a SHA-256 hex digest
    """
    canonical = json.dumps(
        apply_defaults(params, defaults),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False
    )
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{scope_prefix(user_id)}{digest}"
