from __future__ import annotations

import hashlib
import time
from collections.abc import Sequence

from django.core.cache import cache


def _cache_key(*, scope: str, key_parts: Sequence[str], window_seconds: int, now: float) -> str:
    # Key parts may hold emails or IPs; only a digest ever reaches the cache.
    digest = hashlib.sha256("|".join(str(p) for p in key_parts).encode("utf-8")).hexdigest()
    window = int(now // window_seconds)
    return f"ratelimit:{scope}:{window}:{digest}"


def allow_request(*, scope: str, key_parts: Sequence[str], limit: int, window_seconds: int) -> bool:
    """Count a request against a fixed window shared by every worker.

    Returns False once `limit` requests were already seen in the current
    window. A non-positive limit disables the check.
    """

    if limit <= 0 or window_seconds <= 0:
        return True

    key = _cache_key(scope=scope, key_parts=key_parts, window_seconds=window_seconds, now=time.time())

    if cache.add(key, 1, timeout=window_seconds):
        return True

    try:
        count = cache.incr(key)
    except ValueError:
        # Expired between add() and incr().
        cache.set(key, 1, timeout=window_seconds)
        return True

    # Some backends drop the expiry on incr(); without it the counter never resets.
    cache.touch(key, timeout=window_seconds)
    return count <= limit
