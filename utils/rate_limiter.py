# utils/rate_limiter.py - Approximate counters on the KV store
"""
Fixed-window rate limiting and daily counters kept in the shared store.

The store has no atomic increment, so every counter here is
"read, compare, write back". Two requests landing in the same instant can
both read the old value and both be admitted: counts may run slightly
under the true number under burst concurrency. That is accepted; the goal
is abuse deterrence, not metering. A store with native INCR is the upgrade
path if exact numbers are ever needed.
"""

from typing import Optional

from fastapi import Request

from config import RATE_LIMIT_MESSAGE

from .errors import RateLimited


def get_client_ip(request: Request) -> str:
    """Extract client IP from request."""
    # Edge proxies put the real client address here
    connecting = request.headers.get("CF-Connecting-IP")
    if connecting:
        return connecting.strip()

    # Check for forwarded IP (behind proxy)
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    # Fall back to direct client
    return request.client.host if request.client else "unknown"


def read_counter(store, key: str) -> int:
    raw = store.get(key)
    if raw is None:
        return 0
    try:
        return max(0, int(raw))
    except ValueError:
        return 0


def bump_counter(store, key: str, amount: int = 1, ttl_seconds: Optional[int] = None) -> int:
    """Best-effort increment; returns the value written."""
    value = read_counter(store, key) + amount
    store.put(key, str(value), ttl_seconds=ttl_seconds)
    return value


def rate_key(bot_id: str, client_ip: str, bucket: int) -> str:
    return f"rate:{bot_id}:{client_ip}:{bucket}"


def check_rate_limit(store, bot_id: str, client_ip: str, max_requests: int, window_seconds: int, now: float) -> int:
    """
    Count this request against the (bot, IP, window) bucket.

    Args:
        store: KV store holding the counters
        bot_id: Bot the request is for
        client_ip: Caller address
        max_requests: Requests allowed per window
        window_seconds: Fixed window length
        now: Current epoch seconds

    Returns:
        The count after this request

    Raises:
        RateLimited: 429 with the window length as Retry-After
    """
    bucket = int(now // window_seconds)
    key = rate_key(bot_id, client_ip, bucket)

    count = read_counter(store, key)
    if count >= max_requests:
        raise RateLimited(
            RATE_LIMIT_MESSAGE,
            retry_after=window_seconds,
            reason="rate_limited",
            detail=f"{count} requests in the current {window_seconds}s window (limit {max_requests})",
        )

    # Keep the key a little past its window so late readers still see it
    return bump_counter(store, key, ttl_seconds=window_seconds + 60)
