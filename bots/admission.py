# bots/admission.py
"""
Request gating for /api/chat.

Steps run in order and the first failure wins:
bot exists -> bot key -> origin -> per-IP rate limit -> daily budget.
The budget is only checked here; it is charged after a successful model
call (see charge_budget).
"""

import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from config import BUDGET_COUNTER_TTL_SECONDS
from storage import KVStore
from utils.errors import BotNotFound, ChatError, BudgetExceeded, OriginNotAllowed, Unauthorized
from utils.logger import get_admission_logger
from utils.rate_limiter import bump_counter, check_rate_limit, read_counter
from utils.validators import normalize_origin

from .models import BotConfig, OriginPolicy
from .repository import load_bot

logger = get_admission_logger()


@dataclass
class Admission:
    """Outcome of a successful admission check."""
    config: BotConfig
    allow_origin: Optional[str]
    client_ip: str


def utc_day(now: float) -> str:
    return datetime.fromtimestamp(now, tz=timezone.utc).strftime("%Y-%m-%d")


def seconds_until_utc_midnight(now: float) -> int:
    current = datetime.fromtimestamp(now, tz=timezone.utc)
    midnight = (current + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return max(1, int((midnight - current).total_seconds()))


def budget_keys(bot_id: str, now: float):
    day = utc_day(now)
    return f"budget:req:{bot_id}:{day}", f"budget:tok:{bot_id}:{day}"


def check_bot_key(config: BotConfig, supplied: Optional[str]) -> None:
    if not config.bot_key:
        return
    if not supplied or not hmac.compare_digest(supplied.encode("utf-8"), config.bot_key.encode("utf-8")):
        raise Unauthorized("Missing or invalid bot key.")


def check_origin(config: BotConfig, origin: Optional[str], dev_origins: Iterable[str] = ()) -> Optional[str]:
    """
    Decide which origin (if any) to echo in Access-Control-Allow-Origin.

    No Origin header means a server-to-server caller: nothing to check.
    A permissive bot (empty allowlist) accepts any well-formed origin;
    that default is an operator policy choice, see originPolicy.

    Raises:
        OriginNotAllowed: Strict bot and the origin is not on its list
    """
    if not origin:
        return None

    normalized = normalize_origin(origin)
    if normalized and normalized in set(dev_origins):
        return origin

    if config.origin_policy == OriginPolicy.PERMISSIVE:
        return origin if normalized else None

    if normalized and normalized in config.allowed_origins:
        return origin

    raise OriginNotAllowed(
        "This site is not allowed to use this chat.",
        detail=f"origin {origin!r} not in allowlist",
    )


def check_daily_budget(store: KVStore, config: BotConfig, now: float) -> None:
    """
    Hard stop once either daily ceiling is reached. A ceiling of 0 disables
    that dimension. Retry-After points at the next UTC midnight.
    """
    budget = config.budget
    requests_key, tokens_key = budget_keys(config.bot_id, now)

    if budget.max_requests_per_day:
        used = read_counter(store, requests_key)
        if used >= budget.max_requests_per_day:
            raise BudgetExceeded(
                budget.block_message,
                retry_after=seconds_until_utc_midnight(now),
                reason="budget_requests",
                detail=f"{used}/{budget.max_requests_per_day} requests today",
            )

    if budget.max_tokens_per_day:
        used = read_counter(store, tokens_key)
        if used >= budget.max_tokens_per_day:
            raise BudgetExceeded(
                budget.block_message,
                retry_after=seconds_until_utc_midnight(now),
                reason="budget_tokens",
                detail=f"{used}/{budget.max_tokens_per_day} tokens today",
            )


def charge_budget(store: KVStore, config: BotConfig, tokens: int, now: float) -> None:
    """Record one successful call and its token usage against today's counters."""
    requests_key, tokens_key = budget_keys(config.bot_id, now)
    if config.budget.max_requests_per_day:
        bump_counter(store, requests_key, 1, ttl_seconds=BUDGET_COUNTER_TTL_SECONDS)
    if config.budget.max_tokens_per_day:
        bump_counter(store, tokens_key, max(0, int(tokens)), ttl_seconds=BUDGET_COUNTER_TTL_SECONDS)


def admit(
    store: KVStore,
    bot_id: str,
    *,
    origin: Optional[str],
    supplied_key: Optional[str],
    client_ip: str,
    now: float,
    dev_origins: Iterable[str] = (),
) -> Admission:
    """
    Run every admission step for one chat request.

    Raises:
        ChatError subclass for the first failing step
    """
    config = load_bot(store, bot_id)
    if config is None:
        raise BotNotFound("This chat is not available.", detail=f"no config for {bot_id!r}")

    check_bot_key(config, supplied_key)
    allow_origin = check_origin(config, origin, dev_origins)

    try:
        check_rate_limit(
            store,
            config.bot_id,
            client_ip,
            config.rate_limit.requests,
            config.rate_limit.window_seconds,
            now,
        )
        check_daily_budget(store, config, now)
    except ChatError as e:
        # Let the browser read the 429 message
        e.allow_origin = allow_origin
        logger.info(f"[{bot_id}] Rejected {client_ip}: {e.reason}")
        raise

    logger.debug(f"[{bot_id}] Admitted request from {client_ip}")
    return Admission(config=config, allow_origin=allow_origin, client_ip=client_ip)
