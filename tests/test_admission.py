# tests/test_admission.py - Admission control tests: key, origin, rate limit, budget
import pytest

from bots.admission import (
    admit,
    budget_keys,
    charge_budget,
    check_daily_budget,
    check_origin,
    seconds_until_utc_midnight,
    utc_day,
)
from bots.models import normalize_bot_config
from bots.repository import save_bot
from utils.errors import BotNotFound, BudgetExceeded, OriginNotAllowed, RateLimited, Unauthorized
from utils.rate_limiter import bump_counter, check_rate_limit, rate_key, read_counter

from conftest import START_TIME


def make_bot(store, **fields):
    fields.setdefault("botId", "acme")
    config = normalize_bot_config(fields)
    save_bot(store, config)
    return config


class TestAdmitOrder:
    """Tests for the order of admission steps."""

    def test_unknown_bot(self, store):
        with pytest.raises(BotNotFound):
            admit(store, "ghost", origin=None, supplied_key=None, client_ip="1.1.1.1", now=START_TIME)

    def test_key_checked_before_origin(self, store):
        make_bot(store, botKey="k", allowedOrigins=["https://acme.com"])
        with pytest.raises(Unauthorized):
            admit(store, "acme", origin="https://evil.example", supplied_key=None, client_ip="1.1.1.1", now=START_TIME)

    def test_admitted_request_carries_origin(self, store):
        make_bot(store, allowedOrigins=["https://acme.com"])
        admission = admit(
            store, "acme", origin="https://acme.com", supplied_key=None, client_ip="1.1.1.1", now=START_TIME
        )
        assert admission.allow_origin == "https://acme.com"
        assert admission.config.bot_id == "acme"

    def test_rate_limit_error_carries_origin(self, store):
        make_bot(store, allowedOrigins=["https://acme.com"], rateLimit={"requests": 1})
        admit(store, "acme", origin="https://acme.com", supplied_key=None, client_ip="1.1.1.1", now=START_TIME)
        with pytest.raises(RateLimited) as excinfo:
            admit(store, "acme", origin="https://acme.com", supplied_key=None, client_ip="1.1.1.1", now=START_TIME)
        assert excinfo.value.allow_origin == "https://acme.com"


class TestOriginCheck:
    """Tests for check_origin."""

    def test_absent_origin_skips_check(self):
        config = normalize_bot_config({"botId": "a", "allowedOrigins": ["https://acme.com"]})
        assert check_origin(config, None) is None

    def test_strict_rejects_unlisted_origin(self):
        config = normalize_bot_config({"botId": "a", "allowedOrigins": ["https://acme.com"]})
        with pytest.raises(OriginNotAllowed):
            check_origin(config, "https://acme.com.evil.example")

    def test_strict_matches_normalized_origin(self):
        config = normalize_bot_config({"botId": "a", "allowedOrigins": ["https://acme.com"]})
        assert check_origin(config, "https://ACME.com:443") == "https://ACME.com:443"

    def test_explicit_strict_with_empty_list_rejects_all(self):
        config = normalize_bot_config({"botId": "a", "originPolicy": "strict"})
        with pytest.raises(OriginNotAllowed):
            check_origin(config, "https://acme.com")

    def test_permissive_echoes_well_formed_origin(self):
        config = normalize_bot_config({"botId": "a"})
        assert check_origin(config, "https://anyone.example") == "https://anyone.example"
        assert check_origin(config, "null") is None

    def test_dev_origins_always_allowed(self):
        config = normalize_bot_config({"botId": "a", "allowedOrigins": ["https://acme.com"]})
        assert check_origin(config, "http://localhost:3000", ["http://localhost:3000"]) == "http://localhost:3000"


class TestKeyCheck:
    """Tests for the shared bot key."""

    def test_no_key_configured(self, store):
        make_bot(store)
        admit(store, "acme", origin=None, supplied_key="anything", client_ip="1.1.1.1", now=START_TIME)

    def test_wrong_key(self, store):
        make_bot(store, botKey="right")
        with pytest.raises(Unauthorized):
            admit(store, "acme", origin=None, supplied_key="wrong", client_ip="1.1.1.1", now=START_TIME)


class TestRateLimit:
    """Tests for the fixed-window per-IP limit."""

    def test_fourth_request_rejected(self, store):
        for _ in range(3):
            check_rate_limit(store, "acme", "1.1.1.1", 3, 60, START_TIME)
        with pytest.raises(RateLimited) as excinfo:
            check_rate_limit(store, "acme", "1.1.1.1", 3, 60, START_TIME + 30)
        assert excinfo.value.retry_after == 60
        assert excinfo.value.reason == "rate_limited"

    def test_window_rolls_over(self, store):
        for _ in range(3):
            check_rate_limit(store, "acme", "1.1.1.1", 3, 60, START_TIME)
        assert check_rate_limit(store, "acme", "1.1.1.1", 3, 60, START_TIME + 60) == 1

    def test_counters_are_per_ip_and_per_bot(self, store):
        for _ in range(3):
            check_rate_limit(store, "acme", "1.1.1.1", 3, 60, START_TIME)
        assert check_rate_limit(store, "acme", "2.2.2.2", 3, 60, START_TIME) == 1
        assert check_rate_limit(store, "other", "1.1.1.1", 3, 60, START_TIME) == 1

    def test_counter_expires(self, store, clock):
        check_rate_limit(store, "acme", "1.1.1.1", 3, 60, START_TIME)
        key = rate_key("acme", "1.1.1.1", int(START_TIME // 60))
        assert read_counter(store, key) == 1
        clock.advance(60 + 60)
        assert read_counter(store, key) == 0

    def test_counters_are_approximate_under_concurrency(self, store):
        # No atomic increment: two requests that both read before either
        # writes are both admitted and the counter records only one of them.
        key = rate_key("acme", "1.1.1.1", int(START_TIME // 60))
        first_read = read_counter(store, key)
        second_read = read_counter(store, key)
        store.put(key, str(first_read + 1))
        store.put(key, str(second_read + 1))
        assert read_counter(store, key) == 1

    def test_garbage_counter_reads_as_zero(self, store):
        store.put("rate:acme:x:1", "lots")
        assert read_counter(store, "rate:acme:x:1") == 0
        assert bump_counter(store, "rate:acme:x:1") == 1


class TestDailyBudget:
    """Tests for per-bot daily ceilings."""

    def test_utc_day_and_midnight(self):
        assert utc_day(START_TIME) == "2026-01-01"
        assert seconds_until_utc_midnight(START_TIME) == 23 * 3600

    def test_zero_ceiling_disables_budget(self, store):
        config = make_bot(store)
        charge_budget(store, config, 10 ** 6, START_TIME)
        check_daily_budget(store, config, START_TIME)
        requests_key, tokens_key = budget_keys("acme", START_TIME)
        assert store.get(requests_key) is None
        assert store.get(tokens_key) is None

    def test_request_ceiling(self, store):
        config = make_bot(store, budget={"maxRequestsPerDay": 1})
        check_daily_budget(store, config, START_TIME)
        charge_budget(store, config, 50, START_TIME)
        with pytest.raises(BudgetExceeded) as excinfo:
            check_daily_budget(store, config, START_TIME + 60)
        assert excinfo.value.reason == "budget_requests"
        assert excinfo.value.retry_after == 23 * 3600 - 60

    def test_token_ceiling(self, store):
        config = make_bot(store, budget={"maxTokensPerDay": 1000})
        charge_budget(store, config, 999, START_TIME)
        check_daily_budget(store, config, START_TIME)
        charge_budget(store, config, 1, START_TIME)
        with pytest.raises(BudgetExceeded) as excinfo:
            check_daily_budget(store, config, START_TIME)
        assert excinfo.value.reason == "budget_tokens"

    def test_budget_uses_block_message(self, store):
        config = make_bot(store, budget={"maxRequestsPerDay": 1, "blockMessage": "Back tomorrow!"})
        charge_budget(store, config, 1, START_TIME)
        with pytest.raises(BudgetExceeded) as excinfo:
            check_daily_budget(store, config, START_TIME)
        assert excinfo.value.message == "Back tomorrow!"

    def test_new_day_starts_fresh(self, store):
        config = make_bot(store, budget={"maxRequestsPerDay": 1})
        charge_budget(store, config, 1, START_TIME)
        check_daily_budget(store, config, START_TIME + 23 * 3600)
