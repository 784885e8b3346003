"""Tests for cost estimation and the usage ledger."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from portfolio_chat.budget.cost import CostTracker
from portfolio_chat.budget.ledger import TRANSACTIONS_KEY, UsageLedgerService, current_period
from portfolio_chat.budget.store import InMemoryStore
from portfolio_chat.errors import BudgetExceeded, LedgerWriteError
from portfolio_chat.models import BudgetLimits, DailyUsage, Operation, Route, UsageLedger


class BrokenLedgerStore(InMemoryStore):
    """Reads work; writes to ledger keys fail."""

    def compare_and_swap(self, key, expected_version, value):
        if key.startswith("ledger:"):
            raise OSError("disk full")
        return super().compare_and_swap(key, expected_version, value)


def record(ledger, tokens=100, cost=0.001):
    return ledger.record(tokens, cost, Operation.CHAT_COMPLETION, Route.FULL)


@pytest.fixture
def roomy_ledger(kv_store, clock):
    limits = BudgetLimits(monthly_budget=0.60, daily_budget=0.60)
    return UsageLedgerService(kv_store, limits=limits, clock=clock)


class TestCostTracker:
    """Local price table."""

    def test_known_models(self):
        tracker = CostTracker()
        assert tracker.estimate_cost("gpt-4o-mini", 1_000_000, 1_000_000) == pytest.approx(0.75)
        assert tracker.estimate_cost("text-embedding-3-small", 1_000_000, 0) == pytest.approx(0.02)

    def test_unknown_model_family(self):
        tracker = CostTracker()
        assert tracker.estimate_cost("gpt-4o-mini-2024", 1_000_000, 0) == pytest.approx(0.15)
        assert tracker.estimate_cost("llama", 1_000_000, 1_000_000) == 0.0

    def test_operation_costs(self, cost_tracker):
        assert cost_tracker.estimate_operation_cost(Operation.EMBEDDING, 5) == pytest.approx(1e-7)
        assert cost_tracker.estimate_operation_cost(Operation.CHAT_COMPLETION, 120, 40) == pytest.approx(4.2e-5)
        assert cost_tracker.estimate_operation_cost(Operation.KEYWORD_SEARCH, 500) == 0.0


class TestRecord:
    """Recording actual usage."""

    def test_fresh_period(self, ledger):
        usage = ledger.current_usage()
        assert usage.period == "2024-05"
        assert usage.total_cost == 0
        assert usage.request_count == 0

    def test_record_updates_totals_and_today(self, ledger):
        record(ledger, 100, 0.001)
        usage = record(ledger, 50, 0.002)

        assert usage.total_tokens == 150
        assert usage.total_cost == pytest.approx(0.003)
        assert usage.request_count == 2
        today = usage.day("2024-05-15")
        assert today.requests == 2
        assert today.cost == pytest.approx(0.003)
        assert ledger.current_usage() == usage

    def test_negative_values_rejected(self, ledger):
        with pytest.raises(ValueError):
            ledger.record(-1, 0.0, Operation.EMBEDDING, Route.FULL)
        with pytest.raises(ValueError):
            ledger.record(0, -0.1, Operation.EMBEDDING, Route.FULL)

    def test_transactions_logged(self, ledger):
        record(ledger, 100, 0.001)
        ledger.record(5, 1e-7, Operation.EMBEDDING, Route.CATEGORY)

        history = ledger.get_transaction_history()
        assert [(t.operation, t.route, t.success) for t in history] == [
            ("chat_completion", "full", True),
            ("embedding", "category", True),
        ]
        assert len(ledger.get_transaction_history(limit=1)) == 1
        assert ledger.get_transaction_history(limit=0) == []

    def test_old_daily_buckets_pruned(self, ledger, kv_store):
        seeded = UsageLedger(
            period="2024-05",
            last_reset="2024-05-01T00:00:00+00:00",
            total_cost=0.002,
            daily_usage=[
                DailyUsage(date="2024-04-10", cost=0.001, requests=1),
                DailyUsage(date="2024-05-14", cost=0.001, requests=1),
            ],
        )
        kv_store.set("ledger:2024-05", seeded.to_dict())

        usage = record(ledger)

        assert [d.date for d in usage.daily_usage] == ["2024-05-14", "2024-05-15"]
        assert usage.total_cost == pytest.approx(0.003)

    def test_new_month_starts_from_zero(self, ledger, clock):
        record(ledger, 100, 0.01)
        clock.advance(days=17)

        usage = ledger.current_usage()
        assert current_period(clock()) == "2024-06"
        assert usage.period == "2024-06"
        assert usage.total_cost == 0

    def test_store_failure_raises_and_logs(self, clock):
        ledger = UsageLedgerService(BrokenLedgerStore(), limits=BudgetLimits(), clock=clock)

        with pytest.raises(LedgerWriteError):
            record(ledger)

        history = ledger.get_transaction_history()
        assert len(history) == 1
        assert history[0].success is False

    def test_transaction_log_is_bounded(self, ledger, kv_store):
        entry = {"timestamp": "t", "tokens": 1, "cost": 0.0, "operation": "embedding", "route": "full", "success": True}
        kv_store.set(TRANSACTIONS_KEY, [entry] * 1000)
        record(ledger)
        assert len(kv_store.get(TRANSACTIONS_KEY)[0]) == 1000


class TestAffordability:
    """Budget checks and reservations."""

    def test_within_budget(self, ledger):
        assert ledger.can_afford(305, 0.002)

    def test_monthly_ceiling_at_epsilon(self, roomy_ledger):
        record(roomy_ledger, 100, 0.60 - 1e-6)

        assert not roomy_ledger.can_afford(305, 0.002)
        assert roomy_ledger.can_afford(0, 1e-7)

    def test_daily_ceiling(self, ledger):
        record(ledger, 100, 0.024)
        assert not ledger.can_afford(100, 0.002)
        with pytest.raises(BudgetExceeded) as exc_info:
            ledger.reserve(100, 0.002)
        assert exc_info.value.reason == "daily_budget"

    def test_per_request_token_cap(self, ledger):
        with pytest.raises(BudgetExceeded) as exc_info:
            ledger.reserve(5000, 0.0)
        assert exc_info.value.reason == "max_tokens_per_request"

    def test_request_count_cap(self, kv_store, clock):
        ledger = UsageLedgerService(kv_store, limits=BudgetLimits(max_requests_per_day=2), clock=clock)
        record(ledger)
        assert ledger.can_afford(10, 0.0001)
        record(ledger)
        assert not ledger.can_afford(10, 0.0001)

    def test_reservations_hold_budget(self, kv_store, clock):
        ledger = UsageLedgerService(
            kv_store, limits=BudgetLimits(monthly_budget=0.01, daily_budget=0.01), clock=clock
        )
        first = ledger.reserve(100, 0.006)
        with pytest.raises(BudgetExceeded) as exc_info:
            ledger.reserve(100, 0.006)
        assert exc_info.value.reason == "monthly_budget"

        ledger.release(first)
        assert ledger.current_usage().reserved_cost == 0
        ledger.reserve(100, 0.006)

    def test_record_settles_reservation(self, ledger):
        reservation = ledger.reserve(305, 0.002)
        assert ledger.current_usage().reserved_requests == 1

        usage = ledger.record(200, 0.0005, Operation.CHAT_COMPLETION, Route.FULL, reservation=reservation)
        assert usage.reserved_cost == 0
        assert usage.reserved_requests == 0
        assert usage.total_cost == pytest.approx(0.0005)

    def test_reservation_across_month_boundary(self, ledger, clock):
        reservation = ledger.reserve(305, 0.002)
        clock.advance(days=17)

        usage = ledger.record(200, 0.0005, Operation.CHAT_COMPLETION, Route.FULL, reservation=reservation)

        assert usage.period == "2024-06"
        assert usage.reserved_cost == 0
        clock.advance(days=-17)
        assert ledger.current_usage().reserved_cost == 0

    def test_abandoned_reservations_expire(self, ledger, clock, kv_store):
        for _ in range(12):
            ledger.reserve(305, 0.002)
        assert not ledger.can_afford(305, 0.002)

        clock.advance(seconds=301)

        usage = ledger.current_usage()
        assert usage.reserved_cost == 0
        assert usage.total_cost == 0
        assert ledger.can_afford(305, 0.002)

        ledger.reserve(305, 0.002)
        stored, _ = kv_store.get("ledger:2024-05")
        assert len(stored["reservations"]) == 1

    def test_release_after_expiry_is_harmless(self, ledger, clock):
        reservation = ledger.reserve(305, 0.002)
        clock.advance(seconds=301)
        ledger.release(reservation)
        assert ledger.current_usage().reserved_requests == 0

    def test_only_todays_reservations_count_against_daily_budget(self, kv_store, clock, limits):
        ledger = UsageLedgerService(kv_store, limits=limits, clock=clock, reservation_ttl=2 * 86400)
        for _ in range(12):
            ledger.reserve(305, 0.002)
        assert not ledger.can_afford(305, 0.002)

        clock.advance(days=1)

        usage = ledger.current_usage()
        assert usage.reserved_cost == pytest.approx(0.024)
        assert usage.reservations_on("2024-05-16") == []
        assert ledger.can_afford(305, 0.002)

    def test_unreachable_store_fails_closed(self, clock):
        ledger = UsageLedgerService(BrokenLedgerStore(), limits=BudgetLimits(), clock=clock)
        with pytest.raises(BudgetExceeded) as exc_info:
            ledger.reserve(100, 0.001)
        assert exc_info.value.reason == "ledger_unavailable"

    def test_can_afford_denies_on_read_error(self, ledger, monkeypatch):
        def boom():
            raise OSError("unreachable")

        monkeypatch.setattr(ledger, "current_usage", boom)
        assert not ledger.can_afford(1, 0.0)

    def test_concurrent_records(self, ledger):
        def work(_):
            for _ in range(25):
                record(ledger, 10, 0.0001)

        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(work, range(4)))

        usage = ledger.current_usage()
        assert usage.request_count == 100
        assert usage.total_tokens == 1000


class TestLimitsAndStats:
    """Limit management and the derived stats view."""

    def test_set_budget_limits(self, ledger):
        assert ledger.set_budget_limits(monthly_budget=1.0)
        assert ledger.get_budget_limits().monthly_budget == 1.0

    def test_invalid_limits_rejected(self, ledger):
        assert not ledger.set_budget_limits(daily_budget=5.0)
        assert not ledger.set_budget_limits(bogus=1)
        assert ledger.get_budget_limits().daily_budget == 0.025

    def test_reset_period(self, ledger):
        record(ledger)
        ledger.reset_period()
        assert ledger.current_usage().request_count == 0

    def test_usage_stats(self, roomy_ledger):
        record(roomy_ledger, 100, 0.30)
        stats = roomy_ledger.usage_stats()

        assert stats.usage_percentage == pytest.approx(50.0)
        assert stats.remaining_budget == pytest.approx(0.30)
        assert stats.projected_monthly_usage == pytest.approx(0.30 / 15 * 31)
        assert not stats.is_near_limit
        assert stats.can_make_request

        record(roomy_ledger, 100, 0.20)
        stats = roomy_ledger.usage_stats()
        assert stats.is_near_limit
        assert stats.remaining_daily_budget == pytest.approx(0.10)
