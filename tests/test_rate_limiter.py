"""Tests for the per-client sliding-window rate limiter."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from portfolio_chat.api.rate_limiter import KEY_PREFIX, RateLimiter
from portfolio_chat.budget.store import InMemoryStore


class FakeTime:
    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def limiter(fake_time):
    return RateLimiter(InMemoryStore(), max_requests=3, window_seconds=60, clock=fake_time)


class TestRateLimiter:
    def test_allows_up_to_limit(self, limiter):
        assert [limiter.check("1.2.3.4") for _ in range(4)] == [True, True, True, False]

    def test_clients_are_independent(self, limiter):
        for _ in range(3):
            limiter.check("a")
        assert not limiter.check("a")
        assert limiter.check("b")

    def test_window_slides(self, limiter, fake_time):
        for _ in range(3):
            limiter.check("a")
            fake_time.now += 10
        assert not limiter.check("a")

        # first request (t=1000) leaves the window at t=1060
        fake_time.now = 1_061
        assert limiter.check("a")
        assert not limiter.check("a")

    def test_denied_requests_do_not_count(self, limiter, fake_time):
        for _ in range(3):
            limiter.check("a")
        for _ in range(5):
            assert not limiter.check("a")
        fake_time.now += 61
        assert limiter.check("a")

    def test_sweep_removes_idle_clients(self, limiter, fake_time):
        limiter.check("idle")
        fake_time.now += 30
        limiter.check("active")
        fake_time.now += 40

        assert limiter.sweep() == 1
        assert limiter.store.keys(KEY_PREFIX) == [f"{KEY_PREFIX}active"]

    def test_automatic_sweep(self, limiter, fake_time):
        limiter.check("idle")
        fake_time.now += 301
        limiter.check("other")
        assert limiter.store.keys(KEY_PREFIX) == [f"{KEY_PREFIX}other"]

    def test_concurrent_requests_never_exceed_limit(self):
        limiter = RateLimiter(InMemoryStore(), max_requests=10, window_seconds=60)
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: limiter.check("burst"), range(40)))
        assert sum(results) == 10
