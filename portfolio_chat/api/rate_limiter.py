"""Per-client request rate limiter over a versioned key-value store."""

import time
from collections.abc import Callable

from portfolio_chat.budget.store import InMemoryStore, KeyValueStore
from portfolio_chat.config import config
from portfolio_chat.logger import logger

KEY_PREFIX = "ratelimit:"
SWEEP_INTERVAL_SECONDS = 300.0
MAX_CAS_ATTEMPTS = 20


class RateLimiter:
    """
    Allows at most `max_requests` per client within the trailing `window_seconds`.

    Each client key holds its recent request timestamps. The prune, check and
    append happen in one compare-and-swap, so two concurrent requests cannot
    both take the last slot.
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        max_requests: int | None = None,
        window_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store or InMemoryStore()
        self.max_requests = max_requests or config.rate_limit_requests
        self.window_seconds = window_seconds or config.rate_limit_window_seconds
        self.clock = clock
        self._last_sweep = clock()

    def check(self, client_id: str) -> bool:
        """Record a request for `client_id`; False when the client is over the limit."""
        now = self.clock()
        if now - self._last_sweep >= SWEEP_INTERVAL_SECONDS:
            self.sweep()

        key = f"{KEY_PREFIX}{client_id}"
        window_start = now - self.window_seconds

        for _ in range(MAX_CAS_ATTEMPTS):
            entry = self.store.get(key)
            timestamps, version = entry if entry is not None else ([], 0)
            recent = [t for t in timestamps if t > window_start]
            if len(recent) >= self.max_requests:
                logger.warning(f"Rate limit exceeded for {client_id}")
                return False
            recent.append(now)
            if self.store.compare_and_swap(key, version, recent):
                return True

        logger.warning(f"Rate limiter contention for {client_id}, denying request")
        return False

    def sweep(self) -> int:
        """Drop clients with no requests inside the window. Returns keys removed."""
        now = self.clock()
        self._last_sweep = now
        window_start = now - self.window_seconds
        removed = 0
        for key in self.store.keys(KEY_PREFIX):
            entry = self.store.get(key)
            if entry is None:
                continue
            timestamps, version = entry
            recent = [t for t in timestamps if t > window_start]
            if not recent:
                self.store.delete(key)
                removed += 1
            elif len(recent) < len(timestamps):
                self.store.compare_and_swap(key, version, recent)
        if removed:
            logger.info(f"Rate limiter swept {removed} idle clients")
        return removed
