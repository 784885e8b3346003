"""Usage ledger enforcing monthly and daily spending ceilings."""

import calendar
import uuid
from collections.abc import Callable
from dataclasses import asdict, dataclass, replace
from datetime import date, datetime, timedelta, timezone

from portfolio_chat.config import config
from portfolio_chat.errors import BudgetExceeded, LedgerWriteError
from portfolio_chat.logger import logger
from portfolio_chat.models import (
    BudgetLimits,
    DailyUsage,
    HeldReservation,
    Operation,
    Route,
    TokenTransaction,
    UsageLedger,
    UsageStats,
)

from .store import InMemoryStore, KeyValueStore, update_with_retries

LEDGER_KEY_PREFIX = "ledger:"
LIMITS_KEY = "budget_limits"
TRANSACTIONS_KEY = "transactions"

DAILY_RETENTION_DAYS = 31
MAX_TRANSACTIONS = 1000


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def current_period(now: datetime) -> str:
    """Billing period for a timestamp, e.g. "2024-05"."""
    return now.strftime("%Y-%m")


def default_limits() -> BudgetLimits:
    return BudgetLimits(
        monthly_budget=config.monthly_budget,
        daily_budget=config.daily_budget,
        max_tokens_per_request=config.max_tokens_per_request,
        max_requests_per_day=config.max_requests_per_day,
        warning_threshold=config.warning_threshold,
    )


@dataclass(frozen=True)
class Reservation:
    """Budget held for an in-flight request until it is recorded or released."""
    id: str
    tokens: int
    cost: float
    period: str


class UsageLedgerService:
    """
    Tracks spend per billing period in a versioned key-value store.

    Usage is keyed by `current_period(clock())`, so a new month starts from
    zero without any reset job. All updates go through compare-and-swap.

    Reservations older than `reservation_ttl` seconds are treated as abandoned
    (their process died before recording or releasing) and dropped.
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        limits: BudgetLimits | None = None,
        clock: Callable[[], datetime] | None = None,
        reservation_ttl: float | None = None,
    ):
        self.store = store or InMemoryStore()
        self.clock = clock or utc_now
        self.reservation_ttl = timedelta(
            seconds=config.reservation_ttl_seconds if reservation_ttl is None else reservation_ttl
        )
        self._default_limits = limits or default_limits()
        if limits is not None:
            self.store.set(LIMITS_KEY, asdict(limits))

    # ---- reads ----

    def _ledger_key(self, period: str) -> str:
        return f"{LEDGER_KEY_PREFIX}{period}"

    def _fresh_ledger(self, period: str) -> dict:
        return UsageLedger(period=period, last_reset=self.clock().isoformat()).to_dict()

    def _load(self, raw: dict) -> UsageLedger:
        """Parse a stored ledger, dropping expired reservations."""
        usage = UsageLedger.from_dict(raw)
        dropped = usage.drop_expired(self.clock() - self.reservation_ttl)
        if dropped:
            logger.warning(f"Dropped {dropped} expired budget reservations in {usage.period}")
        return usage

    def current_usage(self) -> UsageLedger:
        """Usage for the current period (zeroed when nothing was recorded yet)."""
        period = current_period(self.clock())
        entry = self.store.get(self._ledger_key(period))
        if entry is None:
            return UsageLedger.from_dict(self._fresh_ledger(period))
        return self._load(entry[0])

    def get_budget_limits(self) -> BudgetLimits:
        entry = self.store.get(LIMITS_KEY)
        if entry is None:
            return self._default_limits
        return BudgetLimits(**entry[0])

    def _today(self) -> str:
        return self.clock().date().isoformat()

    def _breach(self, usage: UsageLedger, limits: BudgetLimits, tokens: int, cost: float) -> str | None:
        """Name of the first limit the estimate would break, or None."""
        today = usage.day(self._today()) or DailyUsage(date=self._today())
        held_today = usage.reservations_on(self._today())
        if tokens > limits.max_tokens_per_request:
            return "max_tokens_per_request"
        if usage.total_cost + usage.reserved_cost + cost > limits.monthly_budget:
            return "monthly_budget"
        if today.cost + sum(r.cost for r in held_today) + cost > limits.daily_budget:
            return "daily_budget"
        if today.requests + len(held_today) >= limits.max_requests_per_day:
            return "max_requests_per_day"
        return None

    def can_afford(self, estimated_tokens: int, estimated_cost: float) -> bool:
        """Fail-closed affordability check, counting outstanding reservations."""
        try:
            reason = self._breach(
                self.current_usage(), self.get_budget_limits(), estimated_tokens, estimated_cost
            )
        except Exception as e:
            logger.error(f"Budget check failed, denying request: {e}")
            return False
        if reason:
            logger.info(f"Budget check denied request: {reason}")
        return reason is None

    # ---- writes ----

    def reserve(self, estimated_tokens: int, estimated_cost: float) -> Reservation:
        """
        Atomically check affordability and hold the estimate.

        Raises:
            BudgetExceeded: when a limit would be broken or the ledger is unreachable
        """
        now = self.clock()
        period = current_period(now)
        limits = self.get_budget_limits()
        held = HeldReservation(
            id=uuid.uuid4().hex, tokens=estimated_tokens, cost=estimated_cost, created_at=now.isoformat()
        )

        def mutate(raw: dict) -> dict:
            usage = self._load(raw)
            reason = self._breach(usage, limits, estimated_tokens, estimated_cost)
            if reason:
                raise BudgetExceeded(f"Budget limit reached: {reason}", reason=reason)
            usage.reservations.append(held)
            return usage.to_dict()

        try:
            update_with_retries(
                self.store, self._ledger_key(period), mutate, lambda: self._fresh_ledger(period)
            )
        except BudgetExceeded:
            raise
        except Exception as e:
            logger.error(f"Could not reserve budget: {e}")
            raise BudgetExceeded("Usage ledger unavailable", reason="ledger_unavailable") from e

        return Reservation(id=held.id, tokens=estimated_tokens, cost=estimated_cost, period=period)

    @staticmethod
    def _settle(usage: UsageLedger, reservation: Reservation) -> None:
        usage.reservations = [r for r in usage.reservations if r.id != reservation.id]

    def release(self, reservation: Reservation) -> None:
        """Free a reservation whose request incurred no cost."""

        def mutate(raw: dict) -> dict:
            usage = self._load(raw)
            self._settle(usage, reservation)
            return usage.to_dict()

        try:
            update_with_retries(
                self.store,
                self._ledger_key(reservation.period),
                mutate,
                lambda: self._fresh_ledger(reservation.period),
            )
        except Exception as e:
            logger.error(f"Failed to release reservation {reservation.id}: {e}")

    def record(
        self,
        tokens: int,
        cost: float,
        operation: Operation | str,
        route: Route | str,
        reservation: Reservation | None = None,
    ) -> UsageLedger:
        """
        Add actual usage to the current period and today's bucket.

        Raises:
            ValueError: for negative tokens or cost
            LedgerWriteError: when the update cannot be persisted
        """
        if tokens < 0 or cost < 0:
            raise ValueError("tokens and cost must be non-negative")

        now = self.clock()
        period = current_period(now)
        today = now.date()
        operation_name = operation.value if isinstance(operation, Operation) else str(operation)
        route_name = route.value if isinstance(route, Route) else str(route)

        if reservation is not None and reservation.period != period:
            self.release(reservation)
            reservation = None

        def mutate(raw: dict) -> dict:
            usage = self._load(raw)
            usage.total_tokens += tokens
            usage.total_cost += cost
            usage.request_count += 1

            bucket = usage.day(today.isoformat())
            if bucket is None:
                bucket = DailyUsage(date=today.isoformat())
                usage.daily_usage.append(bucket)
            bucket.tokens += tokens
            bucket.cost += cost
            bucket.requests += 1

            cutoff = today - timedelta(days=DAILY_RETENTION_DAYS)
            usage.daily_usage = [
                d for d in usage.daily_usage if date.fromisoformat(d.date) >= cutoff
            ]
            if reservation is not None:
                self._settle(usage, reservation)
            return usage.to_dict()

        try:
            committed = update_with_retries(
                self.store, self._ledger_key(period), mutate, lambda: self._fresh_ledger(period)
            )
        except Exception as e:
            logger.error(f"Failed to record usage ({tokens} tokens, ${cost:.6f}): {e}")
            self._log_transaction(now, tokens, cost, operation_name, route_name, success=False)
            raise LedgerWriteError(f"Failed to record usage: {e}") from e

        self._log_transaction(now, tokens, cost, operation_name, route_name, success=True)
        logger.info(f"Recorded usage: {tokens} tokens, ${cost:.6f} ({operation_name}/{route_name})")
        return UsageLedger.from_dict(committed)

    def _log_transaction(
        self, now: datetime, tokens: int, cost: float, operation: str, route: str, success: bool
    ) -> None:
        transaction = TokenTransaction(
            timestamp=now.isoformat(),
            tokens=tokens,
            cost=cost,
            operation=operation,
            route=route,
            success=success,
        )

        def append(history: list) -> list:
            history.append(asdict(transaction))
            return history[-MAX_TRANSACTIONS:]

        try:
            update_with_retries(self.store, TRANSACTIONS_KEY, append, list)
        except Exception as e:
            logger.warning(f"Could not append to transaction log: {e}")

    def set_budget_limits(self, **changes) -> bool:
        """Validate and persist new limits; unknown fields or invalid values return False."""
        try:
            limits = replace(self.get_budget_limits(), **changes)
            self.store.set(LIMITS_KEY, asdict(limits))
        except (TypeError, ValueError) as e:
            logger.warning(f"Rejected budget limits {changes}: {e}")
            return False
        except Exception as e:
            logger.error(f"Failed to persist budget limits: {e}")
            return False
        logger.info(f"Updated budget limits: {limits}")
        return True

    def reset_period(self) -> None:
        """Discard usage for the current period."""
        period = current_period(self.clock())
        self.store.delete(self._ledger_key(period))
        logger.info(f"Reset usage for period {period}")

    def get_transaction_history(self, limit: int = 50) -> list[TokenTransaction]:
        entry = self.store.get(TRANSACTIONS_KEY)
        if entry is None or limit <= 0:
            return []
        return [TokenTransaction(**t) for t in entry[0][-limit:]]

    def usage_stats(self) -> UsageStats:
        """Derived budget view, including a straight-line monthly projection."""
        now = self.clock()
        usage = self.current_usage()
        limits = self.get_budget_limits()
        today = usage.day(now.date().isoformat()) or DailyUsage(date=now.date().isoformat())

        days_in_month = calendar.monthrange(now.year, now.month)[1]
        projected = usage.total_cost / now.day * days_in_month

        usage_percentage = usage.total_cost / limits.monthly_budget * 100
        daily_percentage = today.cost / limits.daily_budget * 100
        threshold = limits.warning_threshold * 100

        return UsageStats(
            current_usage=usage,
            budget_limits=limits,
            remaining_budget=max(0.0, limits.monthly_budget - usage.total_cost),
            remaining_daily_budget=max(0.0, limits.daily_budget - today.cost),
            usage_percentage=usage_percentage,
            daily_usage_percentage=daily_percentage,
            is_near_limit=usage_percentage >= threshold or daily_percentage >= threshold,
            can_make_request=self._breach(usage, limits, 0, 0.0) is None,
            projected_monthly_usage=projected,
        )
