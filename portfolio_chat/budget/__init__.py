"""Usage accounting: cost estimates, versioned stores and the budget ledger."""

from .cost import CostTracker
from .ledger import Reservation, UsageLedgerService, current_period
from .store import InMemoryStore, JsonFileStore, KeyValueStore

__all__ = [
    "CostTracker",
    "Reservation",
    "UsageLedgerService",
    "current_period",
    "InMemoryStore",
    "JsonFileStore",
    "KeyValueStore",
]
