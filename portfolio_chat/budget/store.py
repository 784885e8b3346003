"""Versioned key-value stores backing the usage ledger and rate limiter."""

import json
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from portfolio_chat.logger import logger

Versioned = tuple[Any, int]


class KeyValueStore(ABC):
    """
    Key-value store with optimistic concurrency.

    Every write bumps a per-key version. Writers read `(value, version)`,
    compute the new value and commit with `compare_and_swap`, retrying on
    conflict. A version of 0 means the key does not exist yet.
    """

    @abstractmethod
    def get(self, key: str) -> Versioned | None:
        """Return `(value, version)` or None when the key is absent."""

    @abstractmethod
    def compare_and_swap(self, key: str, expected_version: int, value: Any) -> bool:
        """Write `value` only if the key is still at `expected_version`."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Unconditional write."""

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def keys(self, prefix: str = "") -> list[str]:
        pass


class InMemoryStore(KeyValueStore):
    """Process-local store guarded by a lock."""

    def __init__(self):
        self._data: dict[str, Versioned] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Versioned | None:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, version = entry
            return json.loads(json.dumps(value)), version

    def compare_and_swap(self, key: str, expected_version: int, value: Any) -> bool:
        with self._lock:
            current = self._data.get(key)
            current_version = current[1] if current else 0
            if current_version != expected_version:
                return False
            # store a detached copy so callers cannot mutate committed state
            self._data[key] = (json.loads(json.dumps(value)), current_version + 1)
            return True

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            current = self._data.get(key)
            version = current[1] if current else 0
            self._data[key] = (json.loads(json.dumps(value)), version + 1)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return [k for k in self._data if k.startswith(prefix)]


class JsonFileStore(KeyValueStore):
    """
    Single-file JSON store for one host.

    The whole file is rewritten atomically (temp file + os.replace) on each
    write; a thread lock serializes writers within the process.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _load(self) -> dict[str, dict[str, Any]]:
        if not self.path.exists():
            return {}
        with open(self.path, encoding="utf-8") as f:
            content = f.read()
        if not content.strip():
            return {}
        return json.loads(content)

    def _save(self, data: dict[str, dict[str, Any]]) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> Versioned | None:
        with self._lock:
            entry = self._load().get(key)
        if entry is None:
            return None
        return entry["value"], entry["version"]

    def compare_and_swap(self, key: str, expected_version: int, value: Any) -> bool:
        with self._lock:
            data = self._load()
            current_version = data[key]["version"] if key in data else 0
            if current_version != expected_version:
                return False
            data[key] = {"value": value, "version": current_version + 1}
            self._save(data)
            return True

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._load()
            version = data[key]["version"] if key in data else 0
            data[key] = {"value": value, "version": version + 1}
            self._save(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if data.pop(key, None) is not None:
                self._save(data)

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return [k for k in self._load() if k.startswith(prefix)]


def update_with_retries(store: KeyValueStore, key: str, mutate, default, attempts: int = 20):
    """
    Read-modify-write `key` through compare-and-swap.

    `mutate` receives the current value (or `default` when absent) and returns
    the value to commit. Returns the committed value.

    Raises:
        RuntimeError: if every attempt lost the race
    """
    for _ in range(attempts):
        entry = store.get(key)
        if entry is None:
            current, version = default() if callable(default) else default, 0
        else:
            current, version = entry
        new_value = mutate(current)
        if store.compare_and_swap(key, version, new_value):
            return new_value
    logger.warning(f"Gave up updating {key} after {attempts} conflicting writes")
    raise RuntimeError(f"Too much contention updating {key}")
