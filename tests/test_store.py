"""Tests for the versioned key-value stores."""

import pytest

from portfolio_chat.budget.store import InMemoryStore, JsonFileStore, update_with_retries


@pytest.fixture(params=["memory", "json"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryStore()
    return JsonFileStore(tmp_path / "ledger" / "store.json")


class ConflictingStore(InMemoryStore):
    """Loses the first `conflicts` compare-and-swap attempts."""

    def __init__(self, conflicts: int):
        super().__init__()
        self.conflicts = conflicts
        self.attempts = 0

    def compare_and_swap(self, key, expected_version, value):
        self.attempts += 1
        if self.attempts <= self.conflicts:
            return False
        return super().compare_and_swap(key, expected_version, value)


class TestKeyValueStore:
    """Behaviour shared by every store."""

    def test_missing_key(self, store):
        assert store.get("nope") is None

    def test_create_with_version_zero(self, store):
        assert store.compare_and_swap("k", 0, {"a": 1})
        assert store.get("k") == ({"a": 1}, 1)

    def test_stale_version_rejected(self, store):
        store.compare_and_swap("k", 0, 1)
        assert not store.compare_and_swap("k", 0, 2)
        assert store.compare_and_swap("k", 1, 2)
        assert store.get("k") == (2, 2)

    def test_set_bumps_version(self, store):
        store.set("k", "a")
        store.set("k", "b")
        assert store.get("k") == ("b", 2)

    def test_delete_and_keys(self, store):
        store.set("ratelimit:a", [1])
        store.set("ratelimit:b", [2])
        store.set("ledger:2024-05", {})
        assert sorted(store.keys("ratelimit:")) == ["ratelimit:a", "ratelimit:b"]

        store.delete("ratelimit:a")
        store.delete("missing")
        assert store.keys("ratelimit:") == ["ratelimit:b"]


class TestInMemoryStore:
    def test_values_are_detached(self):
        store = InMemoryStore()
        value = {"items": [1]}
        store.set("k", value)
        value["items"].append(2)

        fetched, _ = store.get("k")
        fetched["items"].append(3)
        assert store.get("k")[0] == {"items": [1]}


class TestJsonFileStore:
    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "usage.json"
        JsonFileStore(path).set("budget_limits", {"monthly_budget": 1.0})
        assert JsonFileStore(path).get("budget_limits") == ({"monthly_budget": 1.0}, 1)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "usage.json"
        path.write_text("")
        assert JsonFileStore(path).get("anything") is None


class TestUpdateWithRetries:
    """Read-modify-write loop."""

    def test_uses_default_when_absent(self):
        store = InMemoryStore()
        result = update_with_retries(store, "transactions", lambda h: h + ["x"], list)
        assert result == ["x"]
        assert store.get("transactions") == (["x"], 1)

    def test_retries_after_conflict(self):
        store = ConflictingStore(conflicts=3)
        update_with_retries(store, "count", lambda n: n + 1, 0)
        assert store.get("count") == (1, 1)
        assert store.attempts == 4

    def test_gives_up(self):
        store = ConflictingStore(conflicts=100)
        with pytest.raises(RuntimeError):
            update_with_retries(store, "count", lambda n: n + 1, 0, attempts=5)
        assert store.get("count") is None
