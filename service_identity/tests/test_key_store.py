"""
Unit tests for KeyStore.
"""

import threading
from types import MappingProxyType
from unittest.mock import MagicMock

import pytest

from service_identity.app.identity import KeyStore, SigningKey


def make_keys(generation: str, count: int = 8):
    """Keys sharing kids across generations, tagged with the generation."""
    return [
        SigningKey(kid=f"key-{index}", key=MagicMock(), jwk={"generation": generation})
        for index in range(count)
    ]


class TestKeyStore:
    """Test cases for KeyStore."""

    def test_starts_empty(self):
        """Test a new store has no keys and was never refreshed."""
        store = KeyStore()

        assert store.refreshed_at == 0
        assert len(store.snapshot) == 0
        assert store.lookup("any") is None

    def test_lookup_after_replace(self):
        """Test keys installed by replace can be looked up by kid."""
        store = KeyStore()
        keys = make_keys("a", count=2)

        store.replace(keys, 123.0)

        assert store.lookup("key-0") is keys[0]
        assert store.lookup("key-1") is keys[1]
        assert store.lookup("key-2") is None
        assert store.lookup(None) is None
        assert store.refreshed_at == 123.0

    def test_replace_discards_previous_keys(self):
        """Test replace installs a new key set instead of merging."""
        store = KeyStore()
        store.replace([SigningKey(kid="old", key=MagicMock())], 1.0)

        store.replace([SigningKey(kid="new", key=MagicMock())], 2.0)

        assert store.lookup("old") is None
        assert store.lookup("new") is not None
        assert store.refreshed_at == 2.0

    def test_replace_with_empty_key_set(self):
        """Test an empty fetch result clears the store but records the refresh."""
        store = KeyStore()
        store.replace(make_keys("a"), 1.0)

        store.replace([], 5.0)

        assert len(store.snapshot) == 0
        assert store.refreshed_at == 5.0

    def test_snapshot_is_read_only(self):
        """Test a published snapshot cannot be mutated key-by-key."""
        store = KeyStore()
        snapshot = store.replace(make_keys("a", count=1), 1.0)

        assert isinstance(snapshot.keys, MappingProxyType)
        with pytest.raises(TypeError):
            snapshot.keys["intruder"] = SigningKey(kid="intruder", key=MagicMock())

    def test_old_snapshot_unchanged_by_replace(self):
        """Test readers holding a snapshot keep a consistent view."""
        store = KeyStore()
        first = store.replace(make_keys("a"), 1.0)

        store.replace(make_keys("b"), 2.0)

        assert {key.jwk["generation"] for key in first.keys.values()} == {"a"}
        assert first.refreshed_at == 1.0

    def test_replace_is_atomic_under_concurrent_lookups(self):
        """Test concurrent readers never observe a mix of two key sets."""
        store = KeyStore()
        generations = {
            "a": (make_keys("a"), 1.0),
            "b": (make_keys("b"), 2.0),
        }
        refreshed_at_by_generation = {"a": 1.0, "b": 2.0}
        store.replace(*generations["a"])

        stop = threading.Event()
        violations = []

        def writer():
            for iteration in range(5000):
                store.replace(*generations["b" if iteration % 2 else "a"])
            stop.set()

        def reader():
            while not stop.is_set():
                snapshot = store.snapshot
                seen = {key.jwk["generation"] for key in snapshot.keys.values()}
                if len(seen) != 1 or len(snapshot) != 8:
                    violations.append(seen)
                    continue
                (generation,) = seen
                if refreshed_at_by_generation[generation] != snapshot.refreshed_at:
                    violations.append(seen)
                key = store.lookup("key-3")
                if key is None:
                    violations.append({"missing"})

        threads = [threading.Thread(target=reader) for _ in range(4)]
        threads.append(threading.Thread(target=writer))
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert violations == []
