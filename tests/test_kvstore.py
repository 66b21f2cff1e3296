import pytest

from vrstore.kvstore import KVStore


def test_get_returns_latest_put():
    store = KVStore()
    store.put("k", "v1")
    store.put("k", "v2")
    assert store.get("k") == "v2"


def test_remove_exposes_previous_version():
    store = KVStore()
    store.put("k", "v1")
    store.put("k", "v2")
    assert store.remove("k") == "v2"
    assert store.get("k") == "v1"


def test_missing_key_raises():
    store = KVStore()
    with pytest.raises(KeyError):
        store.get("absent")
    with pytest.raises(KeyError):
        store.remove("absent")


def test_key_empty_after_last_removal():
    store = KVStore()
    store.put("k", "v")
    store.remove("k")
    assert "k" not in store
    with pytest.raises(KeyError):
        store.get("k")


def test_contains():
    store = KVStore()
    store.put("a", "1")
    assert "a" in store
    assert "b" not in store