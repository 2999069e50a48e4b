"""Tests for the local key-value stores."""

import json

import pytest

from alpo.exceptions import StoreUnavailableError
from alpo.storage.kv_store import InMemoryKeyValueStore, JsonFileKeyValueStore


@pytest.fixture(params=["memory", "file"])
def kv(request, tmp_path):
    if request.param == "memory":
        return InMemoryKeyValueStore()
    return JsonFileKeyValueStore(tmp_path / "store" / "local.json")


def test_missing_key_returns_none(kv):
    """Test reading an unknown key."""
    assert kv.get("nope") is None


def test_set_get_remove(kv):
    """Test basic set, get and remove."""
    kv.set("k", {"a": [1, 2]})
    assert kv.get("k") == {"a": [1, 2]}

    kv.remove("k")
    assert kv.get("k") is None


def test_remove_missing_key_is_noop(kv):
    """Test removing an unknown key."""
    kv.remove("never-set")
    assert kv.get("never-set") is None


def test_returned_values_are_copies(kv):
    """Test callers cannot mutate stored values."""
    kv.set("k", {"items": [1]})

    value = kv.get("k")
    value["items"].append(2)

    assert kv.get("k") == {"items": [1]}


def test_non_serializable_value_is_rejected(kv):
    """Test values must be JSON serializable."""
    with pytest.raises((TypeError, StoreUnavailableError)):
        kv.set("k", {"when": object()})


def test_file_store_persists_between_instances(tmp_path):
    """Test the file store survives a restart."""
    path = tmp_path / "local.json"
    JsonFileKeyValueStore(path).set("chat_session:u1", [{"id": "s"}])

    reopened = JsonFileKeyValueStore(path)

    assert reopened.get("chat_session:u1") == [{"id": "s"}]
    assert json.loads(path.read_text(encoding="utf-8")) == {"chat_session:u1": [{"id": "s"}]}


def test_file_store_leaves_no_temp_files(tmp_path):
    """Test writes leave no temporary files behind."""
    store = JsonFileKeyValueStore(tmp_path / "local.json")
    store.set("a", 1)
    store.set("b", 2)
    store.remove("a")

    assert [p.name for p in tmp_path.iterdir()] == ["local.json"]


def test_corrupt_file_raises_store_unavailable(tmp_path):
    """Test a corrupt file raises StoreUnavailableError."""
    path = tmp_path / "local.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(StoreUnavailableError) as exc_info:
        JsonFileKeyValueStore(path).get("k")

    assert isinstance(exc_info.value.original_error, json.JSONDecodeError)


def test_non_object_file_raises_store_unavailable(tmp_path):
    """Test a file holding a non-object raises StoreUnavailableError."""
    path = tmp_path / "local.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")

    with pytest.raises(StoreUnavailableError):
        JsonFileKeyValueStore(path).get("k")
