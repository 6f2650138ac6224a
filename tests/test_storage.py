import pytest

from errors import BackendUnavailable
from storage import LocalStorage


def test_values_survive_reopen(tmp_path):
    path = tmp_path / "store.json"
    storage = LocalStorage(str(path))
    storage.update({"token": "abc", "baskets": {"1": []}})
    reopened = LocalStorage(str(path))
    assert reopened.get("token") == "abc"
    assert reopened.get("baskets") == {"1": []}


def test_get_returns_copies():
    storage = LocalStorage()
    storage.set("users", {"1": {"email": "a@example.com"}})
    users = storage.get("users")
    users["2"] = {}
    assert storage.get("users") == {"1": {"email": "a@example.com"}}


def test_remove_and_default():
    storage = LocalStorage()
    storage.set("session", "1")
    storage.remove("session")
    storage.remove("session")
    assert storage.get("session", "none") == "none"


def test_unreadable_file(tmp_path):
    path = tmp_path / "store.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(BackendUnavailable):
        LocalStorage(str(path))


def test_failed_write_keeps_previous_state(tmp_path):
    storage = LocalStorage(str(tmp_path / "store.json"))
    storage.set("a", 1)
    with pytest.raises(BackendUnavailable):
        storage.update({"a": 2, "b": object()})
    assert storage.get("a") == 1
    assert storage.get("b") is None
