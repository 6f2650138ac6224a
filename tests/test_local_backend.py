from client import Backend
from local_backend import LocalBackend


def test_keys_sort_in_creation_order(storage):
    service = LocalBackend(storage=storage)
    keys = [service.generate_key() for _ in range(12)]
    assert keys == sorted(keys)
    assert LocalBackend(storage=storage).generate_key() > keys[-1]


def test_startup_completes_with_a_corrupt_user_record(storage):
    storage.update({"session": "1", "users": {"1": {"id": "1"}}})
    service = LocalBackend(storage=storage)
    seen = []
    service.session.subscribe(seen.append)
    service.start()
    assert service.session.wait_ready(5)
    assert seen == [None, None]
    assert service.current_user is None
    service.close()


def test_every_adapter_must_define_from_config():
    assert "from_config" in Backend.__abstractmethods__
    assert "from_config" not in LocalBackend.__abstractmethods__
