from datetime import datetime, timezone

import pytest

from schemas import User
from session import AuthSession


def make_user(uid="1"):
    return User(id=uid, email=f"u{uid}@example.com", date_joined=datetime.now(timezone.utc))


def test_subscribe_delivers_current_identity_immediately():
    session = AuthSession()
    seen = []
    session.subscribe(seen.append)
    assert seen == [None]


def test_initialization_redelivers_once():
    session = AuthSession()
    seen = []
    session.subscribe(seen.append)
    user = make_user()
    session.complete_initialization(user)
    session.complete_initialization(make_user("2"))
    assert seen == [None, user]
    assert session.current_user == user
    assert session.wait_ready(0)


def test_changes_reach_observers_in_registration_order():
    session = AuthSession()
    calls = []
    session.subscribe(lambda u: calls.append(("a", u)))
    session.subscribe(lambda u: calls.append(("b", u)))
    calls.clear()
    user = make_user()
    session.set_user(user)
    session.set_user(None)
    assert calls == [("a", user), ("b", user), ("a", None), ("b", None)]


def test_unsubscribe_stops_delivery():
    session = AuthSession()
    seen = []
    unsubscribe = session.subscribe(seen.append)
    unsubscribe()
    unsubscribe()
    session.set_user(make_user())
    assert seen == [None]


def test_late_subscriber_gets_current_user():
    session = AuthSession()
    user = make_user()
    session.complete_initialization(user)
    seen = []
    session.subscribe(seen.append)
    assert seen == [user]


def test_not_ready_until_initialized():
    session = AuthSession()
    assert not session.initialized
    assert not session.wait_ready(0.01)


def test_failing_observer_does_not_block_readiness():
    session = AuthSession()

    def broken(user):
        if user is not None:
            raise RuntimeError("observer failed")

    session.subscribe(broken)
    with pytest.raises(RuntimeError):
        session.complete_initialization(make_user())
    assert session.wait_ready(0)
