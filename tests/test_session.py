"""Tests for the session store."""

import json
from unittest.mock import Mock

import pytest

from bracual.errors import SessionError
from bracual.session import SessionStore


@pytest.fixture
def store(tmp_path):
    return SessionStore(tmp_path / "state" / "session.json")


def test_starts_signed_out(store):
    assert store.load() is None
    assert store.is_authenticated is False


def test_login_persists_user(store):
    user = store.login("  person@example.com ")

    assert user.email == "person@example.com"
    assert store.is_authenticated is True
    assert json.loads(store.path.read_text()) == {"email": "person@example.com"}

    restored = SessionStore(store.path)
    assert restored.load().email == "person@example.com"


@pytest.mark.parametrize("email", ["", "   ", "no-at-sign"])
def test_login_rejects_invalid_email(store, email):
    with pytest.raises(SessionError):
        store.login(email)
    assert store.is_authenticated is False
    assert not store.path.exists()


def test_logout_removes_session(store):
    store.login("person@example.com")

    store.logout()

    assert store.is_authenticated is False
    assert not store.path.exists()


def test_logout_when_signed_out(store):
    observer = Mock()
    store.add_observer(observer)

    store.logout()

    observer.assert_not_called()


def test_observers_notified(store):
    observer = Mock()
    store.add_observer(observer)

    store.login("person@example.com")
    store.logout()

    assert observer.call_count == 2
    assert observer.call_args_list[0].args[0].email == "person@example.com"
    assert observer.call_args_list[1].args[0] is None


def test_corrupt_session_is_signed_out(store):
    store.path.parent.mkdir(parents=True)
    store.path.write_text("{not json")

    assert store.load() is None
    assert store.is_authenticated is False
