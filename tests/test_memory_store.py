from __future__ import annotations

import pytest

from whispers.errors import StoreError
from whispers.storage.memory_store import InMemoryUserStore


def test_create_assigns_unique_ids() -> None:
    store = InMemoryUserStore()
    a = store.create(username="a")
    b = store.create(username="b")
    assert a.id and b.id and a.id != b.id
    assert store.find_by_id(a.id).username == "a"  # type: ignore[union-attr]
    assert store.find_by_id("missing") is None


def test_duplicate_username_is_rejected() -> None:
    store = InMemoryUserStore()
    store.create(username="a")
    with pytest.raises(StoreError):
        store.create(username="a")


def test_find_or_create_is_idempotent() -> None:
    store = InMemoryUserStore()
    first = store.find_or_create({"oauth_id": "g-123"})
    second = store.find_or_create({"oauth_id": "g-123"})
    assert first.id == second.id
    assert first.username is None and first.password_hash is None
    assert len(store) == 1


def test_find_or_create_applies_defaults_only_on_create() -> None:
    store = InMemoryUserStore()
    created = store.find_or_create({"oauth_id": "g-1"}, {"secret": "first"})
    assert created.secret == "first"
    again = store.find_or_create({"oauth_id": "g-1"}, {"secret": "second"})
    assert again.secret == "first"


def test_returned_users_are_copies_until_updated() -> None:
    store = InMemoryUserStore()
    user = store.create(username="a")
    user.secret = "hidden"
    assert store.find_by_id(user.id).secret is None  # type: ignore[union-attr]

    store.update(user)
    assert store.find_by_id(user.id).secret == "hidden"  # type: ignore[union-attr]


def test_update_unknown_user_fails() -> None:
    store = InMemoryUserStore()
    user = store.create(username="a")
    other = InMemoryUserStore()
    with pytest.raises(StoreError):
        other.update(user)


def test_find_with_secrets_skips_users_without_one() -> None:
    store = InMemoryUserStore()
    quiet = store.create(username="quiet")
    talker = store.create(username="talker")
    talker.secret = "I like trains"
    store.update(talker)

    found = store.find_with_secrets()
    assert [u.id for u in found] == [talker.id]
    assert quiet.id not in {u.id for u in found}


def test_unknown_filter_field_is_rejected() -> None:
    store = InMemoryUserStore()
    with pytest.raises(StoreError):
        store.find_one(googleId="x")
