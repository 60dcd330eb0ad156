from __future__ import annotations

import pytest

from whispers.auth.local import authenticate, hash_password, register, verify_password
from whispers.errors import AuthFailure, RegistrationError
from whispers.storage.memory_store import InMemoryUserStore


def test_hash_password_is_salted_and_verifiable() -> None:
    h1 = hash_password("pw1", rounds=4)
    h2 = hash_password("pw1", rounds=4)
    assert h1 != h2
    assert h1.startswith("$2")
    assert verify_password("pw1", h1)
    assert verify_password("pw1", h2)
    assert not verify_password("pw2", h1)


def test_verify_password_rejects_garbage_hash() -> None:
    assert verify_password("pw1", "not-a-bcrypt-hash") is False


def test_register_then_authenticate_returns_same_user() -> None:
    store = InMemoryUserStore()
    created = register(store, "alice", "pw1", rounds=4)
    assert created.username == "alice"
    assert created.password_hash and created.password_hash != "pw1"
    assert created.oauth_id is None

    user = authenticate(store, "alice", "pw1")
    assert user.id == created.id


def test_wrong_password_and_unknown_user_fail_identically() -> None:
    store = InMemoryUserStore()
    register(store, "alice", "pw1", rounds=4)

    with pytest.raises(AuthFailure) as wrong_pw:
        authenticate(store, "alice", "nope")
    with pytest.raises(AuthFailure) as no_user:
        authenticate(store, "bob", "pw1")

    assert str(wrong_pw.value) == str(no_user.value)


def test_oauth_only_user_cannot_log_in_locally() -> None:
    store = InMemoryUserStore()
    store.create(username="carol", oauth_id="g-1")
    with pytest.raises(AuthFailure):
        authenticate(store, "carol", "")
    with pytest.raises(AuthFailure):
        authenticate(store, "carol", "anything")


def test_duplicate_registration_raises_registration_error() -> None:
    store = InMemoryUserStore()
    register(store, "alice", "pw1", rounds=4)
    with pytest.raises(RegistrationError):
        register(store, "alice", "pw2", rounds=4)
    assert len(store) == 1


@pytest.mark.parametrize("username,password", [("", "pw"), ("alice", "")])
def test_register_requires_username_and_password(username: str, password: str) -> None:
    store = InMemoryUserStore()
    with pytest.raises(RegistrationError):
        register(store, username, password, rounds=4)
    assert len(store) == 0


def test_long_password_registers_and_authenticates() -> None:
    store = InMemoryUserStore()
    password = "correct horse battery staple " * 4
    assert len(password.encode("utf-8")) > 72

    created = register(store, "alice@example.com", password, rounds=4)
    assert authenticate(store, "alice@example.com", password).id == created.id
    with pytest.raises(AuthFailure):
        authenticate(store, "alice@example.com", password[:-1])


def test_passwords_sharing_a_72_byte_prefix_are_distinct() -> None:
    store = InMemoryUserStore()
    register(store, "alice", "a" * 72 + "right", rounds=4)

    assert authenticate(store, "alice", "a" * 72 + "right").username == "alice"
    with pytest.raises(AuthFailure):
        authenticate(store, "alice", "a" * 72 + "wrong")
    with pytest.raises(AuthFailure):
        authenticate(store, "alice", "a" * 72)


def test_username_is_stored_as_given() -> None:
    store = InMemoryUserStore()
    created = register(store, " alice", "pw1", rounds=4)
    assert created.username == " alice"
    assert authenticate(store, " alice", "pw1").id == created.id
    with pytest.raises(AuthFailure):
        authenticate(store, "alice", "pw1")
