from __future__ import annotations

import base64
import hashlib
import logging

import bcrypt

from whispers.errors import AuthFailure, RegistrationError, StoreError
from whispers.storage.base import UserStore
from whispers.storage.models import User

logger = logging.getLogger(__name__)


def _prehash(password: str) -> bytes:
    # bcrypt only reads 72 bytes; a fixed-length digest keeps every byte of the password significant.
    return base64.b64encode(hashlib.sha256(password.encode("utf-8")).digest())


def hash_password(password: str, rounds: int = 12) -> str:
    """
    Hash password with bcrypt (cost factor 12 by default).

    Args:
        password: Plain text password
        rounds: bcrypt cost factor

    Returns:
        Bcrypt hash string
    """
    return bcrypt.hashpw(_prehash(password), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash with constant-time comparison.

    Args:
        password: Plain text password
        password_hash: Bcrypt hash

    Returns:
        True if password matches, False otherwise
    """
    try:
        return bcrypt.checkpw(_prehash(password), password_hash.encode("utf-8"))
    except (ValueError, TypeError):
        # Invalid hash format, or a password bcrypt refuses to process.
        return False


def register(store: UserStore, username: str, password: str, *, rounds: int = 12) -> User:
    """
    Create a new local user.

    Args:
        store: User store
        username: Username (must not already exist)
        password: Plain text password (will be hashed)
        rounds: bcrypt cost factor

    Returns:
        The created User

    Raises:
        RegistrationError: If input is empty, the password can't be hashed, or the store rejects the user
    """
    if not username or not password:
        raise RegistrationError("Missing username or password")

    try:
        password_hash = hash_password(password, rounds=rounds)
    except ValueError as e:
        raise RegistrationError(f"Password rejected: {e}") from e

    try:
        return store.create(username=username, password_hash=password_hash)
    except StoreError as e:
        raise RegistrationError(str(e)) from e


def authenticate(store: UserStore, username: str, password: str) -> User:
    """
    Authenticate a local user with username/password.

    Unknown users and wrong passwords fail identically. Users created through OAuth have
    no password hash and can never log in this way.

    Raises:
        AuthFailure: If the credentials don't match a local user
        StoreError: If the store lookup fails
    """
    if not username or not password:
        raise AuthFailure()

    user = store.find_by_username(username)
    if user is None or not user.password_hash:
        raise AuthFailure()

    if not verify_password(password, user.password_hash):
        raise AuthFailure()

    return user
