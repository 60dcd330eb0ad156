"""In-process user store for development (fallback when Postgres is not configured)."""

from __future__ import annotations

import threading
from dataclasses import replace
from typing import Any, Dict, List, Optional

from whispers.errors import StoreError
from whispers.storage.models import USER_FIELDS, User, new_user_id

# Fields that behave like UNIQUE columns in the Postgres schema.
_UNIQUE_FIELDS = ("username", "oauth_id")


def _check_fields(fields: Dict[str, Any]) -> None:
    unknown = sorted(set(fields) - set(USER_FIELDS) - {"id"})
    if unknown:
        raise StoreError(f"Unknown user field(s): {', '.join(unknown)}")


class InMemoryUserStore:
    """
    Dict-backed store compatible with the Postgres store interface.

    Returned users are copies, so callers must `update()` to persist changes, exactly as
    with the database backend.
    """

    def __init__(self) -> None:
        self._users: Dict[str, User] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._users)

    def _match(self, filters: Dict[str, Any]) -> Optional[User]:
        for user in self._users.values():
            if all(getattr(user, k) == v for k, v in filters.items()):
                return user
        return None

    def _insert(self, fields: Dict[str, Any]) -> User:
        for key in _UNIQUE_FIELDS:
            value = fields.get(key)
            if value is not None and self._match({key: value}) is not None:
                raise StoreError(f"Duplicate {key}: {value!r}")
        user = User(id=new_user_id(), **fields)
        self._users[user.id] = user
        return replace(user)

    def find_by_id(self, user_id: str) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            return replace(user) if user else None

    def find_by_username(self, username: str) -> Optional[User]:
        return self.find_one(username=username)

    def find_one(self, **filters: Any) -> Optional[User]:
        _check_fields(filters)
        with self._lock:
            user = self._match(filters)
            return replace(user) if user else None

    def create(self, **fields: Any) -> User:
        _check_fields(fields)
        fields.pop("id", None)
        with self._lock:
            return self._insert(fields)

    def find_or_create(self, filters: Dict[str, Any], defaults: Optional[Dict[str, Any]] = None) -> User:
        _check_fields(filters)
        with self._lock:
            user = self._match(filters)
            if user is not None:
                return replace(user)
            fields = dict(defaults or {})
            fields.update(filters)
            _check_fields(fields)
            return self._insert(fields)

    def update(self, user: User) -> None:
        with self._lock:
            if user.id not in self._users:
                raise StoreError(f"No such user: {user.id}")
            self._users[user.id] = replace(user)

    def find_with_secrets(self) -> List[User]:
        with self._lock:
            users = [u for u in self._users.values() if u.secret is not None]
            users.sort(key=lambda u: u.created_at)
            return [replace(u) for u in users]
