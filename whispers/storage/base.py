from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

from whispers.storage.models import User


class UserStore(Protocol):
    """
    Minimal user persistence interface. Implementations: in-process memory, Postgres.

    Every method raises `StoreError` when the backend fails or rejects the operation.
    """

    def find_by_id(self, user_id: str) -> Optional[User]:
        """Return the user with this id, or None."""

    def find_by_username(self, username: str) -> Optional[User]:
        """Return the local user registered under `username`, or None."""

    def find_one(self, **filters: Any) -> Optional[User]:
        """Return the first user whose fields equal all of `filters`, or None."""

    def create(self, **fields: Any) -> User:
        """Insert a new user and return it with its store-assigned id."""

    def find_or_create(self, filters: Dict[str, Any], defaults: Optional[Dict[str, Any]] = None) -> User:
        """
        Return the user matching `filters`, creating one from `filters` + `defaults` if absent.

        Idempotent: concurrent or repeated calls with the same filters yield the same user.
        """

    def update(self, user: User) -> None:
        """Persist the mutable fields of `user`."""

    def find_with_secrets(self) -> List[User]:
        """Return every user whose `secret` is set."""
