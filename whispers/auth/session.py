"""
Server-side sessions.

The cookie carries only a signed, opaque token. The token maps to a `SessionRecord` in
process memory holding the authenticated user's id; the user itself is re-read from the
store on every request.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

from itsdangerous import BadSignature, BadTimeSignature, URLSafeTimedSerializer

from whispers.auth.util import random_token
from whispers.errors import StoreError
from whispers.storage.base import UserStore
from whispers.storage.models import User

logger = logging.getLogger(__name__)

SESSION_SALT = "whispers-session-v1"


def session_cookie_name(cookie_secure: bool) -> str:
    # `__Host-` requires Secure + Path=/ + no Domain; browsers may reject it on HTTP.
    return "__Host-whispers_session" if cookie_secure else "whispers_session"


@dataclass
class SessionRecord:
    user_id: Optional[str] = None
    created_at: float = field(default_factory=time.time)


class SessionStore:
    """In-memory token -> SessionRecord map, shared by all requests of the process."""

    def __init__(self) -> None:
        self._records: Dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def put(self, token: str, record: SessionRecord) -> None:
        with self._lock:
            self._records[token] = record

    def get(self, token: str) -> Optional[SessionRecord]:
        with self._lock:
            return self._records.get(token)

    def delete(self, token: str) -> None:
        with self._lock:
            self._records.pop(token, None)

    def purge_older_than(self, cutoff: float) -> int:
        with self._lock:
            stale = [t for t, r in self._records.items() if r.created_at < cutoff]
            for t in stale:
                del self._records[t]
            return len(stale)


class SessionManager:
    def __init__(
        self,
        *,
        secret: str,
        ttl_seconds: int,
        cookie_secure: bool = False,
        store: Optional[SessionStore] = None,
    ) -> None:
        self._serializer = URLSafeTimedSerializer(secret_key=secret, salt=SESSION_SALT)
        self._ttl = ttl_seconds
        self._cookie_secure = cookie_secure
        self.store = store if store is not None else SessionStore()

    @property
    def cookie_name(self) -> str:
        return session_cookie_name(self._cookie_secure)

    def _token(self, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        try:
            token = self._serializer.loads(value, max_age=self._ttl)
        except (BadSignature, BadTimeSignature, ValueError):
            return None
        return token if isinstance(token, str) and token else None

    def login(self, user: User) -> str:
        """Start a new session for `user` and return the signed cookie value."""
        token = random_token(32)
        self.store.put(token, SessionRecord(user_id=user.id))
        return self._serializer.dumps(token)

    def resolve(self, value: Optional[str]) -> Optional[str]:
        """Return the user id held by the session behind a cookie value, or None."""
        token = self._token(value)
        if token is None:
            return None
        record = self.store.get(token)
        if record is None:
            return None
        if time.time() - record.created_at > self._ttl:
            self.store.delete(token)
            return None
        return record.user_id

    def destroy(self, value: Optional[str]) -> None:
        token = self._token(value)
        if token is not None:
            self.store.delete(token)

    def load_user(self, users: UserStore, value: Optional[str]) -> Optional[User]:
        """
        Restore the session's user from the store.

        Never raises: a missing session, a deleted user or a store failure all mean
        "not logged in".
        """
        user_id = self.resolve(value)
        if user_id is None:
            return None
        try:
            user = users.find_by_id(user_id)
        except StoreError as e:
            logger.warning("Session user lookup failed: %s", str(e))
            return None
        if user is None:
            logger.info("Session refers to missing user %s; treating as anonymous", user_id)
        return user

    def purge_expired(self) -> int:
        return self.store.purge_older_than(time.time() - self._ttl)

    def cookie_kwargs(self, value: str) -> dict:
        return {
            "key": self.cookie_name,
            "value": value,
            "max_age": self._ttl,
            "httponly": True,
            "secure": self._cookie_secure,
            "samesite": "lax",
            "path": "/",
        }

    def clear_cookie_kwargs(self) -> dict:
        return {
            "key": self.cookie_name,
            "value": "",
            "max_age": 0,
            "httponly": True,
            "secure": self._cookie_secure,
            "samesite": "lax",
            "path": "/",
        }
