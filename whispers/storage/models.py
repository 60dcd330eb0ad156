from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def new_user_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    """
    A registered user.

    Local users carry `password_hash`; Google users carry `oauth_id`. A user may have
    both, and `secret` stays None until the user submits one.
    """

    id: str
    username: Optional[str] = None
    password_hash: Optional[str] = None
    oauth_id: Optional[str] = None
    secret: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


USER_FIELDS = ("username", "password_hash", "oauth_id", "secret")
