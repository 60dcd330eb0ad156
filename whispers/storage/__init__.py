"""User storage.

`PostgresUserStore` is the production backend; `InMemoryUserStore` is the fallback for
local development (and tests) when no Postgres connection is configured. psycopg is
imported lazily so the in-memory path runs without a database driver.
"""

from whispers.storage.base import UserStore
from whispers.storage.memory_store import InMemoryUserStore
from whispers.storage.models import User

__all__ = ["User", "UserStore", "InMemoryUserStore"]
