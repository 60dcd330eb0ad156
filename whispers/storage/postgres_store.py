from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from whispers.errors import StoreError
from whispers.storage.models import USER_FIELDS, User, new_user_id

logger = logging.getLogger(__name__)

_COLUMNS = "id, username, password_hash, oauth_id, secret, created_at"

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
  id text PRIMARY KEY,
  username text UNIQUE,
  password_hash text,
  oauth_id text UNIQUE,
  secret text,
  created_at timestamptz NOT NULL DEFAULT now()
);
"""


def _connect(dsn: str):
    # Lazy import so the app can run on the in-memory store without DB deps.
    import psycopg  # type: ignore[import-not-found]

    return psycopg.connect(dsn)


def _row_to_user(row: Sequence[Any]) -> User:
    user_id, username, password_hash, oauth_id, secret, created_at = row
    return User(
        id=str(user_id),
        username=username,
        password_hash=password_hash,
        oauth_id=oauth_id,
        secret=secret,
        created_at=created_at,
    )


def _where(filters: Dict[str, Any]) -> Tuple[str, List[Any]]:
    """Build a WHERE clause from equality filters. Column names are allow-listed."""
    clauses: List[str] = []
    params: List[Any] = []
    for key, value in filters.items():
        if key != "id" and key not in USER_FIELDS:
            raise StoreError(f"Unknown user field: {key}")
        if value is None:
            clauses.append(f"{key} IS NULL")
        else:
            clauses.append(f"{key} = %s")
            params.append(value)
    return (" AND ".join(clauses) or "TRUE"), params


class PostgresUserStore:
    """User store backed by a `users` table. One short-lived connection per operation."""

    def __init__(self, dsn: str) -> None:
        self._dsn = dsn

    def _fetchone(self, query: str, params: Sequence[Any] = ()) -> Optional[User]:
        import psycopg

        try:
            with _connect(self._dsn) as conn:
                row = conn.execute(query, params).fetchone()
        except psycopg.Error as e:
            raise StoreError(str(e)) from e
        return _row_to_user(row) if row else None

    def ensure_schema(self) -> None:
        """Create the users table if needed. Raises StoreError if the database is unreachable."""
        import psycopg

        try:
            with _connect(self._dsn) as conn:
                conn.execute(SCHEMA_SQL)
        except psycopg.Error as e:
            raise StoreError(f"Cannot initialize user store: {e}") from e

    def find_by_id(self, user_id: str) -> Optional[User]:
        return self._fetchone(f"SELECT {_COLUMNS} FROM users WHERE id = %s;", (user_id,))

    def find_by_username(self, username: str) -> Optional[User]:
        return self._fetchone(f"SELECT {_COLUMNS} FROM users WHERE username = %s;", (username,))

    def find_one(self, **filters: Any) -> Optional[User]:
        where, params = _where(filters)
        return self._fetchone(f"SELECT {_COLUMNS} FROM users WHERE {where} ORDER BY created_at LIMIT 1;", params)

    def create(self, **fields: Any) -> User:
        values = {k: fields.get(k) for k in USER_FIELDS}
        unknown = sorted(set(fields) - set(USER_FIELDS) - {"id"})
        if unknown:
            raise StoreError(f"Unknown user field(s): {', '.join(unknown)}")
        user = self._fetchone(
            f"""
            INSERT INTO users (id, username, password_hash, oauth_id, secret)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING {_COLUMNS};
            """,
            (new_user_id(), values["username"], values["password_hash"], values["oauth_id"], values["secret"]),
        )
        if user is None:
            raise StoreError("Failed to create user")
        return user

    def find_or_create(self, filters: Dict[str, Any], defaults: Optional[Dict[str, Any]] = None) -> User:
        existing = self.find_one(**filters)
        if existing is not None:
            return existing

        fields = dict(defaults or {})
        fields.update(filters)
        values = {k: fields.get(k) for k in USER_FIELDS}
        # The UNIQUE constraints make a concurrent insert for the same identity a no-op;
        # the follow-up select then returns whichever row won.
        inserted = self._fetchone(
            f"""
            INSERT INTO users (id, username, password_hash, oauth_id, secret)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT DO NOTHING
            RETURNING {_COLUMNS};
            """,
            (new_user_id(), values["username"], values["password_hash"], values["oauth_id"], values["secret"]),
        )
        if inserted is not None:
            return inserted
        existing = self.find_one(**filters)
        if existing is None:
            raise StoreError("find_or_create lost a conflicting insert")
        return existing

    def update(self, user: User) -> None:
        import psycopg

        try:
            with _connect(self._dsn) as conn:
                cur = conn.execute(
                    """
                    UPDATE users
                    SET username = %s, password_hash = %s, oauth_id = %s, secret = %s
                    WHERE id = %s;
                    """,
                    (user.username, user.password_hash, user.oauth_id, user.secret, user.id),
                )
                updated = cur.rowcount
        except psycopg.Error as e:
            raise StoreError(str(e)) from e
        if not updated:
            raise StoreError(f"No such user: {user.id}")

    def find_with_secrets(self) -> List[User]:
        import psycopg

        try:
            with _connect(self._dsn) as conn:
                rows = conn.execute(
                    f"SELECT {_COLUMNS} FROM users WHERE secret IS NOT NULL ORDER BY created_at;"
                ).fetchall()
        except psycopg.Error as e:
            raise StoreError(str(e)) from e
        return [_row_to_user(r) for r in rows]
