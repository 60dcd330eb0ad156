from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import psycopg
import pytest

from whispers.errors import StoreError
from whispers.storage.models import User
from whispers.storage.postgres_store import PostgresUserStore

_NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _fake_connect(*results):
    """Build a `_connect` replacement whose conn.execute returns cursors yielding `results` in order."""
    conn = MagicMock()
    conn.__enter__.return_value = conn
    conn.__exit__.return_value = False
    cursors = []
    for res in results:
        cur = MagicMock()
        cur.fetchone.return_value = res
        cur.fetchall.return_value = res
        cur.rowcount = 1
        cursors.append(cur)
    conn.execute.side_effect = cursors
    return MagicMock(return_value=conn), conn


def test_find_by_id_maps_row() -> None:
    connect, conn = _fake_connect(("u1", "alice", "hash", None, None, _NOW))
    with patch("whispers.storage.postgres_store._connect", connect):
        user = PostgresUserStore("dsn").find_by_id("u1")
    assert user == User(id="u1", username="alice", password_hash="hash", created_at=_NOW)
    sql, params = conn.execute.call_args[0]
    assert "WHERE id = %s" in sql
    assert params == ("u1",)


def test_find_one_builds_null_aware_where() -> None:
    connect, conn = _fake_connect(None)
    with patch("whispers.storage.postgres_store._connect", connect):
        assert PostgresUserStore("dsn").find_one(oauth_id="g-1", secret=None) is None
    sql, params = conn.execute.call_args[0]
    assert "oauth_id = %s" in sql and "secret IS NULL" in sql
    assert params == ["g-1"]


def test_find_one_rejects_unknown_column() -> None:
    with pytest.raises(StoreError):
        PostgresUserStore("dsn").find_one(**{"id; DROP TABLE users": "x"})


def test_find_or_create_returns_existing_without_insert() -> None:
    connect, conn = _fake_connect(("u1", None, None, "g-123", None, _NOW))
    with patch("whispers.storage.postgres_store._connect", connect):
        user = PostgresUserStore("dsn").find_or_create({"oauth_id": "g-123"})
    assert user.id == "u1"
    assert conn.execute.call_count == 1


def test_find_or_create_recovers_from_lost_insert_race() -> None:
    row = ("u9", None, None, "g-123", None, _NOW)
    connect, conn = _fake_connect(None, None, row)
    with patch("whispers.storage.postgres_store._connect", connect):
        user = PostgresUserStore("dsn").find_or_create({"oauth_id": "g-123"})
    assert user.id == "u9"
    insert_sql = conn.execute.call_args_list[1][0][0]
    assert "ON CONFLICT DO NOTHING" in insert_sql


def test_driver_errors_become_store_errors() -> None:
    connect = MagicMock(side_effect=psycopg.OperationalError("connection refused"))
    with patch("whispers.storage.postgres_store._connect", connect):
        store = PostgresUserStore("dsn")
        with pytest.raises(StoreError):
            store.find_by_username("alice")
        with pytest.raises(StoreError):
            store.ensure_schema()
        with pytest.raises(StoreError):
            store.find_with_secrets()


def test_update_missing_row_fails() -> None:
    connect, conn = _fake_connect(None)
    conn.execute.side_effect = None
    conn.execute.return_value = MagicMock(rowcount=0)
    with patch("whispers.storage.postgres_store._connect", connect):
        with pytest.raises(StoreError):
            PostgresUserStore("dsn").update(User(id="gone", secret="s"))
