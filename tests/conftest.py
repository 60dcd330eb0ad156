"""
Pytest config.

This repo isn't installed in every environment, so local imports like `import whispers`
rely on the repo root being on sys.path. We pin that here so tests always import the
local `whispers/` package.
"""

from __future__ import annotations

import sys
from dataclasses import replace
from pathlib import Path

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from fastapi.testclient import TestClient  # noqa: E402

from whispers.api.web import AppContext, build_context, create_app  # noqa: E402
from whispers.auth import oauth  # noqa: E402
from whispers.config import GOOGLE_DISCOVERY_URL, AppConfig  # noqa: E402
from whispers.storage.memory_store import InMemoryUserStore  # noqa: E402


def make_config(**overrides) -> AppConfig:
    cfg = AppConfig(
        oauth_client_id="test-client-id",
        oauth_client_secret="test-client-secret",
        oauth_discovery_url=GOOGLE_DISCOVERY_URL,
        oauth_callback_url="http://testserver/auth/google/secrets",
        session_secret="test-secret-key-for-testing-purposes-only",
        session_ttl_seconds=3600,
        cookie_secure=False,
        password_hash_rounds=4,
        postgres_dsn=None,
        postgres_host=None,
        postgres_port=5432,
        postgres_db=None,
        postgres_user=None,
        postgres_password=None,
        port=3000,
    )
    return replace(cfg, **overrides)


@pytest.fixture(autouse=True)
def _clear_oauth_caches() -> None:
    oauth._discovery_cache.clear()
    oauth._jwks_cache.clear()


@pytest.fixture
def cfg() -> AppConfig:
    return make_config()


@pytest.fixture
def store() -> InMemoryUserStore:
    return InMemoryUserStore()


@pytest.fixture
def ctx(cfg: AppConfig, store: InMemoryUserStore) -> AppContext:
    return build_context(cfg, users=store)


@pytest.fixture
def client(ctx: AppContext) -> TestClient:
    return TestClient(create_app(ctx))
