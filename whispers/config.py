from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

logger = logging.getLogger(__name__)

GOOGLE_DISCOVERY_URL = "https://accounts.google.com/.well-known/openid-configuration"
DEFAULT_CALLBACK_URL = "http://localhost:3000/auth/google/secrets"


def _env_str(name: str) -> Optional[str]:
    return (os.getenv(name, "") or "").strip() or None


def _env_bool(name: str) -> Optional[bool]:
    raw = (os.getenv(name, "") or "").strip().lower()
    if raw in ("1", "true", "yes", "y", "on"):
        return True
    if raw in ("0", "false", "no", "n", "off"):
        return False
    return None


@dataclass(frozen=True)
class AppConfig:
    # OAuth (Google by default; any OIDC provider with a discovery document works)
    oauth_client_id: Optional[str]
    oauth_client_secret: Optional[str]
    oauth_discovery_url: str
    oauth_callback_url: str

    # Session configuration
    session_secret: Optional[str]
    session_ttl_seconds: int
    cookie_secure: bool
    password_hash_rounds: int

    # Postgres connection (either dsn or parts)
    postgres_dsn: Optional[str]
    postgres_host: Optional[str]
    postgres_port: int
    postgres_db: Optional[str]
    postgres_user: Optional[str]
    postgres_password: Optional[str]

    port: int

    @property
    def oauth_enabled(self) -> bool:
        return bool(self.oauth_client_id and self.oauth_client_secret)


def _int_env(name: str, default: int) -> int:
    raw = (os.getenv(name, "") or "").strip()
    if not raw:
        return default
    try:
        return int(float(raw))
    except ValueError:
        logger.warning("Ignoring invalid %s=%r (using %d)", name, raw, default)
        return default


@lru_cache(maxsize=1)
def load_app_config() -> AppConfig:
    """
    Load application configuration from environment variables.

    OAuth login is offered only when OAUTH_CLIENT_ID and OAUTH_CLIENT_SECRET are set.
    Postgres is used when POSTGRES_DSN (or the host/db/user/password parts) is set;
    otherwise users live in process memory.
    """
    callback_url = _env_str("OAUTH_CALLBACK_URL") or DEFAULT_CALLBACK_URL

    cookie_secure = _env_bool("COOKIE_SECURE")
    if cookie_secure is None:
        # Default: secure cookies when served over https; otherwise allow local dev.
        cookie_secure = callback_url.startswith("https://")

    ttl = _int_env("SESSION_TTL_SECONDS", 43200)  # 12h default
    if ttl <= 60:
        ttl = 60

    rounds = _int_env("PASSWORD_HASH_ROUNDS", 12)
    rounds = min(max(rounds, 4), 31)

    return AppConfig(
        oauth_client_id=_env_str("OAUTH_CLIENT_ID"),
        oauth_client_secret=_env_str("OAUTH_CLIENT_SECRET"),
        oauth_discovery_url=_env_str("OAUTH_DISCOVERY_URL") or GOOGLE_DISCOVERY_URL,
        oauth_callback_url=callback_url,
        session_secret=_env_str("SESSION_SECRET"),
        session_ttl_seconds=ttl,
        cookie_secure=cookie_secure,
        password_hash_rounds=rounds,
        postgres_dsn=_env_str("POSTGRES_DSN"),
        postgres_host=_env_str("POSTGRES_HOST"),
        postgres_port=_int_env("POSTGRES_PORT", 5432),
        postgres_db=_env_str("POSTGRES_DB"),
        postgres_user=_env_str("POSTGRES_USER"),
        postgres_password=_env_str("POSTGRES_PASSWORD"),
        port=_int_env("PORT", 3000),
    )


def build_postgres_dsn(cfg: AppConfig) -> Optional[str]:
    if cfg.postgres_dsn:
        return cfg.postgres_dsn
    if not (cfg.postgres_host and cfg.postgres_db and cfg.postgres_user and cfg.postgres_password):
        return None
    # psycopg's conninfo builder quotes special characters in passwords correctly.
    from psycopg.conninfo import make_conninfo

    return make_conninfo(
        host=cfg.postgres_host,
        port=cfg.postgres_port,
        dbname=cfg.postgres_db,
        user=cfg.postgres_user,
        password=cfg.postgres_password,
    )
