"""
Secrets board web server.

Serves the HTML pages, local and Google login, and the shared list of secrets. Every
request first restores the session user (if any) onto `request.state.user`; protected
routes redirect anonymous callers to `/login`.
"""

from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import requests
from fastapi import APIRouter, FastAPI, Form, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from starlette.concurrency import run_in_threadpool

from whispers.auth import local, oauth
from whispers.auth.session import SessionManager
from whispers.auth.util import random_token
from whispers.config import AppConfig, build_postgres_dsn, load_app_config
from whispers.errors import AuthFailure, OAuthFailure, RegistrationError, StoreError
from whispers.storage.base import UserStore
from whispers.storage.memory_store import InMemoryUserStore
from whispers.storage.models import User
from whispers.views import ViewRenderer

logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).resolve().parent.parent / "static"

# ---- OAuth handshake cookies (one login attempt) ----
_OAUTH_COOKIE_PATH = "/auth"
_OAUTH_TTL_SECONDS = 10 * 60
_OAUTH_COOKIES = ("whispers_oauth_state", "whispers_oauth_nonce", "whispers_oauth_verifier")


@dataclass
class AppContext:
    """Everything the routes need, built once at startup."""

    config: AppConfig
    users: UserStore
    sessions: SessionManager
    views: ViewRenderer


def build_context(cfg: Optional[AppConfig] = None, *, users: Optional[UserStore] = None) -> AppContext:
    cfg = cfg or load_app_config()

    if users is None:
        dsn = build_postgres_dsn(cfg)
        if dsn:
            from whispers.storage.postgres_store import PostgresUserStore

            users = PostgresUserStore(dsn)
        else:
            logger.warning("Postgres not configured; users are kept in process memory")
            users = InMemoryUserStore()

    secret = cfg.session_secret
    if not secret:
        logger.warning("SESSION_SECRET not set; using a random per-process secret")
        secret = random_token(32)

    sessions = SessionManager(secret=secret, ttl_seconds=cfg.session_ttl_seconds, cookie_secure=cfg.cookie_secure)
    return AppContext(config=cfg, users=users, sessions=sessions, views=ViewRenderer())


def _ctx(request: Request) -> AppContext:
    return request.app.state.ctx


def _current_user(request: Request) -> Optional[User]:
    return getattr(request.state, "user", None)


def _redirect(url: str) -> RedirectResponse:
    resp = RedirectResponse(url=url, status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _oauth_cookie_kwargs(cfg: AppConfig, *, key: str, value: str, max_age: int) -> dict:
    return {
        "key": key,
        "value": value,
        "max_age": max_age,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": _OAUTH_COOKIE_PATH,
    }


def _clear_oauth_cookies(cfg: AppConfig, resp: RedirectResponse) -> None:
    for key in _OAUTH_COOKIES:
        resp.set_cookie(**_oauth_cookie_kwargs(cfg, key=key, value="", max_age=0))


def _login_redirect(ctx: AppContext, user: User, url: str = "/secrets") -> RedirectResponse:
    """Start a session for `user` and redirect."""
    ctx.sessions.purge_expired()
    resp = _redirect(url)
    resp.set_cookie(**ctx.sessions.cookie_kwargs(ctx.sessions.login(user)))
    return resp


router = APIRouter()


@router.get("/healthz")
def healthz() -> Dict[str, Any]:
    return {"ok": True}


@router.get("/", response_class=HTMLResponse)
def home(request: Request) -> str:
    return _ctx(request).views.render("home")


@router.get("/login", response_class=HTMLResponse)
def login_page(request: Request, error: Optional[str] = None) -> str:
    ctx = _ctx(request)
    return ctx.views.render("login", error=bool(error), oauth_enabled=ctx.config.oauth_enabled)


@router.get("/register", response_class=HTMLResponse)
def register_page(request: Request, error: Optional[str] = None) -> str:
    ctx = _ctx(request)
    return ctx.views.render("register", error=bool(error), oauth_enabled=ctx.config.oauth_enabled)


@router.get("/secrets", response_class=HTMLResponse)
def secrets_page(request: Request) -> str:
    ctx = _ctx(request)
    try:
        users = ctx.users.find_with_secrets()
    except StoreError as e:
        logger.error("Failed to load secrets: %s", str(e))
        raise HTTPException(status_code=503, detail="Secrets are unavailable right now")
    return ctx.views.render("secrets", users_with_secrets=users)


@router.get("/submit", response_class=HTMLResponse)
def submit_page(request: Request):
    if _current_user(request) is None:
        return _redirect("/login")
    return HTMLResponse(_ctx(request).views.render("submit"))


@router.post("/submit")
def submit_secret(request: Request, secret: Optional[str] = Form(None)) -> RedirectResponse:
    ctx = _ctx(request)
    current = _current_user(request)
    if current is None:
        return _redirect("/login")
    # Nothing to store: send the user back to the form. Non-blank secrets are kept verbatim.
    if secret is None or not secret.strip():
        return _redirect("/submit")

    try:
        user = ctx.users.find_by_id(current.id)
        if user is None:
            logger.info("Submit for vanished user %s", current.id)
            return _redirect("/login")
        user.secret = secret
        ctx.users.update(user)
    except StoreError as e:
        logger.error("Failed to save secret for user %s: %s", current.id, str(e))
        raise HTTPException(status_code=503, detail="Could not save your secret right now")
    return _redirect("/secrets")


@router.get("/logout")
def logout(request: Request) -> RedirectResponse:
    ctx = _ctx(request)
    ctx.sessions.destroy(request.cookies.get(ctx.sessions.cookie_name))
    resp = _redirect("/")
    resp.set_cookie(**ctx.sessions.clear_cookie_kwargs())
    return resp


@router.post("/register")
def register(request: Request, username: str = Form(""), password: str = Form("")) -> RedirectResponse:
    ctx = _ctx(request)
    try:
        user = local.register(ctx.users, username, password, rounds=ctx.config.password_hash_rounds)
    except RegistrationError as e:
        logger.info("Registration failed for %r: %s", username, str(e))
        return _redirect("/register?error=1")
    logger.info("Registered local user %s", user.id)
    return _login_redirect(ctx, user)


@router.post("/login")
def login(request: Request, username: str = Form(""), password: str = Form("")) -> RedirectResponse:
    ctx = _ctx(request)
    try:
        user = local.authenticate(ctx.users, username, password)
    except AuthFailure:
        logger.info("Failed login for %r", username)
        return _redirect("/login?error=1")
    except StoreError as e:
        logger.error("Login lookup failed for %r: %s", username, str(e))
        return _redirect("/login?error=1")
    return _login_redirect(ctx, user)


@router.get("/auth/google")
def auth_google(request: Request) -> RedirectResponse:
    """Send the browser to the provider's consent screen."""
    cfg = _ctx(request).config
    if not cfg.oauth_enabled:
        logger.warning("Google login requested but OAUTH_CLIENT_ID/OAUTH_CLIENT_SECRET are not set")
        return _redirect("/login")

    try:
        start = oauth.begin(cfg)
    except (requests.RequestException, ValueError) as e:
        logger.warning("Cannot start Google login: %s", str(e))
        return _redirect("/login")

    resp = _redirect(start.url)
    for key, value in zip(_OAUTH_COOKIES, (start.state, start.nonce, start.verifier)):
        resp.set_cookie(**_oauth_cookie_kwargs(cfg, key=key, value=value, max_age=_OAUTH_TTL_SECONDS))
    return resp


@router.get("/auth/google/secrets")
@router.get("/auth/google/callback")
def auth_google_callback(request: Request) -> RedirectResponse:
    """Complete the provider handshake; success -> /secrets, failure -> /login."""
    ctx = _ctx(request)
    cfg = ctx.config
    if not cfg.oauth_enabled:
        return _redirect("/login")

    try:
        user = oauth.complete(
            cfg,
            ctx.users,
            params=request.query_params,
            cookie_state=request.cookies.get("whispers_oauth_state"),
            cookie_nonce=request.cookies.get("whispers_oauth_nonce"),
            cookie_verifier=request.cookies.get("whispers_oauth_verifier"),
        )
    except OAuthFailure as e:
        logger.warning("Google login failed: %s", str(e))
        resp = _redirect("/login")
        _clear_oauth_cookies(cfg, resp)
        return resp

    resp = _login_redirect(ctx, user)
    _clear_oauth_cookies(cfg, resp)
    return resp


def create_app(ctx: Optional[AppContext] = None) -> FastAPI:
    ctx = ctx or build_context()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # A store that can't be reached at startup is fatal.
        ensure_schema = getattr(app.state.ctx.users, "ensure_schema", None)
        if ensure_schema is not None:
            ensure_schema()
            logger.info("User store schema ready")
        yield

    app = FastAPI(title="Whispers", lifespan=lifespan)
    app.state.ctx = ctx
    app.include_router(router)
    app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Restore the session user and log every request."""
        start_time = time.time()
        logger.debug("%s %s", request.method, request.url.path)
        try:
            app_ctx: AppContext = request.app.state.ctx
            cookie = request.cookies.get(app_ctx.sessions.cookie_name)
            request.state.user = await run_in_threadpool(app_ctx.sessions.load_user, app_ctx.users, cookie)

            response = await call_next(request)
            process_time = time.time() - start_time
            logger.debug("%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, process_time)
            return response
        except Exception as e:
            process_time = time.time() - start_time
            logger.exception("%s %s - ERROR after %.3fs: %s", request.method, request.url.path, process_time, str(e))
            raise

    return app


app = create_app()


def run(host: str = "0.0.0.0", port: Optional[int] = None) -> None:
    import uvicorn

    # Configure logging for the application
    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    port = port if port is not None else app.state.ctx.config.port
    logger.info("Starting server on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level)
