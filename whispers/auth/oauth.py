"""
Google sign-in (OpenID Connect authorization-code flow with PKCE).

One login attempt is self-contained: `begin()` produces the provider redirect plus the
state/nonce/verifier the browser keeps in short-lived cookies, and `complete()` turns the
callback into a local user (find-or-create on the provider's subject id).
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlencode

import jwt  # PyJWT
import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from whispers.auth.util import b64url, random_token
from whispers.config import AppConfig
from whispers.errors import OAuthFailure, StoreError
from whispers.storage.base import UserStore
from whispers.storage.models import User

logger = logging.getLogger(__name__)

SCOPES = "openid email profile"

_discovery_cache: Dict[str, Tuple[float, Optional[Dict[str, Any]]]] = {}
_jwks_cache: Dict[str, Tuple[float, Optional[Dict[str, Any]]]] = {}


class OAuthProfile(BaseModel):
    """The slice of the provider's userinfo / id_token claims we care about."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    subject: str = Field(alias="sub", min_length=1)
    email: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class OAuthStart:
    url: str
    state: str
    nonce: str
    verifier: str


def _get_json_cached(url: str, cache: Dict[str, Tuple[float, Optional[Dict[str, Any]]]]) -> Dict[str, Any]:
    """Fetch a JSON document, cached for 1 hour per URL."""
    ts, cached = cache.get(url, (0.0, None))
    now = time.time()
    if cached is not None and now - ts < 3600:
        return cached
    r = requests.get(url, timeout=10)
    r.raise_for_status()
    data = r.json()
    if not isinstance(data, dict):
        raise ValueError(f"Invalid JSON document at {url}")
    cache[url] = (now, data)
    return data


def _get_discovery(discovery_url: str) -> Dict[str, Any]:
    return _get_json_cached(discovery_url, _discovery_cache)


def _get_jwks(jwks_uri: str) -> Dict[str, Any]:
    return _get_json_cached(jwks_uri, _jwks_cache)


def _endpoint(cfg: AppConfig, name: str) -> str:
    disc = _get_discovery(cfg.oauth_discovery_url)
    value = str(disc.get(name) or "")
    if not value:
        raise ValueError(f"OIDC discovery missing {name}")
    return value


def pkce_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return b64url(digest)


def build_authorize_url(cfg: AppConfig, *, state: str, nonce: str, code_challenge: str) -> str:
    if not cfg.oauth_client_id:
        raise ValueError("OAuth client ID not configured")

    params = {
        "client_id": cfg.oauth_client_id,
        "redirect_uri": cfg.oauth_callback_url,
        "response_type": "code",
        "scope": SCOPES,
        "state": state,
        "nonce": nonce,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    return f"{_endpoint(cfg, 'authorization_endpoint')}?{urlencode(params)}"


def begin(cfg: AppConfig) -> OAuthStart:
    state = random_token(32)
    nonce = random_token(32)
    verifier = random_token(32)  # 43+ chars (base64url) -> valid PKCE verifier
    url = build_authorize_url(cfg, state=state, nonce=nonce, code_challenge=pkce_challenge(verifier))
    return OAuthStart(url=url, state=state, nonce=nonce, verifier=verifier)


def exchange_code_for_tokens(cfg: AppConfig, *, code: str, code_verifier: str) -> Dict[str, Any]:
    """Exchange the authorization code for tokens (id_token, access_token)."""
    if not cfg.oauth_client_id or not cfg.oauth_client_secret:
        raise ValueError("OAuth client ID/secret not configured")

    payload = {
        "client_id": cfg.oauth_client_id,
        "client_secret": cfg.oauth_client_secret,
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": cfg.oauth_callback_url,
        "code_verifier": code_verifier,
    }
    r = requests.post(_endpoint(cfg, "token_endpoint"), data=payload, timeout=10)
    if r.status_code >= 400:
        # Avoid leaking sensitive info; include minimal context.
        raise ValueError(f"Token exchange failed (status={r.status_code})")
    data = r.json()
    if not isinstance(data, dict):
        raise ValueError("Invalid token response")
    return data


def validate_id_token(cfg: AppConfig, *, id_token: str, expected_nonce: str) -> Dict[str, Any]:
    """
    Validate the ID token against the provider's published keys.

    Checks signature, issuer, audience and nonce.
    """
    disc = _get_discovery(cfg.oauth_discovery_url)
    issuer = str(disc.get("issuer") or "")
    jwks_uri = str(disc.get("jwks_uri") or "")
    if not issuer or not jwks_uri:
        raise ValueError("OIDC discovery missing issuer/jwks_uri")

    kid = str(jwt.get_unverified_header(id_token).get("kid") or "")
    if not kid:
        raise ValueError("ID token missing kid")

    keys = _get_jwks(jwks_uri).get("keys")
    if not isinstance(keys, list):
        raise ValueError("Invalid JWKS keys")
    jwk = next((k for k in keys if isinstance(k, dict) and str(k.get("kid") or "") == kid), None)
    if jwk is None:
        raise ValueError("Unknown signing key (kid)")

    key = jwt.algorithms.RSAAlgorithm.from_jwk(json.dumps(jwk))
    claims = jwt.decode(
        id_token,
        key=key,
        algorithms=["RS256"],
        audience=cfg.oauth_client_id,
        issuer=issuer,
        options={"require": ["exp", "iat", "iss", "aud", "sub"]},
    )
    if not isinstance(claims, dict):
        raise ValueError("Invalid ID token claims")

    nonce = str(claims.get("nonce") or "")
    if not nonce or nonce != expected_nonce:
        raise ValueError("Nonce mismatch")
    return claims


def fetch_userinfo(cfg: AppConfig, *, access_token: str) -> Dict[str, Any]:
    r = requests.get(
        _endpoint(cfg, "userinfo_endpoint"),
        headers={"Authorization": f"Bearer {access_token}"},
        timeout=10,
    )
    r.raise_for_status()
    data = r.json()
    if not isinstance(data, dict):
        raise ValueError("Invalid userinfo response")
    return data


def fetch_profile(cfg: AppConfig, tokens: Mapping[str, Any], *, expected_nonce: str) -> OAuthProfile:
    """Prefer the signed id_token; fall back to the userinfo endpoint with the access token."""
    id_token = str(tokens.get("id_token") or "").strip()
    if id_token:
        claims = validate_id_token(cfg, id_token=id_token, expected_nonce=expected_nonce)
        return OAuthProfile.model_validate(claims)

    access_token = str(tokens.get("access_token") or "").strip()
    if not access_token:
        raise ValueError("Token response has neither id_token nor access_token")
    return OAuthProfile.model_validate(fetch_userinfo(cfg, access_token=access_token))


def resolve(store: UserStore, profile: OAuthProfile) -> User:
    """Find-or-create the local user for a provider identity. Idempotent on the subject id."""
    return store.find_or_create({"oauth_id": profile.subject})


def complete(
    cfg: AppConfig,
    store: UserStore,
    *,
    params: Mapping[str, str],
    cookie_state: Optional[str],
    cookie_nonce: Optional[str],
    cookie_verifier: Optional[str],
) -> User:
    """
    Finish a login attempt from the provider's callback query parameters.

    Raises:
        OAuthFailure: On provider denial, state mismatch, or any exchange/validation/store error
    """
    error = (params.get("error") or "").strip()
    if error:
        raise OAuthFailure(f"Provider returned error: {error}")

    code = (params.get("code") or "").strip()
    state = (params.get("state") or "").strip()
    if not code:
        raise OAuthFailure("Missing authorization code")
    if not cookie_state or cookie_state != state:
        raise OAuthFailure("Invalid OAuth state")
    if not cookie_nonce or not cookie_verifier:
        raise OAuthFailure("Missing OAuth verifier/nonce")

    try:
        tokens = exchange_code_for_tokens(cfg, code=code, code_verifier=cookie_verifier)
        profile = fetch_profile(cfg, tokens, expected_nonce=cookie_nonce)
        return resolve(store, profile)
    except (requests.RequestException, jwt.PyJWTError, ValidationError, ValueError, StoreError) as e:
        raise OAuthFailure(str(e)) from e
