"""Errors raised by the authentication and storage layers.

All of them are handled at the route boundary; none is meant to reach the client as a
stack trace.
"""

from __future__ import annotations


class WhispersError(Exception):
    """Base class for application errors."""


class AuthFailure(WhispersError):
    """Local login failed. Never says whether the user exists."""

    def __init__(self, message: str = "Invalid username or password") -> None:
        super().__init__(message)


class RegistrationError(WhispersError):
    """A new local user could not be created."""


class StoreError(WhispersError):
    """The user store rejected or failed an operation."""


class OAuthFailure(WhispersError):
    """The OAuth handshake was denied or could not be completed."""
