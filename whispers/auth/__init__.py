"""
Authentication for the secrets board.

- Local username/password accounts (bcrypt hashes).
- Google sign-in through OpenID Connect (any OIDC provider with a discovery document).
- Server-side sessions referenced by a signed, HttpOnly cookie.
"""
