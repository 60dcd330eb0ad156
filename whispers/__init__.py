"""
Whispers: a small shared-secrets board.

Users register locally or sign in with Google, then post one anonymous secret that
everyone can read on the `/secrets` page.
"""
