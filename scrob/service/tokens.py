from __future__ import annotations

import secrets

TOKEN_BYTES = 32


def generate_token() -> str:
    """Return a fresh bearer token: 32 CSPRNG bytes as URL-safe base64 text."""
    return secrets.token_urlsafe(TOKEN_BYTES)
