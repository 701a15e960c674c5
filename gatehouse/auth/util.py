from __future__ import annotations

import base64
import secrets
from datetime import datetime, timezone


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def random_token(nbytes: int = 32) -> str:
    """URL-safe random token from the OS CSPRNG (`nbytes * 8` bits of entropy)."""
    return b64url(secrets.token_bytes(nbytes))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def sanitize_next_path(next_path: str | None) -> str | None:
    """
    Prevent open-redirects: allow only relative paths like `/inbox`.

    Returns None when the value is missing or unsafe.
    """
    p = (next_path or "").strip()
    if not p:
        return None
    if not p.startswith("/"):
        return None
    # Disallow scheme-relative: `//evil.com` and `/\evil.com`.
    if p.startswith("//") or p.startswith("/\\"):
        return None
    if "\r" in p or "\n" in p:
        return None
    return p
