from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional

logger = logging.getLogger(__name__)

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"

DEFAULT_SESSION_TTL_SECONDS = 30 * 24 * 60 * 60  # 30 days
OAUTH_STATE_TTL_SECONDS = 10 * 60


@dataclass(frozen=True)
class AuthConfig:
    # Trusted origins
    base_urls: List[str]  # APP_BASE_URL (comma separated); first one is canonical
    csrf_allowed_origins: List[str]

    # External provider (optional)
    oauth_client_id: Optional[str]
    oauth_client_secret: Optional[str]
    oauth_redirect_uri: Optional[str]  # Default: <base>/auth/external/callback
    oauth_authorize_url: str
    oauth_token_url: str
    oauth_userinfo_url: str
    state_secret: str  # Signs the OAuth state cookie

    # Session configuration
    session_cookie_name: str
    state_cookie_name: str
    session_ttl_seconds: int
    session_touch: bool  # Update last_seen_at on every validation
    session_backend: str  # postgres|memory
    cookie_secure: bool

    @property
    def oauth_enabled(self) -> bool:
        """External login is enabled only when both client credentials are configured."""
        return bool(self.oauth_client_id and self.oauth_client_secret)

    @property
    def public_base_url(self) -> Optional[str]:
        return self.base_urls[0] if self.base_urls else None


def _parse_csv(value: str) -> List[str]:
    items = [x.strip() for x in (value or "").split(",")]
    return [x for x in items if x]


def _env_bool(name: str) -> Optional[bool]:
    raw = (os.getenv(name, "") or "").strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    return None


@lru_cache(maxsize=1)
def load_auth_config() -> AuthConfig:
    """
    Load authentication configuration from environment variables.

    External login is enabled if GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET are set.
    Cookies are `Secure` in production (APP_ENV=production) or behind an https base URL,
    unless AUTH_COOKIE_SECURE says otherwise.
    """
    base_urls = [u.rstrip("/") for u in _parse_csv(os.getenv("APP_BASE_URL", ""))]

    cookie_secure = _env_bool("AUTH_COOKIE_SECURE")
    if cookie_secure is None:
        env = (os.getenv("APP_ENV", "") or "").strip().lower()
        # Default: secure cookies in production or when base URL is https; otherwise allow local dev.
        cookie_secure = env == "production" or (base_urls[0] if base_urls else "").startswith("https://")

    ttl = int(float((os.getenv("AUTH_SESSION_TTL_SECONDS", "") or "").strip() or DEFAULT_SESSION_TTL_SECONDS))
    if ttl <= 60:
        ttl = 60

    state_secret = (os.getenv("AUTH_STATE_SECRET", "") or "").strip()
    if not state_secret:
        # Per-process secret: fine for a single worker, breaks callbacks across workers.
        logger.warning("AUTH_STATE_SECRET is not set; using a per-process OAuth state secret")
        state_secret = secrets.token_hex(32)

    backend = (os.getenv("AUTH_SESSION_BACKEND", "") or "postgres").strip().lower()
    if backend not in ("postgres", "memory"):
        backend = "postgres"

    return AuthConfig(
        base_urls=base_urls,
        csrf_allowed_origins=_parse_csv(os.getenv("CSRF_ALLOWED_ORIGINS", "")),
        # External provider
        oauth_client_id=(os.getenv("GOOGLE_CLIENT_ID", "") or "").strip() or None,
        oauth_client_secret=(os.getenv("GOOGLE_CLIENT_SECRET", "") or "").strip() or None,
        oauth_redirect_uri=(os.getenv("OAUTH_REDIRECT_URI", "") or "").strip() or None,
        oauth_authorize_url=(os.getenv("OAUTH_AUTHORIZE_URL", "") or "").strip() or GOOGLE_AUTHORIZE_URL,
        oauth_token_url=(os.getenv("OAUTH_TOKEN_URL", "") or "").strip() or GOOGLE_TOKEN_URL,
        oauth_userinfo_url=(os.getenv("OAUTH_USERINFO_URL", "") or "").strip() or GOOGLE_USERINFO_URL,
        state_secret=state_secret,
        # Session configuration
        session_cookie_name=(os.getenv("AUTH_SESSION_COOKIE", "") or "").strip() or "gatehouse_session",
        state_cookie_name="gatehouse_oauth_state",
        session_ttl_seconds=ttl,
        session_touch=bool(_env_bool("AUTH_SESSION_TOUCH")),
        session_backend=backend,
        cookie_secure=cookie_secure,
    )
