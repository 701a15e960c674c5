from __future__ import annotations

from typing import Dict, Mapping, Optional

from starlette.requests import cookie_parser

from gatehouse.auth.config import AuthConfig


def cookie_kwargs(cfg: AuthConfig, *, key: str, value: str, max_age: int) -> dict:
    """Keyword arguments for `Response.set_cookie` with the standard security attributes."""
    return {
        "key": key,
        "value": value,
        "max_age": max_age,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }


def cleared_cookie_kwargs(cfg: AuthConfig, *, key: str) -> dict:
    return cookie_kwargs(cfg, key=key, value="", max_age=0)


def session_cookie_kwargs(cfg: AuthConfig, raw_token: str) -> dict:
    return cookie_kwargs(cfg, key=cfg.session_cookie_name, value=raw_token, max_age=cfg.session_ttl_seconds)


def clear_session_cookie_kwargs(cfg: AuthConfig) -> dict:
    return cleared_cookie_kwargs(cfg, key=cfg.session_cookie_name)


def read_cookie(cookies: Mapping[str, str], name: str) -> Optional[str]:
    """Cookie value by name; missing or blank is None, not an error."""
    value = (cookies.get(name) or "").strip()
    return value or None


def parse_cookie_header(header: str | None) -> Dict[str, str]:
    # Same parser Starlette uses for `request.cookies`.
    return cookie_parser(header or "")
