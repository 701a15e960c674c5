from __future__ import annotations

import logging
from typing import Optional, Set
from urllib.parse import urlsplit

from starlette.requests import Request

from gatehouse.auth.config import AuthConfig

logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_origin(value: str | None) -> Optional[str]:
    """
    Reduce a URL to `scheme://host[:port]`, dropping default ports.

    Returns None when the value cannot be parsed as an http(s) origin (this includes the
    opaque `null` origin browsers send from sandboxed contexts).
    """
    raw = (value or "").strip()
    if not raw:
        return None
    try:
        parts = urlsplit(raw)
        port = parts.port
    except ValueError:
        return None
    scheme = (parts.scheme or "").lower()
    host = (parts.hostname or "").lower()
    if scheme not in _DEFAULT_PORTS or not host:
        return None
    if ":" in host:
        host = f"[{host}]"
    if port is None or port == _DEFAULT_PORTS[scheme]:
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


def allowed_origins(cfg: AuthConfig, request_origin: Optional[str] = None) -> Set[str]:
    """
    Trusted origins: APP_BASE_URL entries plus CSRF_ALLOWED_ORIGINS.

    The request's own origin is trusted only when no base URL is configured (local dev).
    Malformed entries are ignored.
    """
    origins: Set[str] = set()
    for value in list(cfg.base_urls) + list(cfg.csrf_allowed_origins):
        o = normalize_origin(value)
        if o:
            origins.add(o)
    if not cfg.base_urls and request_origin:
        o = normalize_origin(request_origin)
        if o:
            origins.add(o)
    return origins


def is_safe_request_origin(request: Request, cfg: AuthConfig) -> bool:
    """
    Check that a state-changing request comes from a trusted origin.

    Uses `Origin`, falling back to `Referer`. Missing both, unparsable, or not allow-listed
    all fail closed.
    """
    origin_header = request.headers.get("origin")
    source = "origin"
    if not origin_header:
        origin_header = request.headers.get("referer")
        source = "referer"
    if not origin_header:
        logger.info("Rejected %s %s: no Origin/Referer", request.method, request.url.path)
        return False

    origin = normalize_origin(origin_header)
    if origin is None:
        logger.info("Rejected %s %s: unparsable %s", request.method, request.url.path, source)
        return False

    own = f"{request.url.scheme}://{request.url.netloc}"
    if origin not in allowed_origins(cfg, request_origin=own):
        logger.info("Rejected %s %s: untrusted %s %s", request.method, request.url.path, source, origin)
        return False
    return True
