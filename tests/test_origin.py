from __future__ import annotations

from typing import Dict, Optional

from starlette.requests import Request

from gatehouse.auth.config import load_auth_config
from gatehouse.auth.origin import allowed_origins, is_safe_request_origin, normalize_origin


def _request(headers: Optional[Dict[str, str]] = None, *, host: str = "testserver", scheme: str = "http") -> Request:
    raw = [(b"host", host.encode("latin-1"))]
    for k, v in (headers or {}).items():
        raw.append((k.lower().encode("latin-1"), v.encode("latin-1")))
    scope = {
        "type": "http",
        "method": "POST",
        "scheme": scheme,
        "path": "/auth/logout",
        "query_string": b"",
        "headers": raw,
        "server": (host, 80),
    }
    return Request(scope)


def test_normalize_origin() -> None:
    assert normalize_origin("https://Example.com/path?q=1") == "https://example.com"
    assert normalize_origin("https://example.com:443") == "https://example.com"
    assert normalize_origin("http://example.com:80/") == "http://example.com"
    assert normalize_origin("http://localhost:3000") == "http://localhost:3000"
    assert normalize_origin("http://[::1]:8080") == "http://[::1]:8080"


def test_normalize_origin_rejects_garbage() -> None:
    assert normalize_origin(None) is None
    assert normalize_origin("") is None
    assert normalize_origin("null") is None
    assert normalize_origin("example.com") is None
    assert normalize_origin("ftp://example.com") is None
    assert normalize_origin("http://example.com:notaport") is None


def test_allowed_origins_from_config(monkeypatch) -> None:
    monkeypatch.setenv("APP_BASE_URL", "https://example.com/app")
    monkeypatch.setenv("CSRF_ALLOWED_ORIGINS", "https://admin.example.com, not a url ,")
    load_auth_config.cache_clear()
    cfg = load_auth_config()
    assert allowed_origins(cfg, request_origin="https://evil.test") == {
        "https://example.com",
        "https://admin.example.com",
    }


def test_request_origin_trusted_only_without_base_url() -> None:
    cfg = load_auth_config()
    assert allowed_origins(cfg, request_origin="http://localhost:3000") == {"http://localhost:3000"}


def test_matching_origin_is_safe(cfg) -> None:
    assert is_safe_request_origin(_request({"Origin": "http://testserver"}), cfg) is True


def test_referer_fallback(cfg) -> None:
    assert is_safe_request_origin(_request({"Referer": "http://testserver/settings"}), cfg) is True
    assert is_safe_request_origin(_request({"Referer": "https://evil.test/x"}), cfg) is False


def test_origin_takes_precedence_over_referer(cfg) -> None:
    req = _request({"Origin": "https://evil.test", "Referer": "http://testserver/"})
    assert is_safe_request_origin(req, cfg) is False


def test_missing_origin_and_referer_fails_closed(cfg) -> None:
    assert is_safe_request_origin(_request(), cfg) is False


def test_unparsable_origin_fails_closed(cfg) -> None:
    assert is_safe_request_origin(_request({"Origin": "null"}), cfg) is False


def test_scheme_host_and_port_must_all_match(cfg) -> None:
    assert is_safe_request_origin(_request({"Origin": "https://testserver"}), cfg) is False
    assert is_safe_request_origin(_request({"Origin": "http://testserver:8080"}), cfg) is False
    assert is_safe_request_origin(_request({"Origin": "http://testserver.evil.test"}), cfg) is False


def test_spoofed_host_header_is_not_trusted_when_base_url_configured(cfg) -> None:
    req = _request({"Origin": "https://evil.test"}, host="evil.test", scheme="https")
    assert is_safe_request_origin(req, cfg) is False
