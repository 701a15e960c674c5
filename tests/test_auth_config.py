from __future__ import annotations

from gatehouse.auth.config import (
    DEFAULT_SESSION_TTL_SECONDS,
    GOOGLE_AUTHORIZE_URL,
    load_auth_config,
)
from gatehouse.db.config import build_postgres_dsn, load_db_config


def test_defaults_without_env() -> None:
    cfg = load_auth_config()
    assert cfg.base_urls == []
    assert cfg.public_base_url is None
    assert cfg.oauth_enabled is False
    assert cfg.cookie_secure is False
    assert cfg.session_ttl_seconds == DEFAULT_SESSION_TTL_SECONDS
    assert cfg.session_cookie_name == "gatehouse_session"
    assert cfg.state_cookie_name == "gatehouse_oauth_state"
    assert cfg.oauth_authorize_url == GOOGLE_AUTHORIZE_URL
    assert cfg.session_backend == "memory"


def test_oauth_requires_both_credentials(monkeypatch) -> None:
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "id-only")
    load_auth_config.cache_clear()
    assert load_auth_config().oauth_enabled is False

    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "secret")
    load_auth_config.cache_clear()
    assert load_auth_config().oauth_enabled is True


def test_secure_cookie_in_production(monkeypatch) -> None:
    monkeypatch.setenv("APP_ENV", "production")
    load_auth_config.cache_clear()
    assert load_auth_config().cookie_secure is True


def test_secure_cookie_follows_https_base_url(monkeypatch) -> None:
    monkeypatch.setenv("APP_BASE_URL", "https://example.com/, https://www.example.com")
    load_auth_config.cache_clear()
    cfg = load_auth_config()
    assert cfg.cookie_secure is True
    assert cfg.base_urls == ["https://example.com", "https://www.example.com"]
    assert cfg.public_base_url == "https://example.com"


def test_secure_cookie_explicit_override(monkeypatch) -> None:
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("AUTH_COOKIE_SECURE", "false")
    load_auth_config.cache_clear()
    assert load_auth_config().cookie_secure is False


def test_session_ttl_has_a_floor(monkeypatch) -> None:
    monkeypatch.setenv("AUTH_SESSION_TTL_SECONDS", "5")
    load_auth_config.cache_clear()
    assert load_auth_config().session_ttl_seconds == 60


def test_missing_state_secret_gets_a_random_one(monkeypatch) -> None:
    monkeypatch.delenv("AUTH_STATE_SECRET", raising=False)
    load_auth_config.cache_clear()
    first = load_auth_config().state_secret
    load_auth_config.cache_clear()
    second = load_auth_config().state_secret
    assert first and second and first != second


def test_unknown_backend_falls_back_to_postgres(monkeypatch) -> None:
    monkeypatch.setenv("AUTH_SESSION_BACKEND", "redis")
    load_auth_config.cache_clear()
    assert load_auth_config().session_backend == "postgres"


def test_postgres_dsn_prefers_explicit_dsn(monkeypatch) -> None:
    monkeypatch.setenv("POSTGRES_DSN", "postgresql://u:p@db/auth")
    load_db_config.cache_clear()
    assert build_postgres_dsn(load_db_config()) == "postgresql://u:p@db/auth"


def test_postgres_dsn_missing_parts_is_none(monkeypatch) -> None:
    monkeypatch.setenv("POSTGRES_HOST", "db")
    load_db_config.cache_clear()
    assert build_postgres_dsn(load_db_config()) is None
