"""
Pytest config.

Local imports like `import gatehouse` rely on the repo root being on sys.path when the
package isn't installed; we pin that here so tests can always import it.

Every test runs against in-memory session/identity storage with a clean auth config.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterator, Optional

import bcrypt
import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from gatehouse.auth.config import AuthConfig, load_auth_config  # noqa: E402
from gatehouse.auth.context import AuthContext, build_auth_context  # noqa: E402
from gatehouse.auth.models import Identity  # noqa: E402
from gatehouse.db.config import load_db_config  # noqa: E402

_AUTH_ENV = (
    "APP_BASE_URL",
    "APP_ENV",
    "CSRF_ALLOWED_ORIGINS",
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "OAUTH_REDIRECT_URI",
    "OAUTH_AUTHORIZE_URL",
    "OAUTH_TOKEN_URL",
    "OAUTH_USERINFO_URL",
    "AUTH_COOKIE_SECURE",
    "AUTH_SESSION_TTL_SECONDS",
    "AUTH_SESSION_COOKIE",
    "AUTH_SESSION_TOUCH",
    "POSTGRES_DSN",
    "POSTGRES_HOST",
    "POSTGRES_PORT",
    "POSTGRES_DB",
    "POSTGRES_USER",
    "POSTGRES_PASSWORD",
    "DB_AUTO_MIGRATE",
)

BASE_URL = "http://testserver"


@pytest.fixture(autouse=True)
def _clean_auth_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for k in _AUTH_ENV:
        monkeypatch.delenv(k, raising=False)
    monkeypatch.setenv("AUTH_STATE_SECRET", "test-state-secret-for-testing-purposes-only")
    monkeypatch.setenv("AUTH_SESSION_BACKEND", "memory")
    load_auth_config.cache_clear()
    load_db_config.cache_clear()
    yield
    load_auth_config.cache_clear()
    load_db_config.cache_clear()


@pytest.fixture
def cfg(monkeypatch: pytest.MonkeyPatch) -> AuthConfig:
    monkeypatch.setenv("APP_BASE_URL", BASE_URL)
    load_auth_config.cache_clear()
    return load_auth_config()


@pytest.fixture
def oauth_cfg(monkeypatch: pytest.MonkeyPatch) -> AuthConfig:
    monkeypatch.setenv("APP_BASE_URL", BASE_URL)
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "test-client-id")
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "test-client-secret")
    load_auth_config.cache_clear()
    return load_auth_config()


@pytest.fixture
def ctx(cfg: AuthConfig) -> AuthContext:
    return build_auth_context(cfg)


@pytest.fixture
def oauth_ctx(oauth_cfg: AuthConfig) -> AuthContext:
    return build_auth_context(oauth_cfg)


def add_identity(
    ctx: AuthContext,
    email: str = "reader@example.com",
    *,
    username: Optional[str] = "reader",
    password: Optional[str] = None,
) -> Identity:
    # Low bcrypt cost keeps tests fast; verification doesn't care about the cost factor.
    pw_hash = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=4)).decode("utf-8") if password else None
    return ctx.identities.insert(Identity.new(email, username=username, password_hash=pw_hash))


def make_client(ctx: AuthContext):
    from fastapi.testclient import TestClient

    import gatehouse.api.server as srv

    srv.app.state.auth = ctx
    return TestClient(srv.app)


@pytest.fixture
def client(ctx: AuthContext):
    import gatehouse.api.server as srv

    c = make_client(ctx)
    yield c
    srv.app.state.auth = None


@pytest.fixture
def oauth_client(oauth_ctx: AuthContext):
    import gatehouse.api.server as srv

    c = make_client(oauth_ctx)
    yield c
    srv.app.state.auth = None
