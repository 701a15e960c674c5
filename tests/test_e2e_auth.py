"""E2E tests for authentication flows.

These tests require a running server (APP_BASE_URL must match BASE_URL) and an existing
password account. They are executed in CI or manually.
Run with: pytest -m e2e
"""

import os
import time
from typing import Generator

import pytest
import requests

BASE_URL = os.getenv("E2E_BASE_URL", "http://localhost:8080")
# Use environment variables for credentials (set in .env or CI)
E2E_EMAIL = os.getenv("E2E_EMAIL", "")
E2E_PASSWORD = os.getenv("E2E_PASSWORD", "")
SESSION_COOKIE = os.getenv("AUTH_SESSION_COOKIE", "gatehouse_session")
TRUSTED = {"Origin": BASE_URL}

pytestmark = pytest.mark.e2e


@pytest.fixture(scope="module")
def wait_for_server() -> Generator[None, None, None]:
    """Wait for server to be ready."""
    max_retries = 30
    for i in range(max_retries):
        try:
            r = requests.get(f"{BASE_URL}/healthz", timeout=2)
            if r.status_code == 200:
                break
        except requests.RequestException:
            if i == max_retries - 1:
                raise Exception("Server failed to start within 30 seconds")
            time.sleep(1)
    yield


@pytest.fixture
def credentials() -> dict:
    if not (E2E_EMAIL and E2E_PASSWORD):
        pytest.skip("E2E_EMAIL / E2E_PASSWORD not set")
    return {"email": E2E_EMAIL, "password": E2E_PASSWORD}


def test_healthz_endpoint(wait_for_server):
    """Test health check endpoint is accessible."""
    r = requests.get(f"{BASE_URL}/healthz")
    assert r.status_code == 200
    assert r.json()["ok"] is True


def test_anonymous_session_lookup(wait_for_server):
    """Anonymous who-am-I is a 200 with a null identity, not an error."""
    r = requests.get(f"{BASE_URL}/auth/session")
    assert r.status_code == 200
    assert r.json() == {"identity": None}


def test_external_start_redirects(wait_for_server):
    """External login start always redirects (provider or disabled error page)."""
    r = requests.get(f"{BASE_URL}/auth/external/start", allow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"]


def test_password_login_flow(wait_for_server, credentials):
    """Test email/password authentication."""
    r = requests.post(f"{BASE_URL}/auth/login", json=credentials, headers=TRUSTED)
    assert r.status_code == 200, f"Login failed: {r.text}"
    assert r.json()["user"]["email"] == credentials["email"].lower()

    # Session cookie should be set
    cookies = r.cookies
    assert SESSION_COOKIE in cookies

    r = requests.get(f"{BASE_URL}/auth/session", cookies=cookies)
    assert r.status_code == 200
    assert r.json()["identity"]["email"] == credentials["email"].lower()


def test_password_login_invalid_credentials(wait_for_server, credentials):
    """Test login fails with invalid credentials."""
    r = requests.post(
        f"{BASE_URL}/auth/login",
        json={"email": credentials["email"], "password": "wrongpassword"},
        headers=TRUSTED,
    )
    assert r.status_code == 401


def test_logout_requires_trusted_origin(wait_for_server, credentials):
    """Cross-site logout is refused and the session survives."""
    r = requests.post(f"{BASE_URL}/auth/login", json=credentials, headers=TRUSTED)
    cookies = r.cookies

    r = requests.post(f"{BASE_URL}/auth/logout", cookies=cookies, headers={"Origin": "https://evil.example"})
    assert r.status_code == 403

    r = requests.get(f"{BASE_URL}/auth/session", cookies=cookies)
    assert r.json()["identity"] is not None


def test_logout(wait_for_server, credentials):
    """Test logout revokes the session server-side."""
    r = requests.post(f"{BASE_URL}/auth/login", json=credentials, headers=TRUSTED)
    assert r.status_code == 200
    cookies = r.cookies

    r = requests.post(f"{BASE_URL}/auth/logout", cookies=cookies, headers=TRUSTED)
    assert r.status_code == 200

    # Replaying the old cookie must not authenticate.
    r = requests.get(f"{BASE_URL}/auth/session", cookies=cookies)
    assert r.json() == {"identity": None}
