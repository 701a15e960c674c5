from __future__ import annotations

import pytest
from pydantic import ValidationError

from gatehouse.auth.models import Identity, LoginRequest, ProviderProfile
from gatehouse.auth.util import random_token, sanitize_next_path


def test_identity_new_normalizes_email() -> None:
    a = Identity.new("  Reader@Example.COM ")
    b = Identity.new("reader@example.com")
    assert a.email == "reader@example.com"
    assert a.id != b.id


def test_identity_public_dict_hides_password_hash() -> None:
    identity = Identity.new("reader@example.com", username="reader", password_hash="$2b$secret")
    public = identity.to_public_dict()
    assert public["username"] == "reader"
    assert public["timezone"] == "UTC"
    assert "$2b$secret" not in repr(identity)
    assert all("password" not in k.lower() for k in public)


def test_identity_with_updates_is_a_copy() -> None:
    identity = Identity.new("reader@example.com")
    linked = identity.with_updates(google_id="g-1")
    assert linked.google_id == "g-1"
    assert identity.google_id is None
    assert linked.id == identity.id


def test_provider_profile_ignores_extra_keys() -> None:
    profile = ProviderProfile.model_validate({"sub": "1", "email": "a@example.com", "hd": "example.com"})
    assert profile.email_verified is None
    assert profile.picture is None


def test_login_request_requires_both_fields() -> None:
    with pytest.raises(ValidationError):
        LoginRequest.model_validate({"email": "a@example.com"})
    assert LoginRequest.model_validate({"email": " A@Example.com", "password": "x"}).email == "a@example.com"


@pytest.mark.parametrize(
    "value,expected",
    [
        ("/inbox", "/inbox"),
        ("  /profile/lists ", "/profile/lists"),
        (None, None),
        ("", None),
        ("inbox", None),
        ("https://evil.test/", None),
        ("//evil.test", None),
        ("/\\evil.test", None),
        ("/ok\r\nSet-Cookie: x=1", None),
    ],
)
def test_sanitize_next_path(value, expected) -> None:
    assert sanitize_next_path(value) == expected


def test_random_token_length_scales_with_bytes() -> None:
    assert len(random_token(16)) == 22
    assert len(random_token(32)) == 43
