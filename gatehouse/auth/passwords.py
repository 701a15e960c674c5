from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

import bcrypt

from gatehouse.auth.errors import InvalidCredentials
from gatehouse.auth.identities import IdentityBackend
from gatehouse.auth.models import Identity

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    # Checked when the account doesn't exist, so both paths cost one bcrypt round.
    return hash_password("gatehouse-dummy-password")


def hash_password(password: str) -> str:
    """
    Hash password with bcrypt (cost factor 12).
    """
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=12)).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """
    Verify password against bcrypt hash with constant-time comparison.

    Accounts without a hash (external-login only) never match.
    """
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Invalid hash format
        return False


def authenticate_password(identities: IdentityBackend, email: str, password: str) -> Identity:
    """
    Authenticate by email/password.

    Raises:
        InvalidCredentials: unknown email or wrong password (indistinguishable to callers)
        PersistenceUnavailable: identity storage is down
    """
    identity = identities.get_by_email(email)
    if identity is None:
        verify_password(password, _dummy_hash())
        logger.info("Password login failed: unknown account")
        raise InvalidCredentials("Invalid email or password.")

    if not verify_password(password, identity.password_hash):
        logger.info("Password login failed for user %s", identity.id)
        raise InvalidCredentials("Invalid email or password.")

    return identity
