from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Optional, Protocol

from gatehouse.auth.errors import IdentityConflict, PersistenceUnavailable
from gatehouse.auth.models import Identity, ProviderProfile

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, email, username, name, avatar_url, google_id, show_adult_content, "
    "two_factor_enabled, timezone, password_hash"
)


class IdentityBackend(Protocol):
    """Identity storage (owned by the account flows; the session core only reads and links)."""

    def get_by_id(self, user_id: str) -> Optional[Identity]: ...

    def get_by_email(self, email: str) -> Optional[Identity]: ...

    def insert(self, identity: Identity) -> Identity: ...

    def update_provider_link(self, identity: Identity) -> Identity:
        """Persist google_id / name / avatar_url for an existing identity."""


class InMemoryIdentityBackend:
    def __init__(self) -> None:
        self._rows: Dict[str, Identity] = {}
        self._lock = threading.Lock()

    def get_by_id(self, user_id: str) -> Optional[Identity]:
        with self._lock:
            return self._rows.get(user_id)

    def get_by_email(self, email: str) -> Optional[Identity]:
        email = email.lower().strip()
        with self._lock:
            for identity in self._rows.values():
                if identity.email == email:
                    return identity
        return None

    def insert(self, identity: Identity) -> Identity:
        with self._lock:
            if any(i.email == identity.email for i in self._rows.values()):
                raise IdentityConflict("Duplicate identity email")
            self._rows[identity.id] = identity
        return identity

    def update_provider_link(self, identity: Identity) -> Identity:
        with self._lock:
            self._rows[identity.id] = identity
        return identity

    def delete(self, user_id: str) -> None:
        with self._lock:
            self._rows.pop(user_id, None)


def _row_to_identity(row) -> Identity:
    (
        user_id,
        email,
        username,
        name,
        avatar_url,
        google_id,
        show_adult_content,
        two_factor_enabled,
        tz,
        password_hash,
    ) = row
    return Identity(
        id=str(user_id),
        email=str(email),
        username=username,
        name=name,
        avatar_url=avatar_url,
        google_id=google_id,
        show_adult_content=bool(show_adult_content),
        two_factor_enabled=bool(two_factor_enabled),
        timezone=tz or "UTC",
        password_hash=password_hash,
    )


class PostgresIdentityBackend:
    def __init__(self, connect: Callable[[], object]) -> None:
        self._connect = connect

    def _run(self, op: str, fn):  # type: ignore[no-untyped-def]
        import psycopg

        try:
            with self._connect() as conn:  # type: ignore[attr-defined]
                with conn.cursor() as cur:
                    return fn(cur)
        except psycopg.errors.UniqueViolation as e:
            raise IdentityConflict(f"Identity already exists ({op})") from e
        except (psycopg.Error, RuntimeError, OSError) as e:
            logger.warning("Identity store %s failed: %s", op, type(e).__name__)
            raise PersistenceUnavailable(f"Identity store unavailable ({op})") from e

    def get_by_id(self, user_id: str) -> Optional[Identity]:
        def _q(cur) -> Optional[Identity]:  # type: ignore[no-untyped-def]
            cur.execute(f"SELECT {_COLUMNS} FROM identities WHERE id = %s", (user_id,))
            row = cur.fetchone()
            return _row_to_identity(row) if row else None

        return self._run("get_by_id", _q)

    def get_by_email(self, email: str) -> Optional[Identity]:
        def _q(cur) -> Optional[Identity]:  # type: ignore[no-untyped-def]
            cur.execute(f"SELECT {_COLUMNS} FROM identities WHERE email = %s", (email.lower().strip(),))
            row = cur.fetchone()
            return _row_to_identity(row) if row else None

        return self._run("get_by_email", _q)

    def insert(self, identity: Identity) -> Identity:
        def _q(cur) -> Identity:  # type: ignore[no-untyped-def]
            cur.execute(
                f"""
                INSERT INTO identities ({_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {_COLUMNS}
                """,
                (
                    identity.id,
                    identity.email,
                    identity.username,
                    identity.name,
                    identity.avatar_url,
                    identity.google_id,
                    identity.show_adult_content,
                    identity.two_factor_enabled,
                    identity.timezone,
                    identity.password_hash,
                ),
            )
            row = cur.fetchone()
            if not row:
                raise PersistenceUnavailable("Failed to create identity")
            return _row_to_identity(row)

        return self._run("insert", _q)

    def update_provider_link(self, identity: Identity) -> Identity:
        def _q(cur) -> Identity:  # type: ignore[no-untyped-def]
            cur.execute(
                f"""
                UPDATE identities
                SET google_id = %s, name = %s, avatar_url = %s, updated_at = NOW()
                WHERE id = %s
                RETURNING {_COLUMNS}
                """,
                (identity.google_id, identity.name, identity.avatar_url, identity.id),
            )
            row = cur.fetchone()
            return _row_to_identity(row) if row else identity

        return self._run("update_provider_link", _q)


def _link(identities: IdentityBackend, existing: Identity, profile: ProviderProfile) -> Identity:
    linked = existing.with_updates(
        google_id=profile.sub,
        name=profile.name or existing.name,
        avatar_url=profile.picture or existing.avatar_url,
    )
    return identities.update_provider_link(linked)


def find_or_create_from_provider(identities: IdentityBackend, profile: ProviderProfile) -> Identity:
    """
    Link the provider profile to the identity with the same email, or create one.

    Existing identities keep their name/avatar when the provider sends none.
    """
    existing = identities.get_by_email(profile.email)
    if existing is not None:
        return _link(identities, existing, profile)

    # No password: external-only accounts can't use password login until one is set.
    identity = Identity.new(
        profile.email,
        google_id=profile.sub,
        name=profile.name,
        avatar_url=profile.picture,
    )
    try:
        created = identities.insert(identity)
    except IdentityConflict:
        # Lost a race with a concurrent callback for the same email: link to the winner.
        winner = identities.get_by_email(profile.email)
        if winner is None:
            raise
        return _link(identities, winner, profile)
    logger.info("Created identity %s from external login", created.id)
    return created
