"""
Server-side session store.

Only a SHA-256 hash of each raw session token is persisted. Expiry is checked lazily at
validation time; `purge_expired` is optional housekeeping and never needed for correctness.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import threading
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from gatehouse.auth.errors import PersistenceUnavailable
from gatehouse.auth.models import Session
from gatehouse.auth.util import utcnow

logger = logging.getLogger(__name__)

_TOKEN_BYTES = 32
_TOKEN_HEX_LEN = _TOKEN_BYTES * 2


def hash_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def generate_session_token() -> str:
    return secrets.token_hex(_TOKEN_BYTES)


def _looks_like_token(raw_token: Optional[str]) -> bool:
    if not raw_token or len(raw_token) != _TOKEN_HEX_LEN:
        return False
    try:
        int(raw_token, 16)
    except ValueError:
        return False
    return True


class SessionBackend(Protocol):
    """
    Persistence collaborator for session rows, keyed by token hash.

    Implementations raise PersistenceUnavailable on any storage fault.
    """

    def insert(self, session: Session) -> None:
        """Atomically insert a new row; a duplicate token hash must fail."""

    def get(self, token_hash: str) -> Optional[Session]: ...

    def delete(self, token_hash: str) -> int: ...

    def delete_for_user(self, user_id: str, *, keep_token_hash: Optional[str] = None) -> int: ...

    def list_for_user(self, user_id: str) -> List[Session]: ...

    def delete_expired(self, now: datetime) -> int: ...

    def touch(self, token_hash: str, when: datetime) -> None: ...


class InMemorySessionBackend:
    """Lock-protected dict backend for tests and single-process development."""

    def __init__(self) -> None:
        self._rows: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def insert(self, session: Session) -> None:
        with self._lock:
            if session.token_hash in self._rows:
                raise PersistenceUnavailable("Duplicate session token hash")
            self._rows[session.token_hash] = self._copy(session)

    @staticmethod
    def _copy(row: Session) -> Session:
        # Callers only ever see copies; stored rows change through this backend alone.
        return replace(row)

    def get(self, token_hash: str) -> Optional[Session]:
        with self._lock:
            row = self._rows.get(token_hash)
            return self._copy(row) if row is not None else None

    def delete(self, token_hash: str) -> int:
        with self._lock:
            return 1 if self._rows.pop(token_hash, None) is not None else 0

    def delete_for_user(self, user_id: str, *, keep_token_hash: Optional[str] = None) -> int:
        with self._lock:
            doomed = [h for h, s in self._rows.items() if s.user_id == user_id and h != keep_token_hash]
            for h in doomed:
                del self._rows[h]
            return len(doomed)

    def list_for_user(self, user_id: str) -> List[Session]:
        with self._lock:
            return sorted(
                (self._copy(s) for s in self._rows.values() if s.user_id == user_id),
                key=lambda s: s.issued_at,
                reverse=True,
            )

    def delete_expired(self, now: datetime) -> int:
        with self._lock:
            doomed = [h for h, s in self._rows.items() if s.expires_at <= now]
            for h in doomed:
                del self._rows[h]
            return len(doomed)

    def touch(self, token_hash: str, when: datetime) -> None:
        with self._lock:
            row = self._rows.get(token_hash)
            if row is not None:
                row.last_seen_at = when


def _row_to_session(row) -> Session:
    token_hash, user_id, issued_at, expires_at, last_seen_at = row
    return Session(
        token_hash=str(token_hash),
        user_id=str(user_id),
        issued_at=issued_at,
        expires_at=expires_at,
        last_seen_at=last_seen_at,
    )


class PostgresSessionBackend:
    """
    `sessions` table backend (see gatehouse/db/migrations).

    One connection per operation; the primary key on token_hash makes insert atomic.
    """

    def __init__(self, connect: Callable[[], object]) -> None:
        self._connect = connect

    def _run(self, op: str, fn):  # type: ignore[no-untyped-def]
        import psycopg

        try:
            with self._connect() as conn:  # type: ignore[attr-defined]
                with conn.cursor() as cur:
                    return fn(cur)
        except (psycopg.Error, RuntimeError, OSError) as e:
            logger.warning("Session store %s failed: %s", op, type(e).__name__)
            raise PersistenceUnavailable(f"Session store unavailable ({op})") from e

    def insert(self, session: Session) -> None:
        def _q(cur) -> None:  # type: ignore[no-untyped-def]
            cur.execute(
                """
                INSERT INTO sessions (token_hash, user_id, issued_at, expires_at, last_seen_at)
                VALUES (%s, %s, %s, %s, %s)
                """,
                (session.token_hash, session.user_id, session.issued_at, session.expires_at, session.last_seen_at),
            )

        self._run("insert", _q)

    def get(self, token_hash: str) -> Optional[Session]:
        def _q(cur) -> Optional[Session]:  # type: ignore[no-untyped-def]
            cur.execute(
                """
                SELECT token_hash, user_id, issued_at, expires_at, last_seen_at
                FROM sessions
                WHERE token_hash = %s
                """,
                (token_hash,),
            )
            row = cur.fetchone()
            return _row_to_session(row) if row else None

        return self._run("get", _q)

    def delete(self, token_hash: str) -> int:
        def _q(cur) -> int:  # type: ignore[no-untyped-def]
            cur.execute("DELETE FROM sessions WHERE token_hash = %s", (token_hash,))
            return int(cur.rowcount or 0)

        return self._run("delete", _q)

    def delete_for_user(self, user_id: str, *, keep_token_hash: Optional[str] = None) -> int:
        def _q(cur) -> int:  # type: ignore[no-untyped-def]
            if keep_token_hash:
                cur.execute(
                    "DELETE FROM sessions WHERE user_id = %s AND token_hash <> %s",
                    (user_id, keep_token_hash),
                )
            else:
                cur.execute("DELETE FROM sessions WHERE user_id = %s", (user_id,))
            return int(cur.rowcount or 0)

        return self._run("delete_for_user", _q)

    def list_for_user(self, user_id: str) -> List[Session]:
        def _q(cur) -> List[Session]:  # type: ignore[no-untyped-def]
            cur.execute(
                """
                SELECT token_hash, user_id, issued_at, expires_at, last_seen_at
                FROM sessions
                WHERE user_id = %s
                ORDER BY issued_at DESC
                """,
                (user_id,),
            )
            return [_row_to_session(r) for r in cur.fetchall()]

        return self._run("list_for_user", _q)

    def delete_expired(self, now: datetime) -> int:
        def _q(cur) -> int:  # type: ignore[no-untyped-def]
            cur.execute("DELETE FROM sessions WHERE expires_at <= %s", (now,))
            return int(cur.rowcount or 0)

        return self._run("delete_expired", _q)

    def touch(self, token_hash: str, when: datetime) -> None:
        def _q(cur) -> None:  # type: ignore[no-untyped-def]
            cur.execute("UPDATE sessions SET last_seen_at = %s WHERE token_hash = %s", (when, token_hash))

        self._run("touch", _q)


class SessionStore:
    """Session lifecycle: create / validate / revoke."""

    def __init__(
        self,
        backend: SessionBackend,
        *,
        ttl_seconds: int,
        touch: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.backend = backend
        self.ttl = timedelta(seconds=ttl_seconds)
        self.touch = touch
        self._clock = clock

    def create(self, user_id: str) -> Tuple[str, Session]:
        """
        Issue a new session for `user_id`.

        Returns (raw_token, session). Only the hash of raw_token is stored.
        """
        raw_token = generate_session_token()
        now = self._clock()
        session = Session(
            token_hash=hash_token(raw_token),
            user_id=user_id,
            issued_at=now,
            expires_at=now + self.ttl,
        )
        self.backend.insert(session)
        logger.debug("Created session for user %s", user_id)
        return raw_token, session

    def validate(self, raw_token: Optional[str]) -> Optional[Session]:
        """
        Session for a presented raw token, or None if unknown, malformed or expired.

        Raises PersistenceUnavailable if the backend is down.
        """
        if not _looks_like_token(raw_token):
            return None
        token_hash = hash_token(raw_token)  # type: ignore[arg-type]
        session = self.backend.get(token_hash)
        if session is None:
            return None
        if not hmac.compare_digest(session.token_hash, token_hash):
            return None
        now = self._clock()
        if not session.is_valid(now):
            return None
        if self.touch:
            self.backend.touch(token_hash, now)
            session.last_seen_at = now
        return session

    def revoke(self, raw_token: Optional[str]) -> bool:
        """Delete the session for `raw_token`. Idempotent; returns whether a row was removed."""
        if not raw_token:
            return False
        return self.backend.delete(hash_token(raw_token)) > 0

    def revoke_others(self, user_id: str, *, keep_raw_token: Optional[str]) -> int:
        """Delete every session of `user_id` except the one for `keep_raw_token`."""
        keep = hash_token(keep_raw_token) if keep_raw_token else None
        n = self.backend.delete_for_user(user_id, keep_token_hash=keep)
        if n:
            logger.info("Revoked %d other session(s) for user %s", n, user_id)
        return n

    def list_for_user(self, user_id: str) -> List[Session]:
        now = self._clock()
        return [s for s in self.backend.list_for_user(user_id) if s.is_valid(now)]

    def purge_expired(self) -> int:
        n = self.backend.delete_expired(self._clock())
        if n > 0:
            logger.info("Cleaned up %d expired sessions", n)
        return n
