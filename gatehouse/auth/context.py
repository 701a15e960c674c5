from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from gatehouse.auth.config import AuthConfig, load_auth_config
from gatehouse.auth.identities import (
    IdentityBackend,
    InMemoryIdentityBackend,
    PostgresIdentityBackend,
)
from gatehouse.auth.store import InMemorySessionBackend, PostgresSessionBackend, SessionStore

logger = logging.getLogger(__name__)


@dataclass
class AuthContext:
    """Collaborators every auth handler needs, passed explicitly per request."""

    cfg: AuthConfig
    sessions: SessionStore
    identities: IdentityBackend


def build_auth_context(cfg: Optional[AuthConfig] = None) -> AuthContext:
    cfg = cfg or load_auth_config()
    if cfg.session_backend == "memory":
        logger.warning("Using in-memory session/identity storage (not persistent, single process only)")
        session_backend = InMemorySessionBackend()
        identities: IdentityBackend = InMemoryIdentityBackend()
    else:
        from gatehouse.db.config import connect

        session_backend = PostgresSessionBackend(connect)
        identities = PostgresIdentityBackend(connect)

    return AuthContext(
        cfg=cfg,
        sessions=SessionStore(session_backend, ttl_seconds=cfg.session_ttl_seconds, touch=cfg.session_touch),
        identities=identities,
    )
