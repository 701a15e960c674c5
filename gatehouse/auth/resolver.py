from __future__ import annotations

import logging
from typing import Optional

from starlette.requests import Request

from gatehouse.auth.context import AuthContext
from gatehouse.auth.cookies import read_cookie
from gatehouse.auth.errors import PersistenceUnavailable
from gatehouse.auth.models import Identity

logger = logging.getLogger(__name__)


def resolve_current_user(request: Request, ctx: AuthContext) -> Optional[Identity]:
    """
    Identity owning the request's session cookie, or None.

    A missing, unknown or expired session is None. A session whose account is gone (or
    can't be loaded) is also None: session rows may outlive their account.

    Raises PersistenceUnavailable when the session store itself is down, so callers can
    answer with a server fault instead of treating the request as authenticated.
    """
    raw_token = read_cookie(request.cookies, ctx.cfg.session_cookie_name)
    if raw_token is None:
        return None

    session = ctx.sessions.validate(raw_token)
    if session is None:
        return None

    try:
        identity = ctx.identities.get_by_id(session.user_id)
    except PersistenceUnavailable:
        logger.warning("Identity lookup failed for session owner %s; treating as anonymous", session.user_id)
        return None
    if identity is None:
        logger.info("Session owner %s no longer exists; treating as anonymous", session.user_id)
        return None
    return identity
