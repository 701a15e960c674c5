from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, Request

from gatehouse.auth.context import AuthContext, build_auth_context
from gatehouse.auth.errors import SessionInvalid
from gatehouse.auth.models import Identity
from gatehouse.auth.origin import is_safe_request_origin
from gatehouse.auth.resolver import resolve_current_user


def get_auth_context(request: Request) -> AuthContext:
    """
    Per-app AuthContext, built on first use.

    Tests install their own via `app.state.auth`.
    """
    ctx = getattr(request.app.state, "auth", None)
    if ctx is None:
        ctx = build_auth_context()
        request.app.state.auth = ctx
    return ctx


def get_optional_user(request: Request, ctx: AuthContext = Depends(get_auth_context)) -> Optional[Identity]:
    """
    FastAPI dependency: current identity if logged in, None for anonymous requests.
    """
    return resolve_current_user(request, ctx)


def get_required_user(user: Optional[Identity] = Depends(get_optional_user)) -> Identity:
    if user is None:
        raise SessionInvalid("You must be signed in.")
    return user


def require_trusted_origin(request: Request, ctx: AuthContext = Depends(get_auth_context)) -> None:
    """
    FastAPI dependency guarding cookie-authenticated mutations against cross-site requests.
    """
    if not is_safe_request_origin(request, ctx.cfg):
        raise HTTPException(status_code=403, detail="Invalid request origin.")
