"""
Login / logout orchestration.

Each handler takes the per-request AuthContext and returns a ready Starlette response.
Cookies are only set after every preceding check has passed, with two exceptions: the
OAuth state cookie is cleared on every callback, and logout always clears the session
cookie.
"""

from __future__ import annotations

import hmac
import logging
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import ValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response

from gatehouse.auth.context import AuthContext
from gatehouse.auth.cookies import clear_session_cookie_kwargs, read_cookie, session_cookie_kwargs
from gatehouse.auth.errors import (
    ConfigurationMissing,
    CsrfRejected,
    InvalidCredentials,
    PersistenceUnavailable,
    ProviderError,
)
from gatehouse.auth.identities import find_or_create_from_provider
from gatehouse.auth.models import Identity, LoginRequest
from gatehouse.auth.oauth import (
    build_authorization_url,
    clear_state,
    exchange_code_for_tokens,
    fetch_user_info,
    generate_state_token,
    issue_state,
    normalize_context,
    parse_profile,
    peek_state_context,
    redirect_uri_for,
    verify_callback,
)
from gatehouse.auth.origin import is_safe_request_origin
from gatehouse.auth.passwords import authenticate_password
from gatehouse.auth.resolver import resolve_current_user
from gatehouse.auth.store import hash_token

logger = logging.getLogger(__name__)


class FlowState(str, Enum):
    START = "start"
    REDIRECTED = "redirected"
    ABORTED = "aborted"
    AUTHENTICATED = "authenticated"
    REJECTED = "rejected"
    ANONYMOUS = "anonymous"


# Error codes understood by the login/register pages.
ERR_OAUTH_DISABLED = "google-oauth-disabled"
ERR_OAUTH_FAILED = "google-oauth-failed"
ERR_EMAIL_UNVERIFIED = "google-email-unverified"
ERR_PROFILE_MISSING = "google-profile-missing"


def _no_store(resp: Response) -> Response:
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _redirect(url: str) -> RedirectResponse:
    resp = RedirectResponse(url=url, status_code=302)
    _no_store(resp)
    return resp


def _json(content: Dict[str, Any], status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(content=content, status_code=status_code)
    _no_store(resp)
    return resp


def app_base_url(ctx: AuthContext, request: Request) -> str:
    return (ctx.cfg.public_base_url or str(request.base_url)).rstrip("/")


def failure_destination(base_url: str, context: str, error_code: str) -> str:
    path = "/login" if context == "login" else "/register"
    return f"{base_url}{path}?error={error_code}"


def success_destination(base_url: str, next_path: Optional[str], identity: Identity) -> str:
    """
    Where to land after external login.

    `/profile...` targets are rewritten to the user's own profile; identities without a
    username are sent to finish onboarding first.
    """
    if next_path:
        if next_path.startswith("/profile"):
            if not identity.username:
                return f"{base_url}/settings?onboarding=complete-profile"
            return f"{base_url}/profile/{identity.username}{next_path[len('/profile'):]}"
        return f"{base_url}{next_path}"
    if identity.username:
        return f"{base_url}/profile/{identity.username}"
    return f"{base_url}/settings?onboarding=complete-profile"


def start_external_login(
    ctx: AuthContext,
    request: Request,
    *,
    context: Optional[str] = None,
    next_path: Optional[str] = None,
) -> RedirectResponse:
    """START -> REDIRECTED (state cookie set), or ABORTED when the provider isn't configured."""
    cfg = ctx.cfg
    context = normalize_context(context)
    base = app_base_url(ctx, request)

    if not cfg.oauth_enabled:
        logger.info("External login %s: provider not configured", FlowState.ABORTED.value)
        return _redirect(failure_destination(base, context, ERR_OAUTH_DISABLED))

    token = generate_state_token()
    try:
        url = build_authorization_url(cfg, token, redirect_uri_for(cfg, base))
    except ConfigurationMissing:
        logger.info("External login %s: provider not configured", FlowState.ABORTED.value)
        return _redirect(failure_destination(base, context, ERR_OAUTH_DISABLED))

    resp = _redirect(url)
    issue_state(cfg, resp, token, context=context, next_path=next_path)
    logger.debug("External login %s", FlowState.REDIRECTED.value)
    return resp


def _reject(ctx: AuthContext, base: str, context: str, error_code: str) -> RedirectResponse:
    resp = _redirect(failure_destination(base, context, error_code))
    clear_state(ctx.cfg, resp)
    return resp


def complete_external_login(ctx: AuthContext, request: Request) -> RedirectResponse:
    """REDIRECTED -> AUTHENTICATED (session cookie set) or REJECTED (error page)."""
    cfg = ctx.cfg
    base = app_base_url(ctx, request)
    hint = peek_state_context(cfg, read_cookie(request.cookies, cfg.state_cookie_name))

    if not cfg.oauth_enabled:
        return _reject(ctx, base, hint.context, ERR_OAUTH_DISABLED)

    try:
        stored = verify_callback(cfg, request)
    except CsrfRejected as e:
        logger.warning("External login %s: %s", FlowState.REJECTED.value, e)
        return _reject(ctx, base, hint.context, ERR_OAUTH_FAILED)

    code = (request.query_params.get("code") or "").strip()
    provider_error = (request.query_params.get("error") or "").strip()
    if provider_error or not code:
        logger.info(
            "External login %s: provider error=%s code_present=%s",
            FlowState.REJECTED.value,
            provider_error or None,
            bool(code),
        )
        return _reject(ctx, base, stored.context, ERR_OAUTH_FAILED)

    try:
        tokens = exchange_code_for_tokens(cfg, code=code, redirect_uri=redirect_uri_for(cfg, base))
        payload = fetch_user_info(cfg, access_token=str(tokens["access_token"]))
    except (ProviderError, ConfigurationMissing) as e:
        logger.warning("External login %s: %s", FlowState.REJECTED.value, e)
        return _reject(ctx, base, stored.context, ERR_OAUTH_FAILED)

    email = str(payload.get("email") or "").strip()
    if not email or payload.get("email_verified") is False:
        return _reject(ctx, base, stored.context, ERR_EMAIL_UNVERIFIED)

    profile = parse_profile(payload)
    if profile is None:
        return _reject(ctx, base, stored.context, ERR_PROFILE_MISSING)

    try:
        identity = find_or_create_from_provider(ctx.identities, profile)
        raw_token, _session = ctx.sessions.create(identity.id)
    except PersistenceUnavailable:
        logger.exception("External login %s: storage unavailable", FlowState.REJECTED.value)
        return _reject(ctx, base, stored.context, ERR_OAUTH_FAILED)

    resp = _redirect(success_destination(base, stored.next_path, identity))
    resp.set_cookie(**session_cookie_kwargs(cfg, raw_token))
    clear_state(cfg, resp)
    logger.info("External login %s for user %s", FlowState.AUTHENTICATED.value, identity.id)
    return resp


def login_with_password(ctx: AuthContext, request: Request, payload: Any) -> JSONResponse:
    """
    Email/password login. Replaces any session the browser already presented.

    PersistenceUnavailable propagates to the app's error handler.
    """
    cfg = ctx.cfg
    if not is_safe_request_origin(request, cfg):
        return _json({"detail": "Invalid request origin."}, status_code=403)
    if not isinstance(payload, dict):
        return _json({"detail": "Invalid request payload."}, status_code=400)

    try:
        creds = LoginRequest.model_validate(payload)
    except ValidationError as e:
        errors: Dict[str, list] = {}
        for err in e.errors():
            field = str(err["loc"][0]) if err.get("loc") else "body"
            errors.setdefault(field, []).append(str(err.get("msg") or "Invalid value"))
        return _json({"errors": errors}, status_code=422)

    try:
        identity = authenticate_password(ctx.identities, creds.email, creds.password)
    except InvalidCredentials as e:
        return _json({"detail": str(e)}, status_code=401)

    previous = read_cookie(request.cookies, cfg.session_cookie_name)
    if previous:
        ctx.sessions.revoke(previous)

    raw_token, _session = ctx.sessions.create(identity.id)
    resp = _json({"user": identity.to_public_dict()})
    resp.set_cookie(**session_cookie_kwargs(cfg, raw_token))
    logger.info("Password login %s for user %s", FlowState.AUTHENTICATED.value, identity.id)
    return resp


def logout(ctx: AuthContext, request: Request) -> JSONResponse:
    """
    AUTHENTICATED -> ANONYMOUS.

    Untrusted origin: 403, nothing touched. Otherwise revoke whatever session was presented
    and always clear the cookie, even if there was no session.
    """
    cfg = ctx.cfg
    if not is_safe_request_origin(request, cfg):
        return _json({"detail": "Invalid request origin."}, status_code=403)

    raw_token = read_cookie(request.cookies, cfg.session_cookie_name)
    resp = _json({"success": True})
    if raw_token:
        try:
            ctx.sessions.revoke(raw_token)
        except PersistenceUnavailable:
            logger.exception("Logout: session store unavailable")
            resp = _json({"detail": "Unable to sign out right now."}, status_code=500)

    resp.set_cookie(**clear_session_cookie_kwargs(cfg))
    logger.debug("Logout -> %s", FlowState.ANONYMOUS.value)
    return resp


def session_lookup(ctx: AuthContext, request: Request) -> JSONResponse:
    """Who-am-I query: always 200 with identity or null; 500 only if the session store is down."""
    try:
        identity = resolve_current_user(request, ctx)
    except PersistenceUnavailable:
        logger.exception("Session lookup failed")
        return _json({"detail": "Unable to verify session right now."}, status_code=500)
    return _json({"identity": identity.to_public_dict() if identity else None})


def list_sessions(ctx: AuthContext, request: Request, user: Identity) -> JSONResponse:
    """Active sessions of `user`, newest first, with the one making this request flagged."""
    current = read_cookie(request.cookies, ctx.cfg.session_cookie_name)
    current_hash = hash_token(current) if current else ""
    sessions = [
        s.to_public_dict(current=hmac.compare_digest(s.token_hash, current_hash))
        for s in ctx.sessions.list_for_user(user.id)
    ]
    return _json({"sessions": sessions})


def revoke_other_sessions(ctx: AuthContext, request: Request, user: Identity) -> JSONResponse:
    """Sign out every other session of `user`, keeping the one making this request."""
    current = read_cookie(request.cookies, ctx.cfg.session_cookie_name)
    revoked = ctx.sessions.revoke_others(user.id, keep_raw_token=current)
    message = "Signed out other sessions." if revoked > 0 else "No other sessions to sign out."
    return _json({"message": message, "revoked": revoked})
