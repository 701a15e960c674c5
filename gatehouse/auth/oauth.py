from __future__ import annotations

import hmac
import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from pydantic import ValidationError
from starlette.requests import Request
from starlette.responses import Response

from gatehouse.auth.config import OAUTH_STATE_TTL_SECONDS, AuthConfig
from gatehouse.auth.cookies import cleared_cookie_kwargs, cookie_kwargs, read_cookie
from gatehouse.auth.errors import ConfigurationMissing, CsrfRejected, ProviderError
from gatehouse.auth.models import OAuthState, ProviderProfile
from gatehouse.auth.util import random_token, sanitize_next_path

logger = logging.getLogger(__name__)

STATE_SALT = "gatehouse-oauth-state-v1"
CALLBACK_PATH = "/auth/external/callback"


def generate_state_token() -> str:
    """Random, URL-safe state token with 256 bits of entropy."""
    return random_token(32)


def _serializer(cfg: AuthConfig) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key=cfg.state_secret, salt=STATE_SALT)


def normalize_context(value: Any) -> str:
    """Anything other than an explicit "login" is a sign-up attempt."""
    return "login" if value == "login" else "register"


def encode_state_cookie(cfg: AuthConfig, state: OAuthState) -> str:
    payload = {"state": state.state, "context": state.context, "next": state.next_path}
    return _serializer(cfg).dumps(json.dumps(payload, separators=(",", ":"), sort_keys=True))


def _decode_payload(raw: Any) -> OAuthState:
    data = json.loads(raw)
    if not isinstance(data, dict) or not isinstance(data.get("state"), str) or not data["state"]:
        raise ValueError("Malformed OAuth state payload")
    return OAuthState(
        state=data["state"],
        context=normalize_context(data.get("context")),
        next_path=sanitize_next_path(data.get("next")),
    )


def issue_state(
    cfg: AuthConfig,
    response: Response,
    token: str,
    *,
    context: str = "login",
    next_path: Optional[str] = None,
) -> OAuthState:
    """Attach the state token to `response` as a signed, 10-minute, httpOnly cookie."""
    state = OAuthState(state=token, context=normalize_context(context), next_path=sanitize_next_path(next_path))
    response.set_cookie(
        **cookie_kwargs(
            cfg,
            key=cfg.state_cookie_name,
            value=encode_state_cookie(cfg, state),
            max_age=OAUTH_STATE_TTL_SECONDS,
        )
    )
    return state


def clear_state(cfg: AuthConfig, response: Response) -> None:
    response.set_cookie(**cleared_cookie_kwargs(cfg, key=cfg.state_cookie_name))


def verify_state(cfg: AuthConfig, cookie_value: Optional[str], param: Optional[str]) -> OAuthState:
    """
    Compare the callback `state` parameter with the state cookie.

    Raises CsrfRejected when either side is missing, the cookie signature is bad or older
    than the TTL, or the two tokens differ. The caller must clear the cookie whatever the
    outcome.
    """
    if not cookie_value:
        raise CsrfRejected("Missing OAuth state cookie")
    provided = (param or "").strip()
    if not provided:
        raise CsrfRejected("Missing OAuth state parameter")
    try:
        raw = _serializer(cfg).loads(cookie_value, max_age=OAUTH_STATE_TTL_SECONDS)
        stored = _decode_payload(raw)
    except SignatureExpired as e:
        raise CsrfRejected("OAuth state expired") from e
    except (BadSignature, ValueError) as e:
        raise CsrfRejected("Invalid OAuth state cookie") from e

    if not hmac.compare_digest(stored.state.encode("utf-8"), provided.encode("utf-8")):
        raise CsrfRejected("OAuth state mismatch")
    return stored


def verify_callback(cfg: AuthConfig, request: Request) -> OAuthState:
    """`verify_state` applied to a callback request (state cookie vs `?state=`)."""
    return verify_state(
        cfg,
        read_cookie(request.cookies, cfg.state_cookie_name),
        request.query_params.get("state"),
    )


def peek_state_context(cfg: AuthConfig, cookie_value: Optional[str]) -> OAuthState:
    """
    Best-effort read of context/next from the state cookie, used only to pick the error page.

    Never use this for verification.
    """
    if cookie_value:
        try:
            raw = _serializer(cfg).loads(cookie_value)
            return _decode_payload(raw)
        except (BadSignature, ValueError):
            pass
    return OAuthState(state="", context="register", next_path=None)


def redirect_uri_for(cfg: AuthConfig, request_base: str) -> str:
    if cfg.oauth_redirect_uri:
        return cfg.oauth_redirect_uri
    base = (cfg.public_base_url or request_base or "").rstrip("/")
    return f"{base}{CALLBACK_PATH}"


def build_authorization_url(cfg: AuthConfig, state: str, redirect_uri: str) -> str:
    """Build the provider authorization URL carrying `state` and our callback URI."""
    if not cfg.oauth_client_id:
        raise ConfigurationMissing("External login attempted without a client ID")

    params = {
        "client_id": cfg.oauth_client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": "openid email profile",
        "access_type": "offline",
        "prompt": "consent",
        "state": state,
    }
    return f"{cfg.oauth_authorize_url}?{urlencode(params)}"


def exchange_code_for_tokens(cfg: AuthConfig, *, code: str, redirect_uri: str) -> Dict[str, Any]:
    """
    Exchange authorization code for tokens (access_token, optionally id_token).
    """
    if not cfg.oauth_client_id or not cfg.oauth_client_secret:
        raise ConfigurationMissing("External login client ID/secret not configured")

    payload = {
        "code": code,
        "client_id": cfg.oauth_client_id,
        "client_secret": cfg.oauth_client_secret,
        "redirect_uri": redirect_uri,
        "grant_type": "authorization_code",
    }
    try:
        r = requests.post(cfg.oauth_token_url, data=payload, timeout=10)
    except requests.RequestException as e:
        raise ProviderError(f"Token exchange failed ({type(e).__name__})") from e
    if r.status_code >= 400:
        # Avoid leaking sensitive info; include minimal context.
        raise ProviderError(f"Token exchange failed (status={r.status_code})")
    try:
        data = r.json()
    except ValueError as e:
        raise ProviderError("Invalid token response") from e
    if not isinstance(data, dict) or not str(data.get("access_token") or "").strip():
        raise ProviderError("Token response missing access_token")
    return data


def fetch_user_info(cfg: AuthConfig, *, access_token: str) -> Dict[str, Any]:
    try:
        r = requests.get(
            cfg.oauth_userinfo_url,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=10,
        )
    except requests.RequestException as e:
        raise ProviderError(f"User info request failed ({type(e).__name__})") from e
    if r.status_code >= 400:
        raise ProviderError(f"User info request failed (status={r.status_code})")
    try:
        data = r.json()
    except ValueError as e:
        raise ProviderError("Invalid user info response") from e
    if not isinstance(data, dict):
        raise ProviderError("Invalid user info response")
    return data


def parse_profile(payload: Dict[str, Any]) -> Optional[ProviderProfile]:
    """Validate a raw user-info payload; None when required fields are missing or malformed."""
    try:
        return ProviderProfile.model_validate(payload)
    except ValidationError as e:
        logger.info("Provider profile rejected: %s", ", ".join(str(err.get("loc")) for err in e.errors()))
        return None
