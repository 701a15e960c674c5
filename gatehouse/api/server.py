"""
HTTP surface for the session core.

Login (password or external provider), logout, "who am I", and session management.
Everything else in the site calls into this through `gatehouse.auth.deps`.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse

from gatehouse.auth import flow
from gatehouse.auth.context import AuthContext
from gatehouse.auth.deps import get_auth_context, get_required_user, require_trusted_origin
from gatehouse.auth.errors import PersistenceUnavailable, SessionInvalid
from gatehouse.auth.models import Identity

logger = logging.getLogger(__name__)

app = FastAPI(title="gatehouse session service")


@app.on_event("startup")
def _startup_maybe_migrate_db() -> None:
    """
    Optional dev behavior: auto-apply DB migrations when DB_AUTO_MIGRATE=1.

    This should never prevent the server from starting; failures are logged.
    """
    from gatehouse.db.migrate import maybe_auto_migrate

    did_attempt, msg = maybe_auto_migrate()
    if did_attempt:
        logger.info("DB migrations: %s", msg)


@app.exception_handler(PersistenceUnavailable)
async def _persistence_unavailable(request: Request, exc: PersistenceUnavailable) -> JSONResponse:
    # Generic fault for the client; the cause stays in the logs.
    logger.warning("%s %s - storage unavailable: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Service temporarily unavailable."},
        headers={"Cache-Control": "no-store"},
    )


@app.exception_handler(SessionInvalid)
async def _session_invalid(request: Request, exc: SessionInvalid) -> JSONResponse:
    # No `WWW-Authenticate`: browsers would pop a basic-auth dialog.
    return JSONResponse(status_code=401, content={"detail": str(exc)}, headers={"Cache-Control": "no-store"})


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming HTTP requests."""
    start_time = time.time()
    logger.debug("%s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
    except Exception as e:
        process_time = time.time() - start_time
        logger.exception("%s %s - ERROR after %.3fs: %s", request.method, request.url.path, process_time, str(e))
        raise
    process_time = time.time() - start_time
    logger.debug("%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, process_time)
    return response


@app.get("/healthz")
def healthz() -> Dict[str, Any]:
    return {"ok": True}


@app.get("/auth/external/start")
def auth_external_start(
    request: Request,
    context: Optional[str] = Query(None),
    next_path: Optional[str] = Query(None, alias="next"),
    ctx: AuthContext = Depends(get_auth_context),
):
    """Redirect the browser to the external provider (or to an error page if unconfigured)."""
    return flow.start_external_login(ctx, request, context=context, next_path=next_path)


@app.get("/auth/external/callback")
def auth_external_callback(request: Request, ctx: AuthContext = Depends(get_auth_context)):
    """Provider callback. No origin check: it is cross-site by nature; the state cookie guards it."""
    return flow.complete_external_login(ctx, request)


@app.post("/auth/login")
async def auth_login(request: Request, ctx: AuthContext = Depends(get_auth_context)):
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    return flow.login_with_password(ctx, request, payload)


@app.post("/auth/logout")
def auth_logout(request: Request, ctx: AuthContext = Depends(get_auth_context)):
    return flow.logout(ctx, request)


@app.get("/auth/session")
def auth_session(request: Request, ctx: AuthContext = Depends(get_auth_context)):
    return flow.session_lookup(ctx, request)


@app.get("/auth/sessions")
def auth_list_sessions(
    request: Request,
    user: Identity = Depends(get_required_user),
    ctx: AuthContext = Depends(get_auth_context),
):
    return flow.list_sessions(ctx, request, user)


@app.delete("/auth/sessions", dependencies=[Depends(require_trusted_origin)])
def auth_revoke_other_sessions(
    request: Request,
    user: Identity = Depends(get_required_user),
    ctx: AuthContext = Depends(get_auth_context),
):
    return flow.revoke_other_sessions(ctx, request, user)


def run(host: str = "0.0.0.0", port: int = 8080) -> None:
    import uvicorn

    # Configure logging for the application
    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    logger.info("Starting session service on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level)
