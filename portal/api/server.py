"""
Login portal HTTP server.

Serves the login form, accepts credentials, issues server-side sessions, and
gates every other route behind the session check in `session_gate`.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional, Tuple

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates

from portal.auth.config import AuthConfig, load_auth_config
from portal.auth.gate import GateState, authenticate_cookie, check_request, is_public_path, reject_response
from portal.auth.models import AuthUser
from portal.auth.resolver import CredentialResolver
from portal.auth.session import (
    FLASH_COOKIE_NAME,
    clear_flash_cookie_kwargs,
    clear_session_cookie_kwargs,
    decode_flash,
    encode_flash,
    flash_cookie_kwargs,
    session_cookie_kwargs,
    session_cookie_name,
    sign_session_id,
    unsign_session_id,
)
from portal.db.config import STORE_MEMORY, load_db_config
from portal.db.migrate import apply_migrations
from portal.db.pool import Database
from portal.db.sessions import MemorySessionStore, PostgresSessionStore, SessionStore, prune_sessions_periodically
from portal.db.users import MemoryUserStore, PostgresUserStore, UserStore
from portal.errors import MigrationError, StorageFailure

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parents[1]
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))

MSG_INVALID_CREDENTIALS = "Invalid username or password."
MSG_UNAVAILABLE = "Login is temporarily unavailable. Please try again later."


async def _open_stores(app: FastAPI) -> None:
    if app.state.users is not None and app.state.sessions is not None:
        return

    auth_cfg = load_auth_config()
    db_cfg = load_db_config()
    if db_cfg.store == STORE_MEMORY:
        logger.warning("Using in-memory stores; users and sessions are lost on restart")
        app.state.users = MemoryUserStore()
        app.state.sessions = MemorySessionStore(ttl_seconds=auth_cfg.session_ttl_seconds)
        return

    # Avoid logging secrets; host/db/user are fine.
    logger.info(
        "DB config: host=%s db=%s user=%s pool=%d..%d",
        db_cfg.postgres_host,
        db_cfg.postgres_db,
        db_cfg.postgres_user,
        db_cfg.pool_min_size,
        db_cfg.pool_max_size,
    )
    db = Database.from_config(db_cfg)
    await db.open()
    sessions = PostgresSessionStore(db, ttl_seconds=auth_cfg.session_ttl_seconds)
    try:
        if db_cfg.db_auto_migrate:
            await apply_migrations(db)
        if auth_cfg.session_create_table:
            await sessions.create_table_if_missing()
    except (StorageFailure, MigrationError):
        await db.close()
        raise
    app.state.db = db
    app.state.users = PostgresUserStore(db)
    app.state.sessions = sessions


async def _close_stores(app: FastAPI) -> None:
    db: Optional[Database] = app.state.db
    if db is not None:
        app.state.db = None
        await db.close()


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    await _open_stores(app)
    cfg = load_auth_config()
    prune_task: Optional[asyncio.Task] = None
    if cfg.session_expires and cfg.session_prune_seconds > 0:
        prune_task = asyncio.create_task(prune_sessions_periodically(app.state.sessions, cfg.session_prune_seconds))
        logger.info("Pruning expired sessions every %.0fs", cfg.session_prune_seconds)
    try:
        yield
    finally:
        if prune_task is not None:
            prune_task.cancel()
            with suppress(asyncio.CancelledError):
                await prune_task
        await _close_stores(app)


def create_app(
    *,
    users: Optional[UserStore] = None,
    sessions: Optional[SessionStore] = None,
) -> FastAPI:
    """
    Build the portal app.

    Stores passed in are used as-is (tests, embedding). Otherwise they are
    created at startup from PORTAL_STORE / POSTGRES_* and torn down at shutdown.
    """
    app = FastAPI(title="Login portal", lifespan=_lifespan)
    app.state.users = users
    app.state.sessions = sessions
    app.state.db = None

    @app.middleware("http")
    async def session_gate(request: Request, call_next):
        """Enforce the session check and log every request."""
        start_time = time.time()
        logger.debug("%s %s", request.method, request.url.path)
        cfg = load_auth_config()
        path = request.url.path or ""
        try:
            # Fast path: allow-listed paths never touch the session store.
            if is_public_path(cfg, path):
                response = await call_next(request)
                process_time = time.time() - start_time
                logger.debug("%s %s - %d (%.3fs)", request.method, path, response.status_code, process_time)
                return response

            users = getattr(request.app.state, "users", None)
            sessions = getattr(request.app.state, "sessions", None)
            if users is None or sessions is None:
                return PlainTextResponse("Service Unavailable", status_code=503)

            cookie_value = request.cookies.get(session_cookie_name(cfg))
            try:
                decision = await check_request(cfg, path, cookie_value, sessions=sessions, users=users)
            except StorageFailure:
                logger.exception("Session check failed for %s %s", request.method, path)
                return PlainTextResponse("Internal Server Error", status_code=500)

            if not decision.passes:
                logger.debug("%s %s - rejected (no valid session)", request.method, path)
                return reject_response(cfg)

            request.state.user = decision.user
            request.state.session = decision.session
            response = await call_next(request)

            # Sliding expiry: the cookie follows the store's renewed TTL.
            if (
                decision.state is GateState.AUTHENTICATED
                and cfg.session_rolling
                and cfg.session_expires
                and cookie_value
                and not getattr(request.state, "session_ended", False)
            ):
                response.set_cookie(**session_cookie_kwargs(cfg, cookie_value))

            process_time = time.time() - start_time
            logger.debug("%s %s - %d (%.3fs)", request.method, path, response.status_code, process_time)
            return response
        except Exception as e:
            process_time = time.time() - start_time
            logger.exception("%s %s - ERROR after %.3fs: %s", request.method, path, process_time, str(e))
            raise

    _register_routes(app)
    return app


def _stores(request: Request) -> Tuple[UserStore, SessionStore]:
    users = getattr(request.app.state, "users", None)
    sessions = getattr(request.app.state, "sessions", None)
    if users is None or sessions is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return users, sessions


def _resolver(cfg: AuthConfig, users: UserStore) -> CredentialResolver:
    return CredentialResolver(
        users,
        auto_register_unknown_users=cfg.auto_register_unknown_users,
        bcrypt_rounds=cfg.bcrypt_rounds,
    )


async def _read_credentials(request: Request) -> Tuple[str, str]:
    """Accept JSON or form-encoded `{username, password}`; anything else reads as empty."""
    content_type = (request.headers.get("content-type") or "").split(";", 1)[0].strip().lower()
    data: Any
    if content_type == "application/json":
        try:
            data = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            data = {}
    else:
        data = await request.form()
    if not hasattr(data, "get"):
        return "", ""
    username = data.get("username")
    password = data.get("password")
    # Usernames are exact and case-sensitive: no trimming or folding.
    return (
        username if isinstance(username, str) else "",
        password if isinstance(password, str) else "",
    )


def _redirect_with_flash(cfg: AuthConfig, url: str, message: str) -> RedirectResponse:
    resp = RedirectResponse(url=url, status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    value = encode_flash(cfg, message)
    if value:
        resp.set_cookie(**flash_cookie_kwargs(cfg, value))
    return resp


def _user_payload(user: AuthUser) -> Dict[str, Any]:
    return {"id": user.id, "username": user.username}


def _register_routes(app: FastAPI) -> None:
    @app.get("/healthz")
    def healthz() -> Dict[str, Any]:
        return {"ok": True}

    @app.get("/favicon.ico")
    def favicon() -> Response:
        return Response(status_code=204)

    @app.get("/")
    async def index(request: Request) -> Response:
        """Login form, or a redirect to the landing page when already signed in."""
        cfg = load_auth_config()
        users, sessions = _stores(request)
        try:
            found = await authenticate_cookie(
                cfg, request.cookies.get(session_cookie_name(cfg)), sessions=sessions, users=users
            )
        except StorageFailure:
            logger.exception("Session check failed on login page")
            found = None
        if found is not None:
            return RedirectResponse(url=cfg.landing_path, status_code=302)

        error = decode_flash(cfg, request.cookies.get(FLASH_COOKIE_NAME))
        resp = templates.TemplateResponse(request, "login.html", {"error": error})
        resp.headers["Cache-Control"] = "no-store"
        if FLASH_COOKIE_NAME in request.cookies:
            resp.set_cookie(**clear_flash_cookie_kwargs(cfg))
        return resp

    @app.post("/login")
    async def login(request: Request) -> Response:
        cfg = load_auth_config()
        if not cfg.session_secret:
            raise HTTPException(status_code=500, detail="Session signing is not configured (AUTH_SESSION_SECRET)")
        users, sessions = _stores(request)
        username, password = await _read_credentials(request)

        try:
            result = await _resolver(cfg, users).resolve(username, password)
            if not result.ok:
                return _redirect_with_flash(cfg, "/", MSG_INVALID_CREDENTIALS)
            session = await sessions.create(result.user.id)
        except StorageFailure:
            logger.exception("Login for %r failed on storage", username)
            return _redirect_with_flash(cfg, "/", MSG_UNAVAILABLE)

        # Retire the session the browser held before this login, if any.
        prev_sid = unsign_session_id(cfg, request.cookies.get(session_cookie_name(cfg)))
        if prev_sid and prev_sid != session.sid:
            try:
                await sessions.destroy(prev_sid)
            except StorageFailure:
                logger.warning("Could not destroy previous session for %r", username, exc_info=True)

        cookie_value = sign_session_id(cfg, session.sid)
        resp = RedirectResponse(url=cfg.landing_path, status_code=302)
        resp.headers["Cache-Control"] = "no-store"
        resp.set_cookie(**session_cookie_kwargs(cfg, cookie_value))
        if FLASH_COOKIE_NAME in request.cookies:
            resp.set_cookie(**clear_flash_cookie_kwargs(cfg))
        return resp

    @app.post("/logout")
    async def logout(request: Request) -> JSONResponse:
        cfg = load_auth_config()
        _, sessions = _stores(request)
        session = getattr(request.state, "session", None)
        if session is not None:
            try:
                await sessions.destroy(session.sid)
            except StorageFailure:
                logger.exception("Logout failed to destroy session")
                # Keep the cookie: the server-side session is still live.
                request.state.session_ended = True
                return JSONResponse(status_code=500, content={"ok": False, "detail": "Logout failed"})
        request.state.session_ended = True
        resp = JSONResponse(content={"ok": True})
        resp.headers["Cache-Control"] = "no-store"
        resp.set_cookie(**clear_session_cookie_kwargs(cfg))
        return resp

    @app.get("/hello")
    async def hello(request: Request) -> Response:
        user: Optional[AuthUser] = getattr(request.state, "user", None)
        if user is None:
            return RedirectResponse(url="/", status_code=302)
        return templates.TemplateResponse(request, "hello.html", {"user": user})

    @app.get("/unauthorized")
    async def unauthorized(request: Request) -> Response:
        return templates.TemplateResponse(request, "unauthorized.html", {})

    @app.get("/api/auth/me")
    async def auth_me(request: Request) -> Dict[str, Any]:
        user = getattr(request.state, "user", None)
        if not user:
            raise HTTPException(status_code=401, detail="Unauthorized")
        return {"ok": True, "user": _user_payload(user)}


app = create_app()


def run(host: str = "0.0.0.0", port: int = 8080) -> None:
    import uvicorn

    # Configure logging for the application
    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("portal").setLevel(getattr(logging, log_level, logging.INFO))

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    logger.info("Starting login portal on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level)
