"""
Session gate: decides, once per request, whether a request may proceed.

    UNCHECKED -> ALLOWED        path is in the public allow-list
              -> AUTHENTICATED  a valid session resolves to a known user
              -> REJECTED       no cookie, bad signature, unknown/expired session,
                                or the session's user no longer exists

The allow-list is an exact-match set. `/static/app.js` is protected even when
`/static` is listed; sub-paths must be listed individually.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from fastapi.responses import PlainTextResponse, RedirectResponse, Response

from portal.auth.config import REJECT_MODE_REDIRECT, UNAUTHORIZED_PATH, AuthConfig
from portal.auth.models import AuthUser, Session
from portal.auth.session import unsign_session_id
from portal.db.sessions import SessionStore
from portal.db.users import UserStore

logger = logging.getLogger(__name__)


class GateState(str, Enum):
    UNCHECKED = "unchecked"
    ALLOWED = "allowed"
    AUTHENTICATED = "authenticated"
    REJECTED = "rejected"


@dataclass(frozen=True)
class GateDecision:
    state: GateState
    user: Optional[AuthUser] = None
    session: Optional[Session] = None

    @property
    def passes(self) -> bool:
        return self.state in (GateState.ALLOWED, GateState.AUTHENTICATED)


def is_public_path(cfg: AuthConfig, path: str) -> bool:
    return path in cfg.public_paths


async def authenticate_cookie(
    cfg: AuthConfig,
    cookie_value: Optional[str],
    *,
    sessions: SessionStore,
    users: UserStore,
) -> Optional[Tuple[AuthUser, Session]]:
    """
    Resolve a session cookie to the authenticated user.

    Returns None for any invalid/missing session. Raises StorageFailure if a
    store cannot be reached.
    """
    sid = unsign_session_id(cfg, cookie_value)
    if sid is None:
        return None
    session = await sessions.get(sid)
    if session is None:
        return None
    user = await users.find_by_id(session.user_id)
    if user is None:
        return None
    return AuthUser.from_user(user), session


async def check_request(
    cfg: AuthConfig,
    path: str,
    cookie_value: Optional[str],
    *,
    sessions: SessionStore,
    users: UserStore,
) -> GateDecision:
    if is_public_path(cfg, path):
        return GateDecision(state=GateState.ALLOWED)

    found = await authenticate_cookie(cfg, cookie_value, sessions=sessions, users=users)
    if found is None:
        return GateDecision(state=GateState.REJECTED)

    user, session = found
    if cfg.session_rolling:
        await sessions.touch(session.sid)
    return GateDecision(state=GateState.AUTHENTICATED, user=user, session=session)


def reject_response(cfg: AuthConfig) -> Response:
    if cfg.reject_mode == REJECT_MODE_REDIRECT:
        return RedirectResponse(url=UNAUTHORIZED_PATH, status_code=302)
    # No `WWW-Authenticate`: browsers would pop a basic-auth dialog over the login page.
    return PlainTextResponse("Unauthorized", status_code=401)
