"""
Authentication configuration.

Everything is read from environment variables once per process (see
`load_auth_config`). Tests call `load_auth_config.cache_clear()` after
monkeypatching the environment.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import FrozenSet, Optional

logger = logging.getLogger(__name__)

REJECT_MODE_STATUS = "status"
REJECT_MODE_REDIRECT = "redirect"

UNAUTHORIZED_PATH = "/unauthorized"
DEFAULT_LANDING_PATH = "/hello"

DEFAULT_PRUNE_SECONDS = 900.0

# Login page, login submission, and the static bootstrap paths the pages load.
DEFAULT_PUBLIC_PATHS: FrozenSet[str] = frozenset(
    {
        "/",
        "/login",
        "/favicon.ico",
        "/healthz",
        UNAUTHORIZED_PATH,
    }
)


@dataclass(frozen=True)
class AuthConfig:
    # Session configuration
    session_secret: Optional[str]  # Required for cookie signing
    session_ttl_seconds: int  # 0 means sessions never expire
    session_rolling: bool  # Sliding expiry: every authenticated request renews the TTL
    session_prune_seconds: float  # Interval between expired-session sweeps; 0 disables
    session_create_table: bool
    cookie_secure: bool

    # Credential resolution
    auto_register_unknown_users: bool
    bcrypt_rounds: int

    # Session gate
    reject_mode: str  # status|redirect
    public_paths: FrozenSet[str]
    landing_path: str

    @property
    def session_expires(self) -> bool:
        return self.session_ttl_seconds > 0


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


def _parse_paths(value: str) -> FrozenSet[str]:
    # Exact strings only: no normalization beyond trimming whitespace.
    items = [x.strip() for x in (value or "").split(",")]
    return frozenset(x for x in items if x)


@lru_cache(maxsize=1)
def load_auth_config() -> AuthConfig:
    """Load authentication configuration from environment variables."""
    cookie_secure_env = (os.getenv("AUTH_COOKIE_SECURE", "") or "").strip().lower()
    cookie_secure = cookie_secure_env in ("1", "true", "yes", "on")

    ttl_raw = (os.getenv("AUTH_SESSION_TTL_SECONDS", "") or "86400").strip() or "86400"  # 1 day
    try:
        ttl = int(float(ttl_raw))
    except ValueError:
        ttl = 86400
    if ttl < 0:
        ttl = 0

    prune_raw = (os.getenv("AUTH_SESSION_PRUNE_SECONDS", "") or "").strip()
    try:
        prune_seconds = float(prune_raw) if prune_raw else DEFAULT_PRUNE_SECONDS
    except ValueError:
        prune_seconds = DEFAULT_PRUNE_SECONDS
    if prune_seconds < 0:
        prune_seconds = 0.0

    rounds_raw = (os.getenv("AUTH_BCRYPT_ROUNDS", "") or "10").strip() or "10"
    try:
        rounds = int(rounds_raw)
    except ValueError:
        rounds = 10
    # bcrypt accepts 4..31
    rounds = min(max(rounds, 4), 31)

    reject_mode = (os.getenv("AUTH_REJECT_MODE", "") or REJECT_MODE_STATUS).strip().lower()
    if reject_mode not in (REJECT_MODE_STATUS, REJECT_MODE_REDIRECT):
        reject_mode = REJECT_MODE_STATUS

    public_paths = _parse_paths(os.getenv("AUTH_PUBLIC_PATHS", "")) or DEFAULT_PUBLIC_PATHS
    if reject_mode == REJECT_MODE_REDIRECT and UNAUTHORIZED_PATH not in public_paths:
        # The redirect target itself must be reachable without a session.
        public_paths = public_paths | {UNAUTHORIZED_PATH}

    landing_path = (os.getenv("AUTH_LANDING_PATH", "") or DEFAULT_LANDING_PATH).strip() or DEFAULT_LANDING_PATH
    if landing_path in public_paths:
        # The landing page must always be session-checked.
        logger.warning(
            "AUTH_LANDING_PATH=%s is a public path; falling back to %s", landing_path, DEFAULT_LANDING_PATH
        )
        landing_path = DEFAULT_LANDING_PATH
        public_paths = public_paths - {DEFAULT_LANDING_PATH}

    return AuthConfig(
        session_secret=(os.getenv("AUTH_SESSION_SECRET", "") or "").strip() or None,
        session_ttl_seconds=ttl,
        session_rolling=_env_bool("AUTH_SESSION_ROLLING", True),
        session_prune_seconds=prune_seconds,
        session_create_table=_env_bool("AUTH_SESSION_CREATE_TABLE", True),
        cookie_secure=cookie_secure,
        auto_register_unknown_users=_env_bool("AUTH_AUTO_REGISTER", False),
        bcrypt_rounds=rounds,
        reject_mode=reject_mode,
        public_paths=public_paths,
        landing_path=landing_path,
    )
