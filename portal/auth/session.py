"""
Cookie helpers.

The session cookie holds the server-side session id signed with itsdangerous,
so a tampered or forged cookie never reaches the session store. The flash
cookie carries one short, signed, user-facing message across a redirect.
"""

from __future__ import annotations

from typing import Optional

from itsdangerous import BadSignature, BadTimeSignature, URLSafeTimedSerializer

from portal.auth.config import AuthConfig

SESSION_SALT = "portal-session-v1"
FLASH_SALT = "portal-flash-v1"
FLASH_COOKIE_NAME = "portal_flash"
FLASH_TTL_SECONDS = 60


def session_cookie_name(cfg: AuthConfig) -> str:
    # `__Host-` requires Secure + Path=/ + no Domain; browsers may reject it on HTTP.
    return "__Host-portal_session" if cfg.cookie_secure else "portal_session"


def _serializer(cfg: AuthConfig, salt: str) -> Optional[URLSafeTimedSerializer]:
    if not cfg.session_secret:
        return None
    return URLSafeTimedSerializer(secret_key=cfg.session_secret, salt=salt)


def sign_session_id(cfg: AuthConfig, sid: str) -> Optional[str]:
    s = _serializer(cfg, SESSION_SALT)
    if s is None:
        return None
    return s.dumps(sid)


def unsign_session_id(cfg: AuthConfig, value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    s = _serializer(cfg, SESSION_SALT)
    if s is None:
        return None
    # Expiry is enforced by the session store (it may slide); the signature only proves origin.
    try:
        sid = s.loads(value)
    except (BadSignature, BadTimeSignature):
        return None
    if not isinstance(sid, str) or not sid:
        return None
    return sid


def session_cookie_kwargs(cfg: AuthConfig, value: str) -> dict:
    kwargs = {
        "key": session_cookie_name(cfg),
        "value": value,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }
    if cfg.session_expires:
        kwargs["max_age"] = cfg.session_ttl_seconds
    return kwargs


def clear_session_cookie_kwargs(cfg: AuthConfig) -> dict:
    return {
        "key": session_cookie_name(cfg),
        "value": "",
        "max_age": 0,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }


def encode_flash(cfg: AuthConfig, message: str) -> Optional[str]:
    s = _serializer(cfg, FLASH_SALT)
    if s is None:
        return None
    return s.dumps(message)


def decode_flash(cfg: AuthConfig, value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    s = _serializer(cfg, FLASH_SALT)
    if s is None:
        return None
    try:
        msg = s.loads(value, max_age=FLASH_TTL_SECONDS)
    except (BadSignature, BadTimeSignature):
        return None
    return str(msg) if msg else None


def flash_cookie_kwargs(cfg: AuthConfig, value: str) -> dict:
    return {
        "key": FLASH_COOKIE_NAME,
        "value": value,
        "max_age": FLASH_TTL_SECONDS,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }


def clear_flash_cookie_kwargs(cfg: AuthConfig) -> dict:
    return {**flash_cookie_kwargs(cfg, ""), "max_age": 0}
