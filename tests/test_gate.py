from __future__ import annotations

import pytest

from portal.auth.config import load_auth_config
from portal.auth.gate import GateState, check_request, is_public_path, reject_response
from portal.auth.session import sign_session_id
from portal.db.sessions import MemorySessionStore
from portal.db.users import MemoryUserStore


async def _signed_in(users: MemoryUserStore, sessions: MemorySessionStore) -> str:
    user = await users.insert("alice", "$2b$04$unused")
    session = await sessions.create(user.id)
    return sign_session_id(load_auth_config(), session.sid)


def test_allow_list_is_exact_match() -> None:
    cfg = load_auth_config()
    assert is_public_path(cfg, "/")
    assert is_public_path(cfg, "/login")
    assert is_public_path(cfg, "/favicon.ico")
    assert not is_public_path(cfg, "/login/")
    assert not is_public_path(cfg, "/LOGIN")
    assert not is_public_path(cfg, "/hello")


def test_allow_list_from_env_does_not_match_sub_paths(monkeypatch) -> None:
    monkeypatch.setenv("AUTH_PUBLIC_PATHS", "/, /login, /static")
    load_auth_config.cache_clear()
    cfg = load_auth_config()
    assert is_public_path(cfg, "/static")
    assert not is_public_path(cfg, "/static/app.js")


@pytest.mark.asyncio
async def test_public_path_passes_without_session() -> None:
    d = await check_request(
        load_auth_config(), "/login", None, sessions=MemorySessionStore(ttl_seconds=60), users=MemoryUserStore()
    )
    assert d.state is GateState.ALLOWED
    assert d.passes
    assert d.user is None


@pytest.mark.asyncio
async def test_protected_path_without_session_is_rejected() -> None:
    d = await check_request(
        load_auth_config(), "/hello", None, sessions=MemorySessionStore(ttl_seconds=60), users=MemoryUserStore()
    )
    assert d.state is GateState.REJECTED
    assert not d.passes


@pytest.mark.asyncio
async def test_valid_session_passes_any_path() -> None:
    users, sessions = MemoryUserStore(), MemorySessionStore(ttl_seconds=60)
    cookie = await _signed_in(users, sessions)
    for path in ("/hello", "/anything/else", "/login"):
        d = await check_request(load_auth_config(), path, cookie, sessions=sessions, users=users)
        assert d.passes
    d = await check_request(load_auth_config(), "/hello", cookie, sessions=sessions, users=users)
    assert d.state is GateState.AUTHENTICATED
    assert d.user.username == "alice"


@pytest.mark.asyncio
async def test_tampered_cookie_is_rejected() -> None:
    users, sessions = MemoryUserStore(), MemorySessionStore(ttl_seconds=60)
    cookie = await _signed_in(users, sessions)
    d = await check_request(load_auth_config(), "/hello", cookie + "x", sessions=sessions, users=users)
    assert d.state is GateState.REJECTED


@pytest.mark.asyncio
async def test_destroyed_session_is_rejected() -> None:
    users, sessions = MemoryUserStore(), MemorySessionStore(ttl_seconds=60)
    cookie = await _signed_in(users, sessions)
    sid = next(iter(sessions._sessions))
    assert await sessions.destroy(sid)
    d = await check_request(load_auth_config(), "/hello", cookie, sessions=sessions, users=users)
    assert d.state is GateState.REJECTED


def test_reject_response_status_mode() -> None:
    resp = reject_response(load_auth_config())
    assert resp.status_code == 401
    assert resp.body == b"Unauthorized"
    assert "www-authenticate" not in {k.lower() for k in resp.headers.keys()}


def test_reject_response_redirect_mode(monkeypatch) -> None:
    monkeypatch.setenv("AUTH_REJECT_MODE", "redirect")
    load_auth_config.cache_clear()
    resp = reject_response(load_auth_config())
    assert resp.status_code == 302
    assert resp.headers["location"] == "/unauthorized"
