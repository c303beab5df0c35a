"""
Pytest config.

Pins the repo root on sys.path so `import portal` works with a global `pytest`
entrypoint even when the project isn't installed, and provides in-memory
stores plus a TestClient wired to them.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

TEST_SECRET = "test-secret-key-for-testing-purposes-only"


@pytest.fixture(autouse=True)
def _auth_env(monkeypatch: pytest.MonkeyPatch):
    """
    Baseline auth environment for every test.

    bcrypt runs at the minimum cost so hashing doesn't dominate the suite.
    Tests that need other settings setenv and call `load_auth_config.cache_clear()`.
    """
    from portal.auth.config import load_auth_config

    for name in (
        "AUTH_AUTO_REGISTER",
        "AUTH_REJECT_MODE",
        "AUTH_PUBLIC_PATHS",
        "AUTH_SESSION_TTL_SECONDS",
        "AUTH_SESSION_ROLLING",
        "AUTH_COOKIE_SECURE",
        "AUTH_LANDING_PATH",
        "PORTAL_STORE",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("AUTH_SESSION_SECRET", TEST_SECRET)
    monkeypatch.setenv("AUTH_BCRYPT_ROUNDS", "4")
    load_auth_config.cache_clear()
    yield
    load_auth_config.cache_clear()


@pytest.fixture()
def auto_register(monkeypatch: pytest.MonkeyPatch) -> None:
    from portal.auth.config import load_auth_config

    monkeypatch.setenv("AUTH_AUTO_REGISTER", "1")
    load_auth_config.cache_clear()


@pytest.fixture()
def users():
    from portal.db.users import MemoryUserStore

    return MemoryUserStore()


@pytest.fixture()
def sessions():
    from portal.db.sessions import MemorySessionStore

    return MemorySessionStore(ttl_seconds=86400)


@pytest.fixture()
def client(users, sessions):
    from fastapi.testclient import TestClient

    from portal.api.server import create_app

    return TestClient(create_app(users=users, sessions=sessions))
