from __future__ import annotations

from portal.auth.config import DEFAULT_PUBLIC_PATHS, load_auth_config
from portal.db.config import build_postgres_dsn, load_db_config


def test_defaults(monkeypatch) -> None:
    cfg = load_auth_config()
    assert cfg.session_ttl_seconds == 86400
    assert cfg.session_rolling is True
    assert cfg.auto_register_unknown_users is False
    assert cfg.reject_mode == "status"
    assert cfg.public_paths == DEFAULT_PUBLIC_PATHS
    assert cfg.landing_path == "/hello"
    assert cfg.cookie_secure is False


def test_auto_register_is_opt_in(monkeypatch) -> None:
    monkeypatch.setenv("AUTH_AUTO_REGISTER", "true")
    load_auth_config.cache_clear()
    assert load_auth_config().auto_register_unknown_users is True


def test_bcrypt_rounds_are_clamped(monkeypatch) -> None:
    monkeypatch.setenv("AUTH_BCRYPT_ROUNDS", "2")
    load_auth_config.cache_clear()
    assert load_auth_config().bcrypt_rounds == 4
    monkeypatch.setenv("AUTH_BCRYPT_ROUNDS", "not-a-number")
    load_auth_config.cache_clear()
    assert load_auth_config().bcrypt_rounds == 10


def test_zero_ttl_disables_expiry(monkeypatch) -> None:
    monkeypatch.setenv("AUTH_SESSION_TTL_SECONDS", "0")
    load_auth_config.cache_clear()
    cfg = load_auth_config()
    assert cfg.session_ttl_seconds == 0
    assert cfg.session_expires is False


def test_unknown_reject_mode_falls_back_to_status(monkeypatch) -> None:
    monkeypatch.setenv("AUTH_REJECT_MODE", "teapot")
    load_auth_config.cache_clear()
    assert load_auth_config().reject_mode == "status"


def test_redirect_mode_keeps_unauthorized_page_public(monkeypatch) -> None:
    monkeypatch.setenv("AUTH_REJECT_MODE", "redirect")
    monkeypatch.setenv("AUTH_PUBLIC_PATHS", "/,/login")
    load_auth_config.cache_clear()
    assert load_auth_config().public_paths == frozenset({"/", "/login", "/unauthorized"})


def test_postgres_dsn_from_parts(monkeypatch) -> None:
    monkeypatch.delenv("POSTGRES_DSN", raising=False)
    monkeypatch.setenv("POSTGRES_HOST", "db")
    monkeypatch.setenv("POSTGRES_DB", "portal")
    monkeypatch.setenv("POSTGRES_USER", "portal")
    monkeypatch.setenv("POSTGRES_PASSWORD", "p w'd")
    dsn = build_postgres_dsn(load_db_config())
    assert dsn is not None
    assert "host=db" in dsn
    assert "dbname=portal" in dsn
    assert "connect_timeout=2" in dsn


def test_postgres_dsn_missing_parts(monkeypatch) -> None:
    for name in ("POSTGRES_DSN", "POSTGRES_HOST", "POSTGRES_DB", "POSTGRES_USER", "POSTGRES_PASSWORD"):
        monkeypatch.delenv(name, raising=False)
    assert build_postgres_dsn(load_db_config()) is None


def test_pool_bounds(monkeypatch) -> None:
    monkeypatch.setenv("POSTGRES_POOL_MIN", "20")
    monkeypatch.setenv("POSTGRES_POOL_MAX", "5")
    cfg = load_db_config()
    assert cfg.pool_max_size == 5
    assert cfg.pool_min_size == 5


def test_prune_interval(monkeypatch) -> None:
    assert load_auth_config().session_prune_seconds == 900.0
    monkeypatch.setenv("AUTH_SESSION_PRUNE_SECONDS", "0")
    load_auth_config.cache_clear()
    assert load_auth_config().session_prune_seconds == 0.0
    monkeypatch.setenv("AUTH_SESSION_PRUNE_SECONDS", "soon")
    load_auth_config.cache_clear()
    assert load_auth_config().session_prune_seconds == 900.0


def test_public_landing_path_falls_back_to_hello(monkeypatch) -> None:
    monkeypatch.setenv("AUTH_LANDING_PATH", "/")
    load_auth_config.cache_clear()
    cfg = load_auth_config()
    assert cfg.landing_path == "/hello"
    assert "/" in cfg.public_paths


def test_landing_page_is_never_public(monkeypatch) -> None:
    monkeypatch.setenv("AUTH_PUBLIC_PATHS", "/,/login,/hello")
    load_auth_config.cache_clear()
    cfg = load_auth_config()
    assert cfg.landing_path == "/hello"
    assert "/hello" not in cfg.public_paths


def test_postgres_dsn_gets_connect_timeout(monkeypatch) -> None:
    monkeypatch.setenv("POSTGRES_DSN", "postgresql://portal:pw@db:5432/portal")
    monkeypatch.setenv("POSTGRES_CONNECT_TIMEOUT", "7")
    dsn = build_postgres_dsn(load_db_config())
    assert dsn is not None
    assert "connect_timeout=7" in dsn
    assert "host=db" in dsn


def test_postgres_dsn_keeps_its_own_connect_timeout(monkeypatch) -> None:
    monkeypatch.setenv("POSTGRES_DSN", "host=db dbname=portal connect_timeout=30")
    monkeypatch.setenv("POSTGRES_CONNECT_TIMEOUT", "7")
    assert build_postgres_dsn(load_db_config()) == "host=db dbname=portal connect_timeout=30"
