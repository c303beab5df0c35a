from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from psycopg.conninfo import conninfo_to_dict, make_conninfo

STORE_POSTGRES = "postgres"
STORE_MEMORY = "memory"


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class DbConfig:
    store: str  # postgres|memory
    db_auto_migrate: bool

    # Postgres connection (either dsn or parts)
    postgres_dsn: Optional[str]
    postgres_host: Optional[str]
    postgres_port: int
    postgres_db: Optional[str]
    postgres_user: Optional[str]
    postgres_password: Optional[str]

    # Pool
    pool_min_size: int
    pool_max_size: int
    connect_timeout_seconds: int


def load_db_config() -> DbConfig:
    store = (os.getenv("PORTAL_STORE") or STORE_POSTGRES).strip().lower()
    if store not in (STORE_POSTGRES, STORE_MEMORY):
        store = STORE_POSTGRES

    pool_min = max(_env_int("POSTGRES_POOL_MIN", 1), 0)
    pool_max = max(_env_int("POSTGRES_POOL_MAX", 10), 1)
    if pool_min > pool_max:
        pool_min = pool_max

    return DbConfig(
        store=store,
        db_auto_migrate=_env_bool("DB_AUTO_MIGRATE", False),
        postgres_dsn=(os.getenv("POSTGRES_DSN") or "").strip() or None,
        postgres_host=(os.getenv("POSTGRES_HOST") or "").strip() or None,
        postgres_port=_env_int("POSTGRES_PORT", 5432),
        postgres_db=(os.getenv("POSTGRES_DB") or "").strip() or None,
        postgres_user=(os.getenv("POSTGRES_USER") or "").strip() or None,
        postgres_password=(os.getenv("POSTGRES_PASSWORD") or "").strip() or None,
        pool_min_size=pool_min,
        pool_max_size=pool_max,
        connect_timeout_seconds=max(_env_int("POSTGRES_CONNECT_TIMEOUT", 2), 1),
    )


def build_postgres_dsn(cfg: DbConfig) -> Optional[str]:
    if cfg.postgres_dsn:
        # An explicit connect_timeout in the DSN wins over POSTGRES_CONNECT_TIMEOUT.
        if "connect_timeout" in conninfo_to_dict(cfg.postgres_dsn):
            return cfg.postgres_dsn
        return make_conninfo(cfg.postgres_dsn, connect_timeout=cfg.connect_timeout_seconds)
    if not (cfg.postgres_host and cfg.postgres_db and cfg.postgres_user and cfg.postgres_password):
        return None
    # make_conninfo quotes/escapes special characters (spaces, quotes) in passwords.
    return make_conninfo(
        host=cfg.postgres_host,
        port=cfg.postgres_port,
        dbname=cfg.postgres_db,
        user=cfg.postgres_user,
        password=cfg.postgres_password,
        connect_timeout=cfg.connect_timeout_seconds,
    )
