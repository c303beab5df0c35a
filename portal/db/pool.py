"""
Process-scoped Postgres connection pool.

`Database` is created once at startup, opened explicitly, injected into the
stores, and closed at shutdown. Closing waits for borrowed connections to be
returned before tearing the pool down.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import psycopg
from psycopg_pool import AsyncConnectionPool

from portal.db.config import DbConfig, build_postgres_dsn
from portal.errors import StorageFailure

logger = logging.getLogger(__name__)

DEFAULT_CLOSE_TIMEOUT = 5.0


class Database:
    def __init__(
        self,
        conninfo: str,
        *,
        min_size: int = 1,
        max_size: int = 10,
        timeout: float = 2.0,
    ) -> None:
        self._conninfo = conninfo
        self._min_size = min_size
        self._max_size = max_size
        self._timeout = timeout
        self._pool: Optional[AsyncConnectionPool] = None

    @classmethod
    def from_config(cls, cfg: DbConfig) -> "Database":
        dsn = build_postgres_dsn(cfg)
        if not dsn:
            raise StorageFailure("Postgres not configured (set POSTGRES_DSN or POSTGRES_* env vars)")
        return cls(
            dsn,
            min_size=cfg.pool_min_size,
            max_size=cfg.pool_max_size,
            timeout=float(cfg.connect_timeout_seconds),
        )

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    async def open(self) -> None:
        if self._pool is not None:
            return
        pool = AsyncConnectionPool(
            self._conninfo,
            min_size=self._min_size,
            max_size=self._max_size,
            timeout=self._timeout,
            open=False,
        )
        try:
            await pool.open(wait=True, timeout=self._timeout)
        except psycopg.Error as e:
            await pool.close()
            raise StorageFailure("could not open database pool") from e
        self._pool = pool
        logger.info("Database pool open (min=%d max=%d)", self._min_size, self._max_size)

    async def close(self, timeout: float = DEFAULT_CLOSE_TIMEOUT) -> None:
        pool, self._pool = self._pool, None
        if pool is None:
            return
        await pool.close(timeout=timeout)
        logger.info("Database pool closed")

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[psycopg.AsyncConnection]:
        """
        Borrow a connection for a single logical operation.

        The pool commits on clean exit and rolls back if the body raises.
        """
        if self._pool is None:
            raise StorageFailure("database pool is not open")
        async with self._pool.connection() as conn:
            yield conn
