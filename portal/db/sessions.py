"""
Session store: sid -> authenticated user id, with optional expiry.

The cookie only carries the signed sid; the binding itself lives here, so
logout is a real server-side destroy rather than a cookie overwrite.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Protocol

import psycopg

from portal.auth.models import Session
from portal.auth.util import random_token
from portal.db.pool import Database
from portal.errors import StorageFailure

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

SESSIONS_DDL = """
CREATE TABLE IF NOT EXISTS sessions (
  sid text PRIMARY KEY,
  user_id bigint NOT NULL REFERENCES users(id) ON DELETE CASCADE,
  created_at timestamptz NOT NULL DEFAULT now(),
  expires_at timestamptz NULL
);
CREATE INDEX IF NOT EXISTS sessions_expires_at_idx ON sessions (expires_at);
"""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore(Protocol):
    async def create_table_if_missing(self) -> None: ...

    async def create(self, user_id: int) -> Session: ...

    async def get(self, sid: str) -> Optional[Session]:
        """Return the session if it exists and has not expired."""
        ...

    async def touch(self, sid: str) -> None:
        """Push expiry forward by the TTL (sliding sessions)."""
        ...

    async def destroy(self, sid: str) -> bool: ...

    async def prune_expired(self) -> int: ...


class _ExpiryMixin:
    _ttl_seconds: int
    _clock: Clock

    def _expires_at(self, now: datetime) -> Optional[datetime]:
        if self._ttl_seconds <= 0:
            return None
        return now + timedelta(seconds=self._ttl_seconds)


class PostgresSessionStore(_ExpiryMixin):
    def __init__(self, db: Database, *, ttl_seconds: int, clock: Clock = utcnow) -> None:
        self._db = db
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    async def create_table_if_missing(self) -> None:
        try:
            async with self._db.connection() as conn:
                await conn.execute(SESSIONS_DDL)
        except psycopg.Error as e:
            raise StorageFailure("session table bootstrap failed") from e

    async def create(self, user_id: int) -> Session:
        now = self._clock()
        session = Session(sid=random_token(32), user_id=user_id, created_at=now, expires_at=self._expires_at(now))
        try:
            async with self._db.connection() as conn:
                await conn.execute(
                    "INSERT INTO sessions (sid, user_id, created_at, expires_at) VALUES (%s, %s, %s, %s)",
                    (session.sid, session.user_id, session.created_at, session.expires_at),
                )
        except psycopg.Error as e:
            raise StorageFailure("session create failed") from e
        return session

    async def get(self, sid: str) -> Optional[Session]:
        try:
            async with self._db.connection() as conn:
                cur = await conn.execute(
                    """
                    SELECT sid, user_id, created_at, expires_at
                    FROM sessions
                    WHERE sid = %s AND (expires_at IS NULL OR expires_at > %s)
                    """,
                    (sid, self._clock()),
                )
                row = await cur.fetchone()
        except psycopg.Error as e:
            raise StorageFailure("session lookup failed") from e
        if not row:
            return None
        return Session(sid=str(row[0]), user_id=int(row[1]), created_at=row[2], expires_at=row[3])

    async def touch(self, sid: str) -> None:
        if self._ttl_seconds <= 0:
            return
        try:
            async with self._db.connection() as conn:
                await conn.execute(
                    "UPDATE sessions SET expires_at = %s WHERE sid = %s",
                    (self._expires_at(self._clock()), sid),
                )
        except psycopg.Error as e:
            raise StorageFailure("session touch failed") from e

    async def destroy(self, sid: str) -> bool:
        try:
            async with self._db.connection() as conn:
                cur = await conn.execute("DELETE FROM sessions WHERE sid = %s", (sid,))
                deleted = cur.rowcount
        except psycopg.Error as e:
            raise StorageFailure("session destroy failed") from e
        return bool(deleted)

    async def prune_expired(self) -> int:
        try:
            async with self._db.connection() as conn:
                cur = await conn.execute(
                    "DELETE FROM sessions WHERE expires_at IS NOT NULL AND expires_at <= %s",
                    (self._clock(),),
                )
                n = cur.rowcount
        except psycopg.Error as e:
            raise StorageFailure("session prune failed") from e
        if n:
            logger.info("Pruned %d expired session(s)", n)
        return max(n, 0)


class MemorySessionStore(_ExpiryMixin):
    def __init__(self, *, ttl_seconds: int, clock: Clock = utcnow) -> None:
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: Dict[str, Session] = {}

    async def create_table_if_missing(self) -> None:
        return None

    async def create(self, user_id: int) -> Session:
        await asyncio.sleep(0)
        now = self._clock()
        session = Session(sid=random_token(32), user_id=user_id, created_at=now, expires_at=self._expires_at(now))
        self._sessions[session.sid] = session
        return session

    async def get(self, sid: str) -> Optional[Session]:
        await asyncio.sleep(0)
        session = self._sessions.get(sid)
        if session is None or session.is_expired(self._clock()):
            return None
        return session

    async def touch(self, sid: str) -> None:
        session = self._sessions.get(sid)
        if session is None or self._ttl_seconds <= 0:
            return
        self._sessions[sid] = Session(
            sid=session.sid,
            user_id=session.user_id,
            created_at=session.created_at,
            expires_at=self._expires_at(self._clock()),
        )

    async def destroy(self, sid: str) -> bool:
        await asyncio.sleep(0)
        return self._sessions.pop(sid, None) is not None

    async def prune_expired(self) -> int:
        now = self._clock()
        expired = [sid for sid, s in self._sessions.items() if s.is_expired(now)]
        for sid in expired:
            del self._sessions[sid]
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)


async def prune_sessions_periodically(store: SessionStore, interval_seconds: float) -> None:
    """
    Drop expired sessions every `interval_seconds` until cancelled.

    A failed pass is logged and retried on the next tick; the gate already
    ignores expired rows, so pruning only bounds storage growth.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await store.prune_expired()
        except StorageFailure:
            logger.warning("Session prune failed; retrying in %.0fs", interval_seconds, exc_info=True)
