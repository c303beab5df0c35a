"""
Identity store: users(id, username unique, password).

Two backends share one async interface:
- `PostgresUserStore` for deployments.
- `MemoryUserStore` for local development and tests (state is per process).
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol

import psycopg
from psycopg import errors as pg_errors

from portal.auth.models import User
from portal.db.pool import Database
from portal.errors import DuplicateRegistration, StorageFailure

logger = logging.getLogger(__name__)


class UserStore(Protocol):
    async def find_by_username(self, username: str) -> Optional[User]: ...

    async def find_by_id(self, user_id: int) -> Optional[User]: ...

    async def insert(self, username: str, password_hash: str) -> User:
        """Raises DuplicateRegistration if the username is taken."""
        ...


_USER_COLUMNS = "id, username, password, created_at"


def _row_to_user(row) -> User:
    user_id, username, password_hash, created_at = row
    return User(id=int(user_id), username=str(username), password_hash=str(password_hash), created_at=created_at)


class PostgresUserStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def find_by_username(self, username: str) -> Optional[User]:
        try:
            async with self._db.connection() as conn:
                cur = await conn.execute(
                    f"SELECT {_USER_COLUMNS} FROM users WHERE username = %s",
                    (username,),
                )
                row = await cur.fetchone()
        except psycopg.Error as e:
            raise StorageFailure("user lookup failed") from e
        return _row_to_user(row) if row else None

    async def find_by_id(self, user_id: int) -> Optional[User]:
        try:
            async with self._db.connection() as conn:
                cur = await conn.execute(
                    f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s",
                    (user_id,),
                )
                row = await cur.fetchone()
        except psycopg.Error as e:
            raise StorageFailure("user lookup failed") from e
        return _row_to_user(row) if row else None

    async def insert(self, username: str, password_hash: str) -> User:
        try:
            async with self._db.connection() as conn:
                cur = await conn.execute(
                    f"INSERT INTO users (username, password) VALUES (%s, %s) RETURNING {_USER_COLUMNS}",
                    (username, password_hash),
                )
                row = await cur.fetchone()
        except pg_errors.UniqueViolation as e:
            raise DuplicateRegistration(username) from e
        except psycopg.Error as e:
            raise StorageFailure("user insert failed") from e
        if not row:
            raise StorageFailure("user insert returned no row")
        return _row_to_user(row)


class MemoryUserStore:
    """In-process user store with the same uniqueness guarantee as the users table."""

    def __init__(self) -> None:
        self._by_username: Dict[str, User] = {}
        self._by_id: Dict[int, User] = {}
        self._ids = itertools.count(1)

    async def find_by_username(self, username: str) -> Optional[User]:
        # Yield like a real round-trip so concurrent callers interleave.
        await asyncio.sleep(0)
        return self._by_username.get(username)

    async def find_by_id(self, user_id: int) -> Optional[User]:
        await asyncio.sleep(0)
        return self._by_id.get(user_id)

    async def insert(self, username: str, password_hash: str) -> User:
        await asyncio.sleep(0)
        if username in self._by_username:
            raise DuplicateRegistration(username)
        user = User(
            id=next(self._ids),
            username=username,
            password_hash=password_hash,
            created_at=datetime.now(timezone.utc),
        )
        self._by_username[username] = user
        self._by_id[user.id] = user
        return user

    def count(self) -> int:
        return len(self._by_id)
