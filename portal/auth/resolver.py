"""
Credential resolution: verify a known user, or register an unknown one.

`CredentialResolver.resolve` has three distinct outcomes:
- `Resolution` with a user (login or registration succeeded)
- `Resolution` with a `RejectReason` (credentials refused)
- `StorageFailure` raised (the store could not answer)

Registration of unknown usernames only happens when the resolver is built with
`auto_register_unknown_users=True`. Otherwise an unknown username is rejected
exactly like a wrong password.
"""

from __future__ import annotations

import asyncio
import logging

from portal.auth.models import RejectReason, Resolution, User
from portal.auth.passwords import DEFAULT_ROUNDS, hash_password, verify_password
from portal.db.users import UserStore
from portal.errors import DuplicateRegistration

logger = logging.getLogger(__name__)


class CredentialResolver:
    def __init__(
        self,
        users: UserStore,
        *,
        auto_register_unknown_users: bool = False,
        bcrypt_rounds: int = DEFAULT_ROUNDS,
    ) -> None:
        self._users = users
        self._auto_register = auto_register_unknown_users
        self._rounds = bcrypt_rounds

    @property
    def auto_register_unknown_users(self) -> bool:
        return self._auto_register

    async def resolve(self, username: str, password: str) -> Resolution:
        if not username or not password:
            return Resolution.rejected(RejectReason.INVALID_CREDENTIALS)

        user = await self._users.find_by_username(username)
        if user is not None:
            return await self._verify(user, password)

        if not self._auto_register:
            logger.info("Login rejected for unknown username %r", username)
            return Resolution.rejected(RejectReason.INVALID_CREDENTIALS)

        return await self._register(username, password)

    async def _verify(self, user: User, password: str) -> Resolution:
        # bcrypt is CPU-bound; keep it off the event loop.
        valid = await asyncio.to_thread(verify_password, password, user.password_hash)
        if not valid:
            logger.info("Login rejected for %r: password mismatch", user.username)
            return Resolution.rejected(RejectReason.INVALID_CREDENTIALS)
        logger.info("Login accepted for %r (id=%s)", user.username, user.id)
        return Resolution.success(user)

    async def _register(self, username: str, password: str) -> Resolution:
        password_hash = await asyncio.to_thread(hash_password, password, rounds=self._rounds)
        try:
            user = await self._users.insert(username, password_hash)
        except DuplicateRegistration:
            # Lost a race with a concurrent first login for the same name:
            # treat this attempt as a login against the winning row.
            logger.info("Concurrent registration for %r; retrying as login", username)
            winner = await self._users.find_by_username(username)
            if winner is None:
                return Resolution.rejected(RejectReason.DUPLICATE_REGISTRATION)
            return await self._verify(winner, password)
        logger.info("Registered new user %r (id=%s)", user.username, user.id)
        return Resolution.success(user, registered=True)
