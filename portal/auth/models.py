from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class User:
    """User row owned by the identity store."""

    id: int
    username: str
    password_hash: str
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class AuthUser:
    """Authenticated identity attached to a request (no credential material)."""

    id: int
    username: str

    @classmethod
    def from_user(cls, user: User) -> "AuthUser":
        return cls(id=user.id, username=user.username)


@dataclass(frozen=True)
class Session:
    """Server-side session row: a random sid bound to a user id."""

    sid: str
    user_id: int
    created_at: datetime
    expires_at: Optional[datetime]  # None = no expiry

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class RejectReason(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    DUPLICATE_REGISTRATION = "duplicate_registration"


@dataclass(frozen=True)
class Resolution:
    """Outcome of a credential resolution that did not fail on storage."""

    user: Optional[AuthUser] = None
    reason: Optional[RejectReason] = None
    registered: bool = False  # True if this call created the user

    @property
    def ok(self) -> bool:
        return self.user is not None

    @classmethod
    def success(cls, user: User, *, registered: bool = False) -> "Resolution":
        return cls(user=AuthUser.from_user(user), registered=registered)

    @classmethod
    def rejected(cls, reason: RejectReason) -> "Resolution":
        return cls(reason=reason)
