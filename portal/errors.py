from __future__ import annotations


class PortalError(Exception):
    """Base class for portal errors."""


class StorageFailure(PortalError):
    """The identity or session store could not complete an operation."""


class DuplicateRegistration(PortalError):
    """An insert lost the race against a concurrent registration of the same username."""

    def __init__(self, username: str):
        super().__init__(f"username already registered: {username!r}")
        self.username = username


class MigrationError(PortalError):
    """A recorded migration no longer matches its file on disk."""
