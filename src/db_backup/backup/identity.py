"""Backup naming and clock source.

The writer asks an ``IdentitySource`` for the id and creation timestamp of
every new backup, so tests can pin both.

Usage:
    from db_backup.backup.identity import SystemIdentity

    identity = SystemIdentity()
    identity.new_id()   # 'backup_20260115_093000_3f9a1c2b7d4e'
"""

import secrets
from datetime import datetime, timezone
from typing import Protocol


class IdentitySource(Protocol):
    """Supplies collision-free backup ids and creation timestamps."""

    def new_id(self) -> str:
        """Return a new, never before issued backup id."""
        ...

    def now(self) -> datetime:
        """Return the current (timezone-aware) time."""
        ...


class SystemIdentity:
    """Time-based ids with a random suffix, UTC wall clock."""

    def __init__(self, prefix: str = "backup") -> None:
        self._prefix = prefix

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def new_id(self) -> str:
        stamp = self.now().strftime("%Y%m%d_%H%M%S")
        return f"{self._prefix}_{stamp}_{secrets.token_hex(6)}"
