"""Error types raised by the backup and restore engine.

Hierarchy:
    BackupError
    ├── CaptureError           -- data store unreadable or snapshot write failed
    ├── CorruptionError        -- snapshot file structurally invalid
    ├── ApplyError             -- a statement failed while restoring one table
    ├── ManifestMismatchError  -- post-restore row count differs from manifest
    ├── CatalogError           -- catalog index could not be updated
    └── NotFoundError
        ├── BackupNotFoundError
        └── TableNotFoundError

``CaptureError``, ``CorruptionError`` and ``NotFoundError`` stop the whole
operation.  ``ApplyError`` and ``ManifestMismatchError`` are scoped to a
single table and end up in ``RestoreResult.errors``.
"""

from typing import Any


class BackupError(Exception):
    """Base exception for all backup engine errors.

    Attributes:
        message: Human-readable error message.
        details: Extra context for logging and reporting.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class CaptureError(BackupError):
    """Raised when a snapshot cannot be captured or written.

    The writer removes its temporary file and registers nothing.
    """

    def __init__(self, message: str, table: str | None = None) -> None:
        super().__init__(message, details={"table": table})
        self.table = table


class CorruptionError(BackupError):
    """Raised when a snapshot file fails structural verification.

    Attributes:
        table: Table whose segment contained the problem (``None`` when the
            problem is outside any segment, e.g. a broken header).
        offset: Approximate byte offset (uncompressed stream) of the
            offending line.
    """

    def __init__(
        self,
        message: str,
        table: str | None = None,
        offset: int | None = None,
    ) -> None:
        super().__init__(message, details={"table": table, "offset": offset})
        self.table = table
        self.offset = offset

    def __str__(self) -> str:
        location = []
        if self.table is not None:
            location.append(f"table '{self.table}'")
        if self.offset is not None:
            location.append(f"offset {self.offset}")
        if location:
            return f"{self.message} ({', '.join(location)})"
        return self.message


class ApplyError(BackupError):
    """Raised when restoring a table fails; that table was rolled back."""

    def __init__(self, message: str, table: str) -> None:
        super().__init__(message, details={"table": table})
        self.table = table


class ManifestMismatchError(BackupError):
    """Raised when a restored table's row count disagrees with the manifest."""

    def __init__(self, table: str, expected: int, actual: int) -> None:
        super().__init__(
            f"{table}: expected {expected} rows after restore, found {actual}",
            details={"table": table, "expected": expected, "actual": actual},
        )
        self.table = table
        self.expected = expected
        self.actual = actual


class CatalogError(BackupError):
    """Raised when the catalog cannot be mutated consistently."""

    pass


class NotFoundError(BackupError):
    """Raised when a requested backup or table does not exist."""

    pass


class BackupNotFoundError(NotFoundError):
    """Raised for an unknown backup id."""

    def __init__(self, backup_id: str) -> None:
        super().__init__(
            f"Backup not found: {backup_id}", details={"backup_id": backup_id}
        )
        self.backup_id = backup_id


class TableNotFoundError(NotFoundError):
    """Raised when requested table names are unknown."""

    def __init__(self, tables: list[str], where: str = "database") -> None:
        names = ", ".join(tables)
        super().__init__(
            f"Unknown table(s) in {where}: {names}",
            details={"tables": tables, "where": where},
        )
        self.tables = tables
