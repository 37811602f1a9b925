"""Backup catalog and restore models.

Usage:
    from db_backup.backup.models import BackupRecord, RestoreOptions

    options = RestoreOptions(tables=["orders"], create_safety_backup=True)
    result = await engine.restore_from_backup(record.id, options)
    if not result.success:
        for err in result.errors:
            print(err.table, err.message)
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class VerificationStatus(str, Enum):
    """Outcome of the most recent integrity verification."""

    UNKNOWN = "unknown"
    PASSED = "passed"
    FAILED = "failed"


class RestoreState(str, Enum):
    """Restore state machine states."""

    REQUESTED = "requested"
    VERIFYING = "verifying"
    SAFETY_BACKUP_IN_PROGRESS = "safety_backup_in_progress"
    APPLYING = "applying"
    COMPLETED = "completed"
    FAILED = "failed"


class TableManifestEntry(BaseModel):
    """One table captured in a snapshot."""

    name: str
    row_count: int
    offset: int = 0     # byte offset of the segment marker (uncompressed)


class BackupRecord(BaseModel):
    """Catalog metadata for one snapshot file."""

    id: str
    description: str = ""
    created_at: datetime
    file_path: str
    compressed: bool = False
    table_manifest: list[TableManifestEntry] = Field(default_factory=list)
    verified: VerificationStatus = VerificationStatus.UNKNOWN
    size_bytes: int = 0
    checksum: str | None = None     # sha256 of the stored file

    @property
    def table_names(self) -> list[str]:
        """Table names in manifest order."""
        return [entry.name for entry in self.table_manifest]

    @property
    def total_rows(self) -> int:
        """Sum of captured row counts."""
        return sum(entry.row_count for entry in self.table_manifest)

    def manifest_entry(self, table: str) -> TableManifestEntry | None:
        """Find a manifest entry by table name."""
        for entry in self.table_manifest:
            if entry.name == table:
                return entry
        return None


class VerificationReport(BaseModel):
    """Result of verifying a snapshot file."""

    valid: bool
    backup_id: str | None = None
    table_manifest: list[TableManifestEntry] = Field(default_factory=list)
    first_error: str | None = None
    error_table: str | None = None
    error_offset: int | None = None


class RestoreOptions(BaseModel):
    """Options for a restore request.

    ``tables=None`` restores every table in the backup's manifest.
    ``verify_before=False`` is only honoured for backups that already
    passed verification.
    """

    tables: list[str] | None = None
    verify_before: bool = True
    verify_after: bool = True
    create_safety_backup: bool = False


class TableError(BaseModel):
    """A per-table failure recorded during restore."""

    table: str
    error_type: str     # apply | manifest_mismatch | corruption
    message: str


class RestoreResult(BaseModel):
    """Structured outcome of a restore.

    Attributes:
        success: ``True`` only if every requested table was restored and
            passed the post-restore count check.
        backup_id: Backup the restore was taken from.
        state: Final state (``completed`` or ``failed``).
        restored_tables: Tables whose transaction committed, with row counts.
        errors: Per-table errors.
        safety_backup_id: Id of the safety backup taken before applying.
    """

    success: bool = False
    backup_id: str
    state: RestoreState = RestoreState.REQUESTED
    restored_tables: dict[str, int] = Field(default_factory=dict)
    errors: list[TableError] = Field(default_factory=list)
    safety_backup_id: str | None = None


class RecoveryOptions(BaseModel):
    """Tables a backup can restore, read from the catalog only."""

    backup_id: str
    created_at: datetime
    description: str = ""
    verified: VerificationStatus = VerificationStatus.UNKNOWN
    available_tables: list[TableManifestEntry] = Field(default_factory=list)


class ScheduleFrequency(str, Enum):
    """How often scheduled backups run."""

    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"


class BackupSchedule(BaseModel):
    """Scheduled backup state, persisted as schedule.json."""

    frequency: ScheduleFrequency = ScheduleFrequency.DAILY
    enabled: bool = True
    last_run: datetime | None = None
    next_run: datetime


class BackupStatus(BaseModel):
    """Summary of the backup directory for operators."""

    directory: str
    total_backups: int = 0
    total_size_bytes: int = 0
    max_backups: int = 0
    latest: BackupRecord | None = None
    schedule: BackupSchedule | None = None
