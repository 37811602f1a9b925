"""Backup engine: snapshot writer, catalog, integrity verifier, restore.

Usage:
    from db_backup.backup import BackupCatalog, SnapshotWriter
    from db_backup.backup import IntegrityVerifier, RestoreEngine

    catalog = BackupCatalog("backups")
    writer = SnapshotWriter(store, catalog)
    record = await writer.write(compress=True, verify=True)
"""

from db_backup.backup.catalog import BackupCatalog
from db_backup.backup.manager import BackupManager
from db_backup.backup.models import (
    BackupRecord,
    BackupSchedule,
    BackupStatus,
    RecoveryOptions,
    RestoreOptions,
    RestoreResult,
    RestoreState,
    ScheduleFrequency,
    TableError,
    TableManifestEntry,
    VerificationReport,
    VerificationStatus,
)
from db_backup.backup.restore import RestoreEngine
from db_backup.backup.schedule import ScheduleFile
from db_backup.backup.verifier import IntegrityVerifier
from db_backup.backup.writer import SnapshotWriter

__all__ = [
    "BackupCatalog",
    "BackupManager",
    "SnapshotWriter",
    "IntegrityVerifier",
    "RestoreEngine",
    "ScheduleFile",
    "BackupRecord",
    "BackupSchedule",
    "BackupStatus",
    "RecoveryOptions",
    "RestoreOptions",
    "RestoreResult",
    "RestoreState",
    "ScheduleFrequency",
    "TableError",
    "TableManifestEntry",
    "VerificationReport",
    "VerificationStatus",
]
