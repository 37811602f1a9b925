"""db-backup: Point-in-time logical backups for relational databases.

Captures tables into verifiable snapshot files, keeps a durable catalog of
them, and restores whole backups or a subset of tables, one transaction per
table.

Usage:
    from db_backup import BackupManager, BackupSettings, get_store
    from db_backup import RestoreOptions, InMemoryStore
"""

__version__ = "0.1.0"

# Adapters
from db_backup.adapters.base import DataStore
from db_backup.adapters.memory import InMemoryStore
from db_backup.adapters.postgres import AsyncPostgresStore

# Config
from db_backup.config.loader import load_db_config
from db_backup.config.models import BackupSettings, DatabaseConfig, DatabaseProfile

# Factory
from db_backup.factory import ProfileNotFoundError, get_store, resolve_url

# Backup engine
from db_backup.backup.catalog import BackupCatalog
from db_backup.backup.errors import (
    ApplyError,
    BackupError,
    BackupNotFoundError,
    CaptureError,
    CatalogError,
    CorruptionError,
    ManifestMismatchError,
    NotFoundError,
    TableNotFoundError,
)
from db_backup.backup.manager import BackupManager
from db_backup.backup.models import (
    BackupRecord,
    RestoreOptions,
    RestoreResult,
    VerificationReport,
    VerificationStatus,
)
from db_backup.backup.restore import RestoreEngine
from db_backup.backup.verifier import IntegrityVerifier
from db_backup.backup.writer import SnapshotWriter

__all__ = [
    # Adapters
    "DataStore",
    "InMemoryStore",
    "AsyncPostgresStore",
    # Config
    "load_db_config",
    "BackupSettings",
    "DatabaseProfile",
    "DatabaseConfig",
    # Factory
    "get_store",
    "ProfileNotFoundError",
    "resolve_url",
    # Engine
    "BackupManager",
    "BackupCatalog",
    "SnapshotWriter",
    "IntegrityVerifier",
    "RestoreEngine",
    # Models
    "BackupRecord",
    "RestoreOptions",
    "RestoreResult",
    "VerificationReport",
    "VerificationStatus",
    # Errors
    "BackupError",
    "CaptureError",
    "CorruptionError",
    "ApplyError",
    "ManifestMismatchError",
    "CatalogError",
    "NotFoundError",
    "BackupNotFoundError",
    "TableNotFoundError",
]
