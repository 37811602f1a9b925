"""Operator facade over the backup engine.

``BackupManager`` wires the writer, catalog, verifier and restore engine to
one data store and the ``[backup]`` settings from db.toml, and applies the
retention policy after every new backup.

Usage:
    from db_backup.backup.manager import BackupManager
    from db_backup.config import BackupSettings

    manager = BackupManager(store, BackupSettings(directory="backups"))
    record = await manager.create_backup("before price import")
    options = manager.get_recovery_options(record.id)
    result = await manager.restore_specific_tables(record.id, ["products"])
"""

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from db_backup.backup.catalog import BackupCatalog
from db_backup.backup.identity import IdentitySource, SystemIdentity
from db_backup.backup.models import (
    BackupRecord,
    BackupSchedule,
    BackupStatus,
    RecoveryOptions,
    RestoreOptions,
    RestoreResult,
    ScheduleFrequency,
    VerificationReport,
)
from db_backup.backup.restore import RestoreEngine
from db_backup.backup.schedule import ScheduleFile
from db_backup.backup.verifier import IntegrityVerifier
from db_backup.backup.writer import SnapshotWriter
from db_backup.config.models import BackupSettings

if TYPE_CHECKING:
    from db_backup.adapters.base import DataStore

logger = logging.getLogger(__name__)


class BackupManager:
    """Backup and recovery operations for one data store.

    Args:
        store: Data store to back up and restore.
        settings: Backup directory, defaults and retention.
        identity: Source of backup ids and timestamps.
    """

    def __init__(
        self,
        store: "DataStore",
        settings: BackupSettings | None = None,
        identity: IdentitySource | None = None,
    ) -> None:
        self.settings = settings or BackupSettings()
        self.store = store
        self.identity = identity or SystemIdentity()
        self.catalog = BackupCatalog(self.settings.directory)
        self.schedules = ScheduleFile(self.settings.directory)
        self.verifier = IntegrityVerifier(self.catalog)
        self.writer = SnapshotWriter(store, self.catalog, self.identity)
        self.engine = RestoreEngine(store, self.catalog, self.verifier, self.writer)

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------

    async def create_backup(
        self,
        description: str = "",
        tables: Iterable[str] | None = None,
        *,
        compress: bool | None = None,
        verify: bool | None = None,
    ) -> BackupRecord:
        """Create a backup, then prune to ``max_backups``.

        ``compress`` and ``verify`` default to the configured settings.
        """
        record = await self.writer.write(
            tables,
            description=description,
            compress=self.settings.compress if compress is None else compress,
            verify=self.settings.verify if verify is None else verify,
        )
        self.prune_backups()
        return record

    def list_backups(self) -> list[BackupRecord]:
        """All backups, most recent first."""
        return self.catalog.list()

    def get_backup_info(self, backup_id: str) -> BackupRecord:
        return self.catalog.get(backup_id)

    def delete_backup(self, backup_id: str) -> BackupRecord:
        """Delete a backup's file and catalog entry together."""
        return self.catalog.remove(backup_id)

    def prune_backups(self, keep: int | None = None) -> list[str]:
        """Apply the retention policy.

        Args:
            keep: Number of backups to keep.  Defaults to
                ``settings.max_backups``; ``0`` there disables pruning.

        Returns:
            Ids of the removed backups.
        """
        if keep is None:
            if not self.settings.max_backups:
                return []
            keep = self.settings.max_backups
        return self.catalog.prune(keep)

    def status(self) -> BackupStatus:
        """Summary of the backup directory."""
        return read_status(self.settings)

    # ------------------------------------------------------------------
    # Scheduled backups
    # ------------------------------------------------------------------

    def schedule(self, frequency: ScheduleFrequency | str = "daily") -> BackupSchedule:
        """Enable scheduled backups; the first run is due after now."""
        return self.schedules.configure(frequency, self.identity.now())

    def scheduled_backup_due(self) -> bool:
        return self.schedules.is_due(self.identity.now())

    async def run_scheduled(self, force: bool = False) -> BackupRecord | None:
        """Create the scheduled backup if it is due.

        Args:
            force: Back up even if no run is due or no schedule exists.

        Returns:
            The new record, or None when nothing was due.
        """
        if not force and not self.scheduled_backup_due():
            logger.info("No scheduled backup due")
            return None
        description = "Manual backup via scheduler" if force else "Scheduled backup"
        try:
            record = await self.create_backup(description)
        except Exception as e:
            logger.error("Scheduled backup failed", extra={"error": str(e)})
            raise
        self.schedules.mark_run(self.identity.now())
        logger.info("Scheduled backup completed", extra={"backup_id": record.id})
        return record

    # ------------------------------------------------------------------
    # Verification and restore
    # ------------------------------------------------------------------

    def test_restore(self, backup_id: str) -> VerificationReport:
        return self.engine.test_restore(backup_id)

    def get_recovery_options(self, backup_id: str) -> RecoveryOptions:
        return self.engine.get_recovery_options(backup_id)

    async def restore(
        self,
        backup_id: str,
        options: RestoreOptions | None = None,
    ) -> RestoreResult:
        return await self.engine.restore_from_backup(backup_id, options)

    async def restore_specific_tables(
        self,
        backup_id: str,
        tables: list[str],
        options: RestoreOptions | None = None,
    ) -> RestoreResult:
        return await self.engine.restore_specific_tables(backup_id, tables, options)


def read_status(settings: BackupSettings) -> BackupStatus:
    """Summary of a backup directory from its catalog and schedule files.

    Touches no data store, so the CLI can call it without a database.
    """
    catalog = BackupCatalog(settings.directory)
    records = catalog.list()
    return BackupStatus(
        directory=str(catalog.directory),
        total_backups=len(records),
        total_size_bytes=sum(r.size_bytes for r in records),
        max_backups=settings.max_backups,
        latest=records[0] if records else None,
        schedule=ScheduleFile(settings.directory).load(),
    )
