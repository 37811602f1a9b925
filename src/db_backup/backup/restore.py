"""Restore engine.

Reconstructs database state from a cataloged snapshot, either for every
table in the backup or for a chosen subset.

A restore moves through these states::

    requested -> verifying -> [safety_backup_in_progress] -> applying
              -> completed | failed

Nothing is written to the store before ``applying``.  Each table is then
restored in its own transaction (``ClearTable`` followed by the table's row
statements), so a failing table is rolled back on its own and the remaining
tables are still attempted.  Tables outside the requested subset are never
read, counted or written.

Usage:
    from db_backup.backup.restore import RestoreEngine

    engine = RestoreEngine(store, catalog, verifier, writer)
    result = await engine.restore_specific_tables(backup_id, ["orders"])
    if not result.success:
        for err in result.errors:
            print(err.table, err.error_type, err.message)
"""

import logging
from typing import TYPE_CHECKING

from db_backup.backup.catalog import BackupCatalog
from db_backup.backup.errors import (
    ApplyError,
    CaptureError,
    CorruptionError,
    ManifestMismatchError,
    TableNotFoundError,
)
from db_backup.backup.models import (
    BackupRecord,
    RecoveryOptions,
    RestoreOptions,
    RestoreResult,
    RestoreState,
    TableError,
    TableManifestEntry,
    VerificationReport,
    VerificationStatus,
)
from db_backup.backup.snapshot import ClearTable, read_segment
from db_backup.backup.verifier import IntegrityVerifier
from db_backup.backup.writer import SnapshotWriter

if TYPE_CHECKING:
    from db_backup.adapters.base import DataStore

logger = logging.getLogger(__name__)


class RestoreEngine:
    """Applies cataloged snapshots to a data store.

    Args:
        store: Data store to restore into.
        catalog: Catalog holding the backup records.
        verifier: Verifier run before any mutation.
        writer: Writer used for safety backups.
    """

    def __init__(
        self,
        store: "DataStore",
        catalog: BackupCatalog,
        verifier: IntegrityVerifier,
        writer: SnapshotWriter,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.verifier = verifier
        self.writer = writer

    # ------------------------------------------------------------------
    # Read-only operations
    # ------------------------------------------------------------------

    def get_recovery_options(self, backup_id: str) -> RecoveryOptions:
        """List what a backup can restore, from the catalog alone.

        Raises:
            BackupNotFoundError: If the id is unknown.
        """
        record = self.catalog.get(backup_id)
        return RecoveryOptions(
            backup_id=record.id,
            created_at=record.created_at,
            description=record.description,
            verified=record.verified,
            available_tables=list(record.table_manifest),
        )

    def test_restore(self, backup_id: str) -> VerificationReport:
        """Check that a backup could be restored, without touching the store.

        Runs full verification and records the outcome on the catalog.
        """
        return self.verifier.verify(backup_id)

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def restore_specific_tables(
        self,
        backup_id: str,
        tables: list[str],
        options: RestoreOptions | None = None,
    ) -> RestoreResult:
        """Restore only ``tables`` from a backup.

        ``options.tables`` is ignored in favour of ``tables``.
        """
        options = (options or RestoreOptions()).model_copy(update={"tables": list(tables)})
        return await self.restore_from_backup(backup_id, options)

    async def restore_from_backup(
        self,
        backup_id: str,
        options: RestoreOptions | None = None,
    ) -> RestoreResult:
        """Restore tables from a backup.

        Args:
            backup_id: Backup to restore from.
            options: Table subset and verification switches.  Defaults
                restore every table with verification before and after.

        Returns:
            ``RestoreResult`` with per-table outcomes.  Apply failures,
            unreadable segments and failed post-restore counts are reported
            here, not raised.

        Raises:
            BackupNotFoundError: If the id is unknown.
            TableNotFoundError: If a requested table is not in the backup.
            CorruptionError: If the snapshot fails verification.  The store
                is untouched.
            CaptureError: If the safety backup cannot be written.  The store
                is untouched.
        """
        options = options or RestoreOptions()
        record = self.catalog.get(backup_id)
        targets = self._select_tables(record, options.tables)
        result = RestoreResult(backup_id=backup_id)
        self._transition(result, RestoreState.REQUESTED, tables=[t.name for t in targets])

        try:
            self._transition(result, RestoreState.VERIFYING)
            self._verify(record, options)

            if options.create_safety_backup:
                self._transition(result, RestoreState.SAFETY_BACKUP_IN_PROGRESS)
                result.safety_backup_id = await self._safety_backup(record, targets)
        except (CorruptionError, CaptureError):
            self._transition(result, RestoreState.FAILED)
            raise

        self._transition(result, RestoreState.APPLYING)
        for entry in targets:
            try:
                result.restored_tables[entry.name] = await self._apply_table(record, entry)
            except ApplyError as e:
                self._record_error(result, entry.name, "apply", e.message)
            except CorruptionError as e:
                self._record_error(result, entry.name, "corruption", str(e))

        if options.verify_after:
            for name in list(result.restored_tables):
                try:
                    await self._check_count(record.manifest_entry(name))
                except ManifestMismatchError as e:
                    self._record_error(result, name, "manifest_mismatch", e.message)
                except Exception as e:
                    self._record_error(
                        result,
                        name,
                        "manifest_mismatch",
                        f"Could not count rows after restore: {e}",
                    )

        result.success = not result.errors
        self._transition(
            result,
            RestoreState.COMPLETED if result.success else RestoreState.FAILED,
            restored=result.restored_tables,
            errors=len(result.errors),
        )
        return result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    @staticmethod
    def _select_tables(
        record: BackupRecord, tables: list[str] | None
    ) -> list[TableManifestEntry]:
        """Manifest entries to restore, in manifest order."""
        if tables is None:
            return list(record.table_manifest)
        wanted = set(tables)
        missing = sorted(wanted - set(record.table_names))
        if missing:
            raise TableNotFoundError(missing, where="backup")
        return [entry for entry in record.table_manifest if entry.name in wanted]

    def _verify(self, record: BackupRecord, options: RestoreOptions) -> None:
        if not options.verify_before and record.verified == VerificationStatus.PASSED:
            logger.info(
                "Skipping pre-restore verification",
                extra={"backup_id": record.id},
            )
            return
        report = self.verifier.verify(record.id)
        if not report.valid:
            raise CorruptionError(
                f"Backup {record.id} failed verification: {report.first_error}",
                table=report.error_table,
                offset=report.error_offset,
            )

    async def _safety_backup(
        self, record: BackupRecord, targets: list[TableManifestEntry]
    ) -> str:
        safety = await self.writer.write(
            [entry.name for entry in targets],
            description=f"Safety backup before restoring {record.id}",
            compress=record.compressed,
            verify=True,
        )
        if safety.verified != VerificationStatus.PASSED:
            raise CaptureError(f"Safety backup {safety.id} failed verification")
        return safety.id

    async def _apply_table(self, record: BackupRecord, entry: TableManifestEntry) -> int:
        """Replace one table's rows with its segment, in one transaction.

        Raises:
            CorruptionError: If the segment cannot be read.  Nothing was
                written for this table.
            ApplyError: If the store rejected the transaction.
        """
        rows = read_segment(record.file_path, record.compressed, entry)
        try:
            await self.store.execute_in_transaction(
                entry.name, [ClearTable(entry.name), *rows]
            )
        except Exception as e:
            raise ApplyError(f"Restore of {entry.name} rolled back: {e}", table=entry.name) from e
        logger.info(
            "Restored table",
            extra={"backup_id": record.id, "table": entry.name, "rows": len(rows)},
        )
        return len(rows)

    async def _check_count(self, entry: TableManifestEntry) -> None:
        actual = await self.store.count_rows(entry.name)
        if actual != entry.row_count:
            raise ManifestMismatchError(entry.name, entry.row_count, actual)

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    @staticmethod
    def _transition(result: RestoreResult, state: RestoreState, **context) -> None:
        result.state = state
        log = logger.error if state == RestoreState.FAILED else logger.info
        log(
            f"Restore {state.value}",
            extra={"backup_id": result.backup_id, "state": state.value, **context},
        )

    @staticmethod
    def _record_error(
        result: RestoreResult, table: str, error_type: str, message: str
    ) -> None:
        logger.error(
            "Table restore failed",
            extra={
                "backup_id": result.backup_id,
                "table": table,
                "error_type": error_type,
                "error": message,
            },
        )
        result.errors.append(
            TableError(table=table, error_type=error_type, message=message)
        )
