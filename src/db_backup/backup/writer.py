"""Snapshot writer.

Captures tables from a ``DataStore`` into a snapshot file and registers the
resulting ``BackupRecord`` in the catalog.

The file is written to a temporary sibling path, flushed, fsynced and only
then renamed over the final path, and the record is registered after the
rename.  A crash or error at any point before that leaves neither a file at
the final path nor a catalog entry, and a failed registration removes the
renamed file again.

Usage:
    from db_backup.backup.writer import SnapshotWriter

    writer = SnapshotWriter(store, catalog)
    record = await writer.write(description="nightly", compress=True, verify=True)
"""

import logging
import os
import time
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING

from db_backup.backup.catalog import BackupCatalog
from db_backup.backup.errors import CaptureError, CatalogError, TableNotFoundError
from db_backup.backup.identity import IdentitySource, SystemIdentity
from db_backup.backup.models import BackupRecord, TableManifestEntry
from db_backup.backup.snapshot import (
    EndMarker,
    LineWriter,
    RowStatement,
    SegmentMarker,
    SnapshotHeader,
    open_snapshot,
)
from db_backup.backup.verifier import IntegrityVerifier, file_checksum

if TYPE_CHECKING:
    from db_backup.adapters.base import DataStore

logger = logging.getLogger(__name__)

SNAPSHOT_SUFFIX = ".snapshot"


class SnapshotWriter:
    """Writes point-in-time snapshots of a data store.

    Args:
        store: Data store to capture.
        catalog: Catalog that receives the new records.
        identity: Source of backup ids and timestamps.
    """

    def __init__(
        self,
        store: "DataStore",
        catalog: BackupCatalog,
        identity: IdentitySource | None = None,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.identity = identity or SystemIdentity()

    async def write(
        self,
        tables: Iterable[str] | None = None,
        *,
        description: str = "",
        compress: bool = False,
        verify: bool = False,
        destination: str | Path | None = None,
    ) -> BackupRecord:
        """Capture ``tables`` into a new snapshot.

        Args:
            tables: Tables to capture.  ``None`` captures every table the
                store reports.
            description: Free-text label stored on the record.
            compress: Gzip the snapshot.
            verify: Run the integrity verifier right after writing and
                record its result.
            destination: Final file path.  Defaults to
                ``<catalog dir>/<backup id>.snapshot[.gz]``.

        Returns:
            The registered ``BackupRecord`` (with its verification status
            when ``verify`` is set).

        Raises:
            TableNotFoundError: If a requested table does not exist.
            CaptureError: If a table cannot be read or the file cannot be
                written.  Nothing is left behind.
            CatalogError: If the id is already cataloged or the record cannot
                be registered.  Nothing is left behind.
        """
        started = time.monotonic()
        backup_id = self.identity.new_id()
        created_at = self.identity.now()

        try:
            available = await self.store.list_tables()
        except Exception as e:
            raise CaptureError(f"Could not list tables: {e}") from e

        if tables is None:
            selected = sorted(available)
        else:
            selected = sorted(set(tables))
            missing = [t for t in selected if t not in available]
            if missing:
                raise TableNotFoundError(missing)
        if backup_id in self.catalog:
            raise CatalogError(f"Duplicate backup id: {backup_id}")

        if destination is None:
            suffix = SNAPSHOT_SUFFIX + (".gz" if compress else "")
            destination = self.catalog.directory / f"{backup_id}{suffix}"
        final_path = Path(destination)
        tmp_path = final_path.with_name(f".{final_path.name}.tmp")

        logger.info(
            "Starting backup",
            extra={"backup_id": backup_id, "tables": selected, "compress": compress},
        )

        header = SnapshotHeader(
            backup_id=backup_id,
            created_at=created_at.isoformat(),
            description=description,
            tables=selected,
        )

        try:
            final_path.parent.mkdir(parents=True, exist_ok=True)
            manifest = await self._write_file(tmp_path, header, compress)
            size_bytes = tmp_path.stat().st_size
            checksum = file_checksum(tmp_path)
        except CaptureError:
            self._discard(tmp_path)
            raise
        except Exception as e:
            # Disk errors and store failures outside a single table read
            self._discard(tmp_path)
            raise CaptureError(f"Could not write snapshot {final_path}: {e}") from e
        except BaseException:
            # Cancellation or interpreter shutdown: still no partial file
            self._discard(tmp_path)
            raise

        record = BackupRecord(
            id=backup_id,
            description=description,
            created_at=created_at,
            file_path=str(final_path),
            compressed=compress,
            table_manifest=manifest,
            size_bytes=size_bytes,
            checksum=checksum,
        )
        self._publish(tmp_path, final_path, record)

        if verify:
            IntegrityVerifier(self.catalog).verify(backup_id)
            record = self.catalog.get(backup_id)

        logger.info(
            "Backup completed",
            extra={
                "backup_id": backup_id,
                "file_path": record.file_path,
                "size_bytes": record.size_bytes,
                "rows": record.total_rows,
                "duration": round(time.monotonic() - started, 3),
            },
        )
        return record

    async def _write_file(
        self,
        path: Path,
        header: SnapshotHeader,
        compress: bool,
    ) -> list[TableManifestEntry]:
        """Stream every selected table into ``path``; return the manifest."""
        manifest: list[TableManifestEntry] = []
        total_rows = 0
        with open_snapshot(path, "wb", compress) as fh:
            out = LineWriter(fh)
            out.write(header.to_line())
            async with self.store.consistent_read():
                for table in header.tables:
                    try:
                        rows = await self.store.read_rows(table)
                    except Exception as e:
                        raise CaptureError(
                            f"Could not read table {table}: {e}", table=table
                        ) from e
                    offset = out.write(SegmentMarker(table=table, rows=len(rows)).to_line())
                    for row in rows:
                        try:
                            line = RowStatement.from_row(table, row).to_line()
                        except (TypeError, ValueError) as e:
                            raise CaptureError(
                                f"Unserializable row in {table}: {e}", table=table
                            ) from e
                        out.write(line)
                    manifest.append(
                        TableManifestEntry(name=table, row_count=len(rows), offset=offset)
                    )
                    total_rows += len(rows)
            out.write(EndMarker(tables=len(manifest), rows=total_rows).to_line())
            fh.flush()
        # The gzip trailer is only written on close, so fsync afterwards
        with open(path, "rb+") as raw:
            os.fsync(raw.fileno())
        return manifest

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass

    def _publish(self, tmp_path: Path, final_path: Path, record: BackupRecord) -> None:
        """Move the finished file into place and register it.

        The file only stays at ``final_path`` once the catalog holds its
        record.
        """
        try:
            os.replace(tmp_path, final_path)
        except OSError as e:
            self._discard(tmp_path)
            raise CaptureError(f"Could not write snapshot {final_path}: {e}") from e
        except BaseException:
            self._discard(tmp_path)
            raise
        try:
            self.catalog.add(record)
        except BaseException:
            self._discard(final_path)
            raise
