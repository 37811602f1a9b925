"""Structural verification of snapshot files.

``IntegrityVerifier`` parses a snapshot without applying it and reports the
first inconsistency it finds.  It only reads the snapshot file: the database
is never touched and the file is never modified, so any number of
verifications can run side by side.

Checks, in file order:

1. The header is present, well-formed and of a supported format version.
2. Segments appear in lexicographic order and match the header's table list.
3. Each segment is followed by exactly the declared number of row
   statements, each parseable and belonging to that segment's table.
4. The end marker is present, last, and agrees with the totals.
5. When a catalog manifest is known: table names, row counts and segment
   offsets match it.
6. When a checksum is known: the file's SHA-256 matches it.

Usage:
    from db_backup.backup.verifier import IntegrityVerifier

    report = IntegrityVerifier(catalog).verify(backup_id)
    if not report.valid:
        print(report.first_error, report.error_table, report.error_offset)
"""

import hashlib
import logging
import zlib
from pathlib import Path

from db_backup.backup.catalog import BackupCatalog
from db_backup.backup.errors import CorruptionError
from db_backup.backup.models import (
    TableManifestEntry,
    VerificationReport,
    VerificationStatus,
)
from db_backup.backup.snapshot import (
    FORMAT_VERSION,
    EndMarker,
    RowStatement,
    SegmentMarker,
    SnapshotHeader,
    iter_lines,
    open_snapshot,
    parse_line,
)

logger = logging.getLogger(__name__)


def file_checksum(path: str | Path) -> str:
    """SHA-256 hex digest of a file's stored bytes."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


class IntegrityVerifier:
    """Read-only verifier for snapshot files registered in a catalog."""

    def __init__(self, catalog: BackupCatalog) -> None:
        self.catalog = catalog

    def verify(self, backup_id: str, *, record: bool = True) -> VerificationReport:
        """Verify a cataloged backup.

        Args:
            backup_id: Backup to verify.
            record: Store the outcome as the record's ``verified`` status.

        Raises:
            BackupNotFoundError: If the id is unknown.
        """
        backup = self.catalog.get(backup_id)
        report = self.verify_file(
            backup.file_path,
            compressed=backup.compressed,
            expected_manifest=backup.table_manifest,
            checksum=backup.checksum,
        )
        report.backup_id = backup_id

        if report.valid:
            logger.info("Backup verification passed", extra={"backup_id": backup_id})
        else:
            logger.error(
                "Backup verification failed",
                extra={
                    "backup_id": backup_id,
                    "error": report.first_error,
                    "table": report.error_table,
                    "offset": report.error_offset,
                },
            )

        if record:
            status = VerificationStatus.PASSED if report.valid else VerificationStatus.FAILED
            self.catalog.update(backup_id, verified=status)
        return report

    def verify_file(
        self,
        path: str | Path,
        *,
        compressed: bool,
        expected_manifest: list[TableManifestEntry] | None = None,
        checksum: str | None = None,
    ) -> VerificationReport:
        """Verify a snapshot file and describe its contents.

        Returns:
            ``VerificationReport``; on failure ``first_error``,
            ``error_table`` and ``error_offset`` locate the problem.
        """
        try:
            manifest = self._scan(path, compressed)
            if expected_manifest is not None:
                self._compare_manifest(manifest, expected_manifest)
            if checksum is not None and file_checksum(path) != checksum:
                raise CorruptionError("Checksum mismatch: file changed since creation")
        except CorruptionError as e:
            return VerificationReport(
                valid=False,
                first_error=e.message,
                error_table=e.table,
                error_offset=e.offset,
            )
        except FileNotFoundError:
            return VerificationReport(
                valid=False, first_error=f"Backup file not found: {path}"
            )
        except OSError as e:
            return VerificationReport(
                valid=False, first_error=f"Backup file unreadable: {e}"
            )
        return VerificationReport(valid=True, table_manifest=manifest)

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def _scan(self, path: str | Path, compressed: bool) -> list[TableManifestEntry]:
        """Walk the whole file and rebuild its manifest.

        Raises:
            CorruptionError: At the first inconsistency.
        """
        manifest: list[TableManifestEntry] = []
        header: SnapshotHeader | None = None
        segment: SegmentMarker | None = None
        seen_rows = 0
        total_rows = 0
        ended = False
        offset = 0

        with open_snapshot(path, "rb", compressed) as fh:
            try:
                for offset, text in iter_lines(fh):
                    table = segment.table if segment else None
                    if ended:
                        raise CorruptionError(
                            "Data after end marker", table=table, offset=offset
                        )
                    try:
                        item = parse_line(text)
                    except ValueError as e:
                        raise CorruptionError(str(e), table=table, offset=offset) from e

                    if header is None:
                        if not isinstance(item, SnapshotHeader):
                            raise CorruptionError("Missing snapshot header", offset=offset)
                        if item.format != FORMAT_VERSION:
                            raise CorruptionError(
                                f"Unsupported snapshot format {item.format}",
                                offset=offset,
                            )
                        header = item
                        continue

                    if isinstance(item, RowStatement):
                        if segment is None:
                            raise CorruptionError(
                                "Row statement outside a table segment", offset=offset
                            )
                        if item.table != segment.table:
                            raise CorruptionError(
                                f"Row statement for '{item.table}' inside segment",
                                table=table,
                                offset=offset,
                            )
                        seen_rows += 1
                        if seen_rows > segment.rows:
                            raise CorruptionError(
                                f"More rows than the declared {segment.rows}",
                                table=table,
                                offset=offset,
                            )
                        continue

                    # Any marker closes the current segment
                    self._close_segment(segment, seen_rows, offset)
                    segment = None
                    seen_rows = 0

                    if isinstance(item, SegmentMarker):
                        if manifest and item.table <= manifest[-1].name:
                            raise CorruptionError(
                                "Segments out of order", table=item.table, offset=offset
                            )
                        segment = item
                        total_rows += item.rows
                        manifest.append(
                            TableManifestEntry(
                                name=item.table, row_count=item.rows, offset=offset
                            )
                        )
                    elif isinstance(item, EndMarker):
                        if item.tables != len(manifest) or item.rows != total_rows:
                            raise CorruptionError(
                                "End marker totals do not match segments", offset=offset
                            )
                        ended = True
                    else:
                        raise CorruptionError("Unexpected second header", offset=offset)
            except (OSError, EOFError, zlib.error) as e:
                raise CorruptionError(
                    f"Unreadable snapshot data: {e}",
                    table=segment.table if segment else None,
                    offset=offset,
                ) from e

        if header is None:
            raise CorruptionError("Empty snapshot file", offset=0)
        if not ended:
            self._close_segment(segment, seen_rows, offset)
            raise CorruptionError(
                "Snapshot is truncated: end marker missing",
                table=segment.table if segment else None,
                offset=offset,
            )
        if header.tables != [entry.name for entry in manifest]:
            raise CorruptionError("Header table list does not match segments", offset=0)
        return manifest

    @staticmethod
    def _close_segment(segment: SegmentMarker | None, seen_rows: int, offset: int) -> None:
        if segment is not None and seen_rows != segment.rows:
            raise CorruptionError(
                f"Segment declares {segment.rows} rows but contains {seen_rows}",
                table=segment.table,
                offset=offset,
            )

    @staticmethod
    def _compare_manifest(
        actual: list[TableManifestEntry],
        expected: list[TableManifestEntry],
    ) -> None:
        if [e.name for e in actual] != [e.name for e in expected]:
            raise CorruptionError("Snapshot tables do not match the catalog manifest")
        for found, recorded in zip(actual, expected):
            if found.row_count != recorded.row_count or found.offset != recorded.offset:
                raise CorruptionError(
                    "Segment does not match the catalog manifest",
                    table=found.name,
                    offset=found.offset,
                )
