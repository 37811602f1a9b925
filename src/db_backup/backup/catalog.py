"""Durable index of backup records.

The catalog lives in ``<backup directory>/catalog.json``.  Every mutation
rewrites the index through a temporary file and ``os.replace`` so readers
never see a half-written index.

Usage:
    from db_backup.backup.catalog import BackupCatalog

    catalog = BackupCatalog("backups")
    for record in catalog.list():      # newest first
        print(record.id, record.description)
    catalog.remove(record.id)          # deletes file and entry together
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path

from pydantic import ValidationError

from db_backup.backup.errors import BackupNotFoundError, CatalogError
from db_backup.backup.models import BackupRecord, VerificationStatus

logger = logging.getLogger(__name__)

CATALOG_FILENAME = "catalog.json"
CATALOG_VERSION = 1


class BackupCatalog:
    """JSON-file backed index of ``BackupRecord``s keyed by id.

    Args:
        directory: Backup directory holding the index (created if missing).
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._index_path = self.directory / CATALOG_FILENAME
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Index persistence
    # ------------------------------------------------------------------

    def _load(self) -> dict[str, BackupRecord]:
        if not self._index_path.exists():
            return {}
        try:
            data = json.loads(self._index_path.read_text())
            return {
                item["id"]: BackupRecord.model_validate(item)
                for item in data.get("backups", [])
            }
        except (json.JSONDecodeError, KeyError, TypeError, ValidationError) as e:
            raise CatalogError(f"Unreadable catalog index {self._index_path}: {e}") from e

    def _save(self, records: dict[str, BackupRecord]) -> None:
        payload = {
            "version": CATALOG_VERSION,
            "backups": [r.model_dump(mode="json") for r in records.values()],
        }
        tmp_path = self._index_path.with_name(self._index_path.name + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(payload, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self._index_path)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list(self) -> list[BackupRecord]:
        """All records, most recent first."""
        with self._lock:
            records = list(self._load().values())
        return sorted(records, key=lambda r: (r.created_at, r.id), reverse=True)

    def get(self, backup_id: str) -> BackupRecord:
        """Look up a record.

        Raises:
            BackupNotFoundError: If no record has this id.
        """
        with self._lock:
            record = self._load().get(backup_id)
        if record is None:
            raise BackupNotFoundError(backup_id)
        return record

    def __contains__(self, backup_id: str) -> bool:
        with self._lock:
            return backup_id in self._load()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(self, record: BackupRecord) -> None:
        """Register a record whose file is already in place.

        Raises:
            CatalogError: If a record with the same id exists.
        """
        with self._lock:
            records = self._load()
            if record.id in records:
                raise CatalogError(f"Duplicate backup id: {record.id}")
            records[record.id] = record
            self._save(records)
        logger.info("Registered backup", extra={"backup_id": record.id})

    def update(
        self,
        backup_id: str,
        *,
        verified: VerificationStatus | None = None,
        size_bytes: int | None = None,
    ) -> BackupRecord:
        """Update the mutable fields of a record and return it."""
        with self._lock:
            records = self._load()
            record = records.get(backup_id)
            if record is None:
                raise BackupNotFoundError(backup_id)
            changes: dict = {}
            if verified is not None:
                changes["verified"] = verified
            if size_bytes is not None:
                changes["size_bytes"] = size_bytes
            record = record.model_copy(update=changes)
            records[backup_id] = record
            self._save(records)
        return record

    def remove(self, backup_id: str) -> BackupRecord:
        """Delete a backup's file and its catalog entry together.

        The file is first moved aside to a tombstone, then the index is
        saved, then the tombstone is deleted.  If the index cannot be saved
        the file is moved back, so the entry never points at a missing file.
        A file that is already gone does not block removal of the entry.

        Raises:
            BackupNotFoundError: If no record has this id.
            CatalogError: If the file exists but cannot be deleted or the
                index cannot be saved; the entry and the file are kept.
        """
        with self._lock:
            records = self._load()
            record = records.get(backup_id)
            if record is None:
                raise BackupNotFoundError(backup_id)
            tombstone = self._bury(record)
            del records[backup_id]
            try:
                self._save(records)
            except OSError as e:
                if tombstone is not None:
                    os.replace(tombstone, record.file_path)
                raise CatalogError(f"Could not update catalog index: {e}") from e
            if tombstone is not None:
                tombstone.unlink(missing_ok=True)
        logger.info("Removed backup", extra={"backup_id": backup_id})
        return record

    def prune(self, keep: int) -> list[str]:
        """Remove every backup beyond the ``keep`` most recent ones.

        Returns:
            Ids of the removed backups, oldest last.
        """
        if keep < 0:
            raise ValueError("keep must be >= 0")
        removed: list[str] = []
        with self._lock:
            for record in self.list()[keep:]:
                self.remove(record.id)
                removed.append(record.id)
        if removed:
            logger.info(
                "Pruned old backups", extra={"removed": removed, "keep": keep}
            )
        return removed

    @staticmethod
    def _bury(record: BackupRecord) -> Path | None:
        """Move a backup file to its tombstone path; None if already gone."""
        path = Path(record.file_path)
        tombstone = path.with_name(f".{path.name}.deleted")
        try:
            os.replace(path, tombstone)
        except FileNotFoundError:
            logger.warning(
                "Backup file already missing",
                extra={"backup_id": record.id, "file_path": str(path)},
            )
            return None
        except OSError as e:
            raise CatalogError(
                f"Could not delete backup file {path}: {e}"
            ) from e
        return tombstone
