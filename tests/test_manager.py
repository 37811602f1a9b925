"""Tests for the BackupManager facade: defaults, retention and status."""

from pathlib import Path

import pytest

from conftest import FixedIdentity
from db_backup.backup.errors import BackupNotFoundError
from db_backup.backup.manager import BackupManager
from db_backup.backup.models import RestoreOptions, VerificationStatus
from db_backup.config.models import BackupSettings


@pytest.fixture
def settings(tmp_path) -> BackupSettings:
    return BackupSettings(directory=str(tmp_path / "backups"), max_backups=3)


@pytest.fixture
def manager(store, settings) -> BackupManager:
    return BackupManager(store, settings, FixedIdentity())


class TestBackupManager:
    """Operator surface over the engine."""

    async def test_create_uses_settings_defaults(self, manager):
        record = await manager.create_backup("nightly")
        assert record.compressed is True
        assert record.verified == VerificationStatus.PASSED
        assert record.file_path.endswith(".snapshot.gz")

    async def test_create_overrides(self, manager):
        record = await manager.create_backup("quick", ["orders"], compress=False, verify=False)
        assert record.compressed is False
        assert record.verified == VerificationStatus.UNKNOWN
        assert record.table_names == ["orders"]

    async def test_retention_applied_after_create(self, manager):
        ids = [(await manager.create_backup(f"b{i}")).id for i in range(5)]
        remaining = [r.id for r in manager.list_backups()]
        assert remaining == list(reversed(ids[-3:]))

    async def test_retention_disabled(self, store, tmp_path):
        settings = BackupSettings(directory=str(tmp_path / "b"), max_backups=0)
        manager = BackupManager(store, settings, FixedIdentity())
        for _ in range(4):
            await manager.create_backup()
        assert len(manager.list_backups()) == 4
        assert manager.prune_backups() == []

    async def test_prune_with_explicit_keep(self, manager):
        for _ in range(3):
            await manager.create_backup()
        removed = manager.prune_backups(keep=1)
        assert len(removed) == 2
        assert len(manager.list_backups()) == 1

    async def test_status(self, manager, settings):
        empty = manager.status()
        assert empty.total_backups == 0
        assert empty.latest is None

        await manager.create_backup("first")
        latest = await manager.create_backup("second")
        status = manager.status()
        assert status.total_backups == 2
        assert status.latest.id == latest.id
        assert status.max_backups == 3
        assert status.directory == settings.directory
        assert status.total_size_bytes == sum(r.size_bytes for r in manager.list_backups())

    async def test_info_and_delete(self, manager):
        record = await manager.create_backup()
        assert manager.get_backup_info(record.id) == record
        manager.delete_backup(record.id)
        assert not Path(record.file_path).exists()
        with pytest.raises(BackupNotFoundError):
            manager.get_backup_info(record.id)

    async def test_restore_round_trip(self, manager, store):
        record = await manager.create_backup()
        before = store.rows("orders")
        store.set_rows("orders", [])

        assert manager.test_restore(record.id).valid
        assert [e.name for e in manager.get_recovery_options(record.id).available_tables] == [
            "customers",
            "orders",
            "products",
        ]
        result = await manager.restore_specific_tables(record.id, ["orders"])
        assert result.success
        assert store.rows("orders") == before

        result = await manager.restore(record.id, RestoreOptions(verify_after=False))
        assert result.success
