"""Tests for scheduled backups: run-time arithmetic, schedule.json, and the
BackupManager scheduling surface."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from conftest import FixedIdentity
from db_backup.backup.errors import CaptureError, CatalogError
from db_backup.backup.manager import BackupManager
from db_backup.backup.models import ScheduleFrequency
from db_backup.backup.schedule import SCHEDULE_FILENAME, ScheduleFile, next_run_after
from db_backup.config.models import BackupSettings

# A Thursday
THURSDAY = datetime(2026, 1, 15, 9, 30, tzinfo=timezone.utc)


# ------------------------------------------------------------------
# Run-time arithmetic
# ------------------------------------------------------------------


class TestNextRun:
    """next_run_after for each frequency."""

    def test_hourly(self):
        assert next_run_after("hourly", THURSDAY) == THURSDAY + timedelta(hours=1)

    def test_daily_is_two_am_next_day(self):
        assert next_run_after("daily", THURSDAY) == datetime(2026, 1, 16, 2, 0, tzinfo=timezone.utc)

    def test_daily_just_after_midnight(self):
        """A run at 00:30 waits for tomorrow's 02:00, like a nightly job."""
        early = datetime(2026, 1, 15, 0, 30, tzinfo=timezone.utc)
        assert next_run_after("daily", early) == datetime(2026, 1, 16, 2, 0, tzinfo=timezone.utc)

    def test_weekly_is_next_sunday(self):
        assert next_run_after(ScheduleFrequency.WEEKLY, THURSDAY) == datetime(
            2026, 1, 18, 2, 0, tzinfo=timezone.utc
        )

    def test_weekly_on_sunday_skips_a_week(self):
        sunday = datetime(2026, 1, 18, 1, 0, tzinfo=timezone.utc)
        assert next_run_after("weekly", sunday) == datetime(2026, 1, 25, 2, 0, tzinfo=timezone.utc)

    def test_other_timezone_normalized(self):
        tz = timezone(timedelta(hours=-5))
        local = datetime(2026, 1, 15, 22, 0, tzinfo=tz)  # 03:00 UTC on the 16th
        assert next_run_after("daily", local) == datetime(2026, 1, 17, 2, 0, tzinfo=timezone.utc)

    def test_unknown_frequency(self):
        with pytest.raises(ValueError):
            next_run_after("monthly", THURSDAY)


# ------------------------------------------------------------------
# schedule.json
# ------------------------------------------------------------------


class TestScheduleFile:
    """Persistence and due checks."""

    def test_no_schedule(self, tmp_path):
        schedules = ScheduleFile(tmp_path)
        assert schedules.load() is None
        assert schedules.is_due(THURSDAY) is False
        assert schedules.mark_run(THURSDAY) is None
        assert not (tmp_path / SCHEDULE_FILENAME).exists()

    def test_configure_persists(self, tmp_path):
        schedule = ScheduleFile(tmp_path).configure("daily", THURSDAY)
        data = json.loads((tmp_path / SCHEDULE_FILENAME).read_text())
        assert data["frequency"] == "daily"
        assert data["enabled"] is True
        assert data["last_run"] is None
        assert ScheduleFile(tmp_path).load() == schedule

    def test_due_only_after_next_run(self, tmp_path):
        schedules = ScheduleFile(tmp_path)
        schedule = schedules.configure("hourly", THURSDAY)
        assert not schedules.is_due(schedule.next_run - timedelta(seconds=1))
        assert schedules.is_due(schedule.next_run)

    def test_disabled_never_due(self, tmp_path):
        schedules = ScheduleFile(tmp_path)
        schedule = schedules.configure("hourly", THURSDAY)
        schedules.save(schedule.model_copy(update={"enabled": False}))
        assert not schedules.is_due(THURSDAY + timedelta(days=30))

    def test_mark_run_advances(self, tmp_path):
        schedules = ScheduleFile(tmp_path)
        schedules.configure("hourly", THURSDAY)
        later = THURSDAY + timedelta(hours=3)
        schedule = schedules.mark_run(later)
        assert schedule.last_run == later
        assert schedule.next_run == later + timedelta(hours=1)
        assert not schedules.is_due(later)

    def test_reconfigure_keeps_last_run(self, tmp_path):
        schedules = ScheduleFile(tmp_path)
        schedules.configure("hourly", THURSDAY)
        schedules.mark_run(THURSDAY)
        schedule = schedules.configure("weekly", THURSDAY)
        assert schedule.frequency == ScheduleFrequency.WEEKLY
        assert schedule.last_run == THURSDAY

    def test_unreadable_schedule(self, tmp_path):
        (tmp_path / SCHEDULE_FILENAME).write_text("{not json")
        with pytest.raises(CatalogError, match="Unreadable schedule"):
            ScheduleFile(tmp_path).load()


# ------------------------------------------------------------------
# BackupManager
# ------------------------------------------------------------------


@pytest.fixture
def identity() -> FixedIdentity:
    return FixedIdentity()


@pytest.fixture
def manager(store, tmp_path, identity) -> BackupManager:
    settings = BackupSettings(directory=str(tmp_path / "backups"), max_backups=0)
    return BackupManager(store, settings, identity)


class TestScheduledBackups:
    """schedule() and run_scheduled()."""

    async def test_nothing_due_without_schedule(self, manager):
        assert await manager.run_scheduled() is None
        assert manager.list_backups() == []

    async def test_not_due_yet(self, manager):
        manager.schedule("daily")
        assert await manager.run_scheduled() is None
        assert manager.list_backups() == []

    async def test_runs_when_due(self, manager, identity):
        manager.schedule("daily")
        identity.start = datetime(2026, 1, 16, 3, 0, tzinfo=timezone.utc)

        record = await manager.run_scheduled()

        assert record is not None
        assert record.description == "Scheduled backup"
        schedule = manager.status().schedule
        assert schedule.last_run is not None
        assert schedule.next_run == datetime(2026, 1, 17, 2, 0, tzinfo=timezone.utc)
        assert await manager.run_scheduled() is None

    async def test_force_without_schedule(self, manager):
        record = await manager.run_scheduled(force=True)
        assert record.description == "Manual backup via scheduler"
        assert manager.status().schedule is None

    async def test_failed_backup_keeps_schedule(self, manager, store, identity):
        """A failed run stays due so the next poll retries."""
        manager.schedule("hourly")
        identity.start += timedelta(hours=2)
        before = manager.status().schedule

        async def _fail():
            raise ConnectionError("down")

        store.list_tables = _fail
        with pytest.raises(CaptureError, match="down"):
            await manager.run_scheduled()
        assert manager.status().schedule == before
        assert manager.scheduled_backup_due()
