"""Scheduled backup state.

The schedule lives next to the catalog in ``<backup directory>/schedule.json``
and is meant to be polled by an external scheduler (cron, systemd timer)
running ``db-backup run-scheduled``.

Run times, in UTC:
- hourly: one hour after the reference time
- daily: 02:00 on the following day
- weekly: 02:00 on the next Sunday (a week ahead when it is Sunday already)

Usage:
    from db_backup.backup.schedule import ScheduleFile

    schedules = ScheduleFile("backups")
    schedule = schedules.configure("daily", now)
    if schedules.is_due(now):
        ...
"""

import json
import logging
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pydantic import ValidationError

from db_backup.backup.errors import CatalogError
from db_backup.backup.models import BackupSchedule, ScheduleFrequency

logger = logging.getLogger(__name__)

SCHEDULE_FILENAME = "schedule.json"
RUN_HOUR = 2
SUNDAY = 6


def next_run_after(frequency: ScheduleFrequency | str, now: datetime) -> datetime:
    """Next run time for ``frequency`` after ``now``.

    Example:
        >>> next_run_after("daily", datetime(2026, 1, 15, 9, 30, tzinfo=timezone.utc))
        datetime.datetime(2026, 1, 16, 2, 0, tzinfo=datetime.timezone.utc)
    """
    frequency = ScheduleFrequency(frequency)
    now = now.astimezone(timezone.utc)
    if frequency == ScheduleFrequency.HOURLY:
        return now + timedelta(hours=1)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if frequency == ScheduleFrequency.DAILY:
        days = 1
    else:
        days = (SUNDAY - now.weekday()) % 7 or 7
    return midnight + timedelta(days=days, hours=RUN_HOUR)


class ScheduleFile:
    """Reads and writes ``schedule.json`` in a backup directory.

    Args:
        directory: Backup directory (created if missing).
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.path = self.directory / SCHEDULE_FILENAME

    def load(self) -> BackupSchedule | None:
        """The saved schedule, or None if none is configured.

        Raises:
            CatalogError: If schedule.json exists but cannot be parsed.
        """
        if not self.path.exists():
            return None
        try:
            return BackupSchedule.model_validate(json.loads(self.path.read_text()))
        except (json.JSONDecodeError, ValidationError) as e:
            raise CatalogError(f"Unreadable schedule {self.path}: {e}") from e

    def save(self, schedule: BackupSchedule) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(schedule.model_dump(mode="json"), f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.path)

    def configure(
        self, frequency: ScheduleFrequency | str, now: datetime
    ) -> BackupSchedule:
        """Enable scheduled backups at ``frequency``, starting after ``now``.

        A previous ``last_run`` is kept.
        """
        frequency = ScheduleFrequency(frequency)
        previous = self.load()
        schedule = BackupSchedule(
            frequency=frequency,
            enabled=True,
            last_run=previous.last_run if previous else None,
            next_run=next_run_after(frequency, now),
        )
        self.save(schedule)
        logger.info(
            "Backup schedule configured",
            extra={"frequency": frequency.value, "next_run": schedule.next_run.isoformat()},
        )
        return schedule

    def is_due(self, now: datetime) -> bool:
        """True when a schedule is enabled and its next run has arrived."""
        schedule = self.load()
        if schedule is None or not schedule.enabled:
            return False
        return now >= schedule.next_run

    def mark_run(self, now: datetime) -> BackupSchedule | None:
        """Record a completed run and move ``next_run`` forward.

        Returns None (and writes nothing) when no schedule is configured.
        """
        schedule = self.load()
        if schedule is None:
            return None
        schedule = schedule.model_copy(
            update={
                "last_run": now,
                "next_run": next_run_after(schedule.frequency, now),
            }
        )
        self.save(schedule)
        return schedule
