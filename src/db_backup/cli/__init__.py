"""CLI module for database backup and recovery.

Provides commands to create, inspect, verify, restore, and prune backups of
the database selected by the active profile.

Usage:
    DB_PROFILE=local db-backup create --description "before import"
    db-backup list
    db-backup info backup_20260115_093000_3f9a1c2b7d4e
    db-backup test-restore backup_20260115_093000_3f9a1c2b7d4e
    db-backup restore backup_20260115_093000_3f9a1c2b7d4e --tables orders --yes
    db-backup prune --keep 10
    db-backup run-scheduled --frequency daily

Commands:
    create        - Capture a new backup
    list          - List backups, most recent first
    info          - Show one backup and its tables
    test-restore  - Verify a backup without touching the database
    restore       - Restore all or some tables from a backup
    delete        - Delete a backup file and its catalog entry
    prune         - Keep only the most recent backups
    run-scheduled - Take the scheduled backup if one is due
    status        - Show backup directory summary
    profiles      - List available profiles
"""

import argparse
import asyncio
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from db_backup.backup.catalog import BackupCatalog
from db_backup.backup.errors import BackupError
from db_backup.backup.manager import BackupManager, read_status
from db_backup.backup.models import (
    BackupRecord,
    RestoreOptions,
    ScheduleFrequency,
    VerificationStatus,
)
from db_backup.backup.verifier import IntegrityVerifier
from db_backup.config.loader import load_db_config
from db_backup.config.models import BackupSettings
from db_backup.factory import (
    ProfileNotFoundError,
    get_store,
    read_profile_lock,
)

console = Console()

_STATUS_STYLE = {
    VerificationStatus.PASSED: "[green]passed[/green]",
    VerificationStatus.FAILED: "[red]failed[/red]",
    VerificationStatus.UNKNOWN: "[dim]unknown[/dim]",
}


# ============================================================================
# Helpers
# ============================================================================


def _config_path(args: argparse.Namespace) -> Path | None:
    config = getattr(args, "config", None)
    return Path(config) if config else None


def _load_settings(args: argparse.Namespace) -> BackupSettings:
    """Backup settings from db.toml, or defaults when there is no db.toml."""
    try:
        return load_db_config(_config_path(args)).backup
    except FileNotFoundError:
        if _config_path(args) is not None:
            raise
        return BackupSettings()


def _split_tables(value: str | None) -> list[str] | None:
    if not value:
        return None
    return [t.strip() for t in value.split(",") if t.strip()]


def _format_size(size_bytes: int) -> str:
    size = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size_bytes} B"


def _print_error(e: Exception) -> int:
    console.print(f"[bold red]x[/bold red] {e}")
    return 1


def _print_record(record: BackupRecord) -> None:
    table = Table(title=f"Backup {record.id}", show_header=False)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("Created", record.created_at.isoformat(timespec="seconds"))
    if record.description:
        table.add_row("Description", record.description)
    table.add_row("File", record.file_path)
    table.add_row("Compressed", "yes" if record.compressed else "no")
    table.add_row("Size", _format_size(record.size_bytes))
    table.add_row("Verified", _STATUS_STYLE[record.verified])
    table.add_row("Total rows", str(record.total_rows))
    console.print(table)

    tables = Table(title="Tables", show_header=True, header_style="bold")
    tables.add_column("Table")
    tables.add_column("Rows", justify="right")
    for entry in record.table_manifest:
        tables.add_row(entry.name, str(entry.row_count))
    console.print(tables)


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_create(args: argparse.Namespace) -> int:
    """Async implementation for create command.

    Args:
        args: Parsed arguments with description, tables, no_compress,
            no_verify, config, and env_prefix.

    Returns:
        0 on success, 1 on failure.
    """
    env_prefix = getattr(args, "env_prefix", "")
    try:
        settings = _load_settings(args)
        store = await get_store(env_prefix=env_prefix, config_path=_config_path(args))
    except (ProfileNotFoundError, FileNotFoundError, ValueError) as e:
        return _print_error(e)

    console.print("Creating backup...", style="dim")
    try:
        manager = BackupManager(store, settings)
        record = await manager.create_backup(
            args.description,
            _split_tables(args.tables),
            compress=False if args.no_compress else None,
            verify=False if args.no_verify else None,
        )
    except BackupError as e:
        return _print_error(e)
    finally:
        await store.close()

    console.print()
    console.print(
        f"[bold green]v[/bold green] Backup created: [bold cyan]{record.id}[/bold cyan]"
    )
    console.print(
        f"  {len(record.table_manifest)} tables, {record.total_rows} rows, "
        f"{_format_size(record.size_bytes)}"
    )
    console.print(f"  Verified: {_STATUS_STYLE[record.verified]}")
    if record.verified == VerificationStatus.FAILED:
        return 1
    return 0


async def _async_restore(args: argparse.Namespace) -> int:
    """Async implementation for restore command.

    Without ``--yes`` only the recovery options are shown.

    Args:
        args: Parsed arguments with backup_id, tables, skip_verify,
            no_verify_after, safety_backup, yes, config, and env_prefix.

    Returns:
        0 on success, 1 on failure.
    """
    env_prefix = getattr(args, "env_prefix", "")
    tables = _split_tables(args.tables)

    try:
        settings = _load_settings(args)
        catalog = BackupCatalog(settings.directory)
        record = catalog.get(args.backup_id)
    except (BackupError, FileNotFoundError, ValueError) as e:
        return _print_error(e)

    targets = tables if tables is not None else record.table_names
    console.print(f"Restore from backup: [bold cyan]{record.id}[/bold cyan]")
    console.print(f"  Tables: [dim]{', '.join(targets)}[/dim]")
    console.print("[dim]Existing rows in these tables are replaced.[/dim]")

    if not args.yes:
        console.print()
        console.print(
            "[dim]To actually restore, add[/dim] [cyan]--yes[/cyan] [dim]flag.[/dim]"
        )
        return 0

    try:
        store = await get_store(env_prefix=env_prefix, config_path=_config_path(args))
    except (ProfileNotFoundError, FileNotFoundError, ValueError) as e:
        return _print_error(e)

    options = RestoreOptions(
        tables=tables,
        verify_before=not args.skip_verify,
        verify_after=not args.no_verify_after,
        create_safety_backup=args.safety_backup,
    )
    console.print()
    console.print("Restoring...", style="dim")
    try:
        result = await BackupManager(store, settings).restore(record.id, options)
    except BackupError as e:
        return _print_error(e)
    finally:
        await store.close()

    if result.safety_backup_id:
        console.print(f"  Safety backup: [cyan]{result.safety_backup_id}[/cyan]")

    summary = Table(title="Restore Result", show_header=True, header_style="bold")
    summary.add_column("Table")
    summary.add_column("Rows", justify="right")
    summary.add_column("Status")
    failed = {err.table: err for err in result.errors}
    for name in targets:
        rows = result.restored_tables.get(name)
        if name in failed:
            status = f"[red]{failed[name].error_type}[/red]: {failed[name].message}"
        else:
            status = "[green]ok[/green]"
        summary.add_row(name, "-" if rows is None else str(rows), status)
    console.print(summary)

    if result.success:
        console.print("[bold green]v[/bold green] Restore complete.")
        return 0
    console.print(
        f"[bold red]x[/bold red] Restore finished with {len(result.errors)} error(s)"
    )
    return 1


async def _async_run_scheduled(args: argparse.Namespace) -> int:
    """Async implementation for run-scheduled command.

    ``--frequency`` (re)configures the schedule and stops there unless
    ``--force`` is also given.  Without ``--force`` a backup is only taken
    when the schedule says one is due.

    Returns:
        0 on success or when nothing is due, 1 on failure.
    """
    env_prefix = getattr(args, "env_prefix", "")
    try:
        settings = _load_settings(args)
        store = await get_store(env_prefix=env_prefix, config_path=_config_path(args))
    except (ProfileNotFoundError, FileNotFoundError, ValueError) as e:
        return _print_error(e)

    try:
        manager = BackupManager(store, settings)
        if args.frequency:
            schedule = manager.schedule(args.frequency)
            console.print(f"Backup schedule configured: [bold]{schedule.frequency.value}[/bold]")
            console.print(f"Next run: {schedule.next_run.isoformat(timespec='minutes')}")
            if not args.force:
                return 0
        console.print("Checking schedule...", style="dim")
        record = await manager.run_scheduled(force=args.force)
    except BackupError as e:
        return _print_error(e)
    finally:
        await store.close()

    if record is None:
        console.print("No scheduled backup due at this time.", style="dim")
        return 0
    console.print(
        f"[bold green]v[/bold green] Backup created: [bold cyan]{record.id}[/bold cyan]"
    )
    console.print(
        f"  {len(record.table_manifest)} tables, {record.total_rows} rows, "
        f"{_format_size(record.size_bytes)}"
    )
    if record.verified == VerificationStatus.FAILED:
        console.print(f"  Verified: {_STATUS_STYLE[record.verified]}")
        return 1
    return 0


# ============================================================================
# Sync command wrappers (catalog commands read local files only)
# ============================================================================


def cmd_create(args: argparse.Namespace) -> int:
    """Capture a new backup.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_create(args))


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore all or some tables from a backup.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_restore(args))


def cmd_run_scheduled(args: argparse.Namespace) -> int:
    """Take the scheduled backup when due, for cron or systemd timers.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_run_scheduled(args))


def cmd_list(args: argparse.Namespace) -> int:
    """List backups, most recent first.

    Reads only the local catalog -- no database calls.
    """
    try:
        catalog = BackupCatalog(_load_settings(args).directory)
        records = catalog.list()
    except (BackupError, FileNotFoundError, ValueError) as e:
        return _print_error(e)

    if not records:
        console.print("[yellow]No backups found.[/yellow]")
        return 0

    table = Table(title="Backups", show_header=True, header_style="bold")
    table.add_column("ID", style="cyan")
    table.add_column("Created")
    table.add_column("Description")
    table.add_column("Tables", justify="right")
    table.add_column("Rows", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Verified")
    for record in records:
        table.add_row(
            record.id,
            record.created_at.isoformat(timespec="seconds"),
            record.description,
            str(len(record.table_manifest)),
            str(record.total_rows),
            _format_size(record.size_bytes),
            _STATUS_STYLE[record.verified],
        )
    console.print(table)
    return 0


def cmd_info(args: argparse.Namespace) -> int:
    """Show one backup and the tables it can restore."""
    try:
        catalog = BackupCatalog(_load_settings(args).directory)
        record = catalog.get(args.backup_id)
    except (BackupError, FileNotFoundError, ValueError) as e:
        return _print_error(e)
    _print_record(record)
    return 0


def cmd_test_restore(args: argparse.Namespace) -> int:
    """Verify a backup without touching the database.

    Returns:
        0 if the backup is restorable, 1 otherwise.
    """
    try:
        catalog = BackupCatalog(_load_settings(args).directory)
        report = IntegrityVerifier(catalog).verify(args.backup_id)
    except (BackupError, FileNotFoundError, ValueError) as e:
        return _print_error(e)

    if report.valid:
        console.print(
            f"[bold green]v[/bold green] Backup [cyan]{args.backup_id}[/cyan] "
            f"is restorable ({len(report.table_manifest)} tables)"
        )
        return 0

    console.print(
        f"[bold red]x[/bold red] Backup [cyan]{args.backup_id}[/cyan] failed verification"
    )
    console.print(f"  Error: {report.first_error}")
    if report.error_table:
        console.print(f"  Table: {report.error_table}")
    if report.error_offset is not None:
        console.print(f"  Offset: {report.error_offset}")
    return 1


def cmd_delete(args: argparse.Namespace) -> int:
    """Delete a backup file and its catalog entry."""
    try:
        catalog = BackupCatalog(_load_settings(args).directory)
        record = catalog.get(args.backup_id)
    except (BackupError, FileNotFoundError, ValueError) as e:
        return _print_error(e)

    if not args.yes:
        console.print(f"Would delete backup [cyan]{record.id}[/cyan] ({record.file_path})")
        console.print(
            "[dim]To actually delete, add[/dim] [cyan]--yes[/cyan] [dim]flag.[/dim]"
        )
        return 0

    try:
        catalog.remove(record.id)
    except BackupError as e:
        return _print_error(e)
    console.print(f"[bold green]v[/bold green] Deleted backup [cyan]{record.id}[/cyan]")
    return 0


def cmd_prune(args: argparse.Namespace) -> int:
    """Keep only the most recent backups."""
    try:
        settings = _load_settings(args)
        keep = settings.max_backups if args.keep is None else args.keep
        if not keep and args.keep is None:
            console.print("Retention disabled (max_backups = 0).", style="dim")
            return 0
        removed = BackupCatalog(settings.directory).prune(keep)
    except (BackupError, FileNotFoundError, ValueError) as e:
        return _print_error(e)

    if not removed:
        console.print(f"Nothing to prune (keeping {keep}).", style="dim")
        return 0
    console.print(f"[bold green]v[/bold green] Pruned {len(removed)} backup(s):")
    for backup_id in removed:
        console.print(f"  - {backup_id}")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show backup directory summary.

    Reads only local files (lock file, TOML config, catalog and schedule)
    -- no database calls.

    Returns:
        0 always (informational command) unless the catalog is unreadable.
    """
    try:
        status = read_status(_load_settings(args))
    except (BackupError, ValueError) as e:
        return _print_error(e)

    table = Table(title="Backup Status", show_header=False)
    table.add_column("Key", style="dim")
    table.add_column("Value")

    profile = read_profile_lock()
    table.add_row(
        "Current profile",
        f"[bold cyan]{profile}[/bold cyan]" if profile else "[yellow]none[/yellow]",
    )
    table.add_row("Backup directory", status.directory)
    table.add_row("Backups", f"{status.total_backups} (max {status.max_backups})")
    table.add_row("Total size", _format_size(status.total_size_bytes))
    if status.latest:
        latest = status.latest
        table.add_row(
            "Latest",
            f"{latest.id} ({latest.created_at.isoformat(timespec='seconds')})",
        )
        table.add_row("Latest verified", _STATUS_STYLE[latest.verified])
    if status.schedule:
        schedule = status.schedule
        table.add_row(
            "Schedule",
            schedule.frequency.value if schedule.enabled else "[yellow]disabled[/yellow]",
        )
        table.add_row("Next run", schedule.next_run.isoformat(timespec="minutes"))
    console.print(table)
    return 0


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from db.toml.

    Reads only local TOML config -- no database calls.

    Returns:
        0 on success, 1 if db.toml not found.
    """
    try:
        config = load_db_config(_config_path(args))
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    current = read_profile_lock()

    table = Table(
        title="Database Profiles", show_header=True, header_style="bold"
    )
    table.add_column("", width=2)
    table.add_column("Profile")
    table.add_column("Provider")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        marker = "[bold green]*[/bold green]" if name == current else " "
        name_style = "bold cyan" if name == current else ""
        table.add_row(
            marker,
            f"[{name_style}]{name}[/{name_style}]" if name_style else name,
            profile.provider,
            profile.description or "",
        )

    console.print(table)

    if current:
        console.print("\n[bold green]*[/bold green] = current profile")

    return 0


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="db-backup",
        description="Point-in-time backup and recovery for relational databases",
    )

    # Global options
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_DB_PROFILE)"
        ),
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to db.toml (default: ./db.toml)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # create command
    p_create = subparsers.add_parser("create", help="Capture a new backup")
    p_create.add_argument("--description", "-d", default="", help="Backup label")
    p_create.add_argument(
        "--tables",
        help="Comma-separated list of tables to capture (default: all)",
    )
    p_create.add_argument(
        "--no-compress", action="store_true", help="Write an uncompressed snapshot"
    )
    p_create.add_argument(
        "--no-verify", action="store_true", help="Skip verification after writing"
    )
    p_create.set_defaults(func=cmd_create)

    # list command
    p_list = subparsers.add_parser("list", help="List backups")
    p_list.set_defaults(func=cmd_list)

    # info command
    p_info = subparsers.add_parser("info", help="Show one backup")
    p_info.add_argument("backup_id")
    p_info.set_defaults(func=cmd_info)

    # test-restore command
    p_test = subparsers.add_parser(
        "test-restore", help="Verify a backup without touching the database"
    )
    p_test.add_argument("backup_id")
    p_test.set_defaults(func=cmd_test_restore)

    # restore command
    p_restore = subparsers.add_parser(
        "restore", help="Restore all or some tables from a backup"
    )
    p_restore.add_argument("backup_id")
    p_restore.add_argument(
        "--tables",
        help="Comma-separated list of tables to restore (default: all in backup)",
    )
    p_restore.add_argument(
        "--skip-verify",
        action="store_true",
        help="Skip pre-restore verification if the backup already passed",
    )
    p_restore.add_argument(
        "--no-verify-after",
        action="store_true",
        help="Skip the post-restore row count check",
    )
    p_restore.add_argument(
        "--safety-backup",
        action="store_true",
        help="Back up the target tables before restoring",
    )
    p_restore.add_argument(
        "--yes", action="store_true", help="Actually perform the restore"
    )
    p_restore.set_defaults(func=cmd_restore)

    # delete command
    p_delete = subparsers.add_parser("delete", help="Delete a backup")
    p_delete.add_argument("backup_id")
    p_delete.add_argument("--yes", action="store_true", help="Actually delete")
    p_delete.set_defaults(func=cmd_delete)

    # prune command
    p_prune = subparsers.add_parser("prune", help="Keep only the most recent backups")
    p_prune.add_argument(
        "--keep",
        type=int,
        default=None,
        help="Number of backups to keep (default: max_backups from db.toml)",
    )
    p_prune.set_defaults(func=cmd_prune)

    # run-scheduled command
    p_sched = subparsers.add_parser(
        "run-scheduled", help="Take the scheduled backup if one is due"
    )
    p_sched.add_argument(
        "--force", action="store_true", help="Back up even if no run is due"
    )
    p_sched.add_argument(
        "--frequency",
        choices=[f.value for f in ScheduleFrequency],
        help="Configure the schedule (hourly, daily or weekly)",
    )
    p_sched.set_defaults(func=cmd_run_scheduled)

    # status command
    p_status = subparsers.add_parser("status", help="Show backup directory summary")
    p_status.set_defaults(func=cmd_status)

    # profiles command
    p_profiles = subparsers.add_parser("profiles", help="List available profiles")
    p_profiles.set_defaults(func=cmd_profiles)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
