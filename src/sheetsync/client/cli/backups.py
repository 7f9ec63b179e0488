"""Backup commands for the sheetsync CLI.

Commands:
- backups list: List backups of one target or of all targets
- backups restore: Copy a backup over the target's local file (or elsewhere)
- backups delete: Delete one backup or every backup of a target
- backups stats: Show backup totals
"""

from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import click

from sheetsync.client.cli.config import get_store, open_backups

if TYPE_CHECKING:
    from sheetsync.client.backup import BackupManager, BackupMetadata


def _format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def _format_time(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


def _find_backup(manager: BackupManager, backup_id: str) -> BackupMetadata:
    metadata = manager.index.get(backup_id)
    if metadata is None:
        click.echo(f"Error: No backup matching '{backup_id}'.", err=True)
        sys.exit(1)
    return metadata


@click.group()
def backups() -> None:
    """Inspect and restore backups."""


@backups.command("list")
@click.argument("target_id", required=False)
@click.option("--sheet", "sheet_id", default=None, help="List backups of a spreadsheet id instead.")
def list_backups(target_id: str | None, sheet_id: str | None) -> None:
    """List backups, newest first."""
    manager = open_backups()
    try:
        if sheet_id:
            entries = manager.list_backups_for_sheet(sheet_id)
        elif target_id:
            target = get_store().get_target(target_id)
            if target is None:
                click.echo(f"Error: No target matching '{target_id}'.", err=True)
                sys.exit(1)
            entries = manager.list_backups(target.id)
        else:
            entries = manager.all_backups()
    finally:
        manager.close()

    if not entries:
        click.echo("No backups found.")
        return

    for entry in sorted(entries, key=lambda b: b.backup_time, reverse=True):
        click.echo(
            f"{entry.id[:8]}  {_format_time(entry.backup_time)}  "
            f"{entry.remote_sheet_name}  {_format_size(entry.file_size_bytes)}  "
            f"{entry.row_count}x{entry.column_count}  {entry.file_name}"
        )


@backups.command("restore")
@click.argument("backup_id")
@click.option(
    "--to",
    "destination",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Destination file (default: the target's local file).",
)
@click.option("--yes", "-y", is_flag=True, help="Overwrite without asking.")
def restore_backup(backup_id: str, destination: Path | None, yes: bool) -> None:
    """Restore a backup.

    The checksum is verified before anything is overwritten. Restoring over
    a synced file makes its content a local change on the next sync.
    """
    from sheetsync.core.errors import SyncError

    manager = open_backups()
    try:
        metadata = _find_backup(manager, backup_id)

        if destination is None:
            target = get_store().get_target(metadata.target_id)
            if target is None:
                click.echo("Error: The backup's target no longer exists; use --to.", err=True)
                sys.exit(1)
            destination = target.local_file

        if destination.exists() and not yes:
            if not click.confirm(f"Overwrite {destination}?"):
                sys.exit(0)

        try:
            manager.restore_backup(metadata, destination)
        except SyncError as e:
            click.echo(f"Error: {e.user_message}", err=True)
            sys.exit(1)
    finally:
        manager.close()

    click.echo(f"Restored {metadata.file_name} to {destination}")


@backups.command("delete")
@click.argument("backup_id", required=False)
@click.option("--target", "target_id", default=None, help="Delete every backup of this target.")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
def delete_backup(backup_id: str | None, target_id: str | None, yes: bool) -> None:
    """Delete BACKUP_ID, or all backups of --target."""
    if bool(backup_id) == bool(target_id):
        click.echo("Error: Give either BACKUP_ID or --target.", err=True)
        sys.exit(2)

    manager = open_backups()
    try:
        if target_id:
            target = get_store().get_target(target_id)
            resolved = target.id if target else target_id
            if not yes and not click.confirm(f"Delete all backups of {resolved[:8]}?"):
                sys.exit(0)
            count = manager.delete_all_backups_for_target(resolved)
            click.echo(f"Deleted {count} backups.")
            return

        metadata = _find_backup(manager, backup_id or "")
        if not yes and not click.confirm(f"Delete backup {metadata.file_name}?"):
            sys.exit(0)
        manager.delete_backup(metadata)
        click.echo(f"Deleted {metadata.file_name}")
    finally:
        manager.close()


@backups.command("stats")
def backup_stats() -> None:
    """Show backup counts and disk usage."""
    manager = open_backups()
    try:
        stats = manager.stats()
        limit = manager.cache_limit
    finally:
        manager.close()

    click.echo(f"Backups:    {stats.total_backups}")
    click.echo(f"Total size: {_format_size(stats.total_size_bytes)} of {_format_size(limit)}")
    if stats.oldest_backup is not None and stats.newest_backup is not None:
        click.echo(f"Oldest:     {_format_time(stats.oldest_backup)}")
        click.echo(f"Newest:     {_format_time(stats.newest_backup)}")
    for sheet_id, count in sorted(stats.backups_by_sheet.items()):
        click.echo(f"  {sheet_id}: {count}")
