"""Sync target management commands for the sheetsync CLI.

Commands:
- targets add: Pair a remote spreadsheet with a local file
- targets sheets: List spreadsheets available to add
- targets list: Show configured targets
- targets remove: Forget a target (local file and backups are kept)
- targets enable / targets disable: Toggle syncing of a target
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from sheetsync.client.cli.config import (
    build_auth,
    get_state_db,
    get_store,
    open_backups,
)
from sheetsync.core.config import DEFAULT_SYNC_INTERVAL, MIN_SYNC_INTERVAL, SyncTarget
from sheetsync.core.types import FileEncoding


def _resolve_target(target_id: str) -> SyncTarget:
    target = get_store().get_target(target_id)
    if target is None:
        click.echo(f"Error: No target matching '{target_id}'.", err=True)
        sys.exit(1)
    return target


@click.group()
def targets() -> None:
    """Manage sync targets (spreadsheet ↔ local file pairs)."""


@targets.command("add")
@click.argument("sheet_id")
@click.option("--name", default=None, help="Spreadsheet name (default: fetched from Google).")
@click.option(
    "--dir",
    "local_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=".",
    show_default=True,
    help="Directory for the local file.",
)
@click.option(
    "--format",
    "file_format",
    type=click.Choice([e.value for e in FileEncoding]),
    default=FileEncoding.XLSX.value,
    show_default=True,
    help="Local file format.",
)
@click.option("--tab", "tabs", multiple=True, help="Only sync this tab (repeatable).")
@click.option("--file-name", default=None, help="Local file name without extension.")
@click.option(
    "--interval",
    type=float,
    default=DEFAULT_SYNC_INTERVAL,
    show_default=True,
    help=f"Sync interval in seconds (minimum {MIN_SYNC_INTERVAL:g}).",
)
@click.option("--confirm-first-sync", is_flag=True, help="Ask before the first download.")
@click.option("--no-backups", is_flag=True, help="Disable automatic backups.")
def add_target(
    sheet_id: str,
    name: str | None,
    local_dir: Path,
    file_format: str,
    tabs: tuple[str, ...],
    file_name: str | None,
    interval: float,
    confirm_first_sync: bool,
    no_backups: bool,
) -> None:
    """Add a sync target for the spreadsheet SHEET_ID.

    Examples:

        # Sync every tab into ./Budget.xlsx
        sheetsync targets add 1AbC... --name Budget

        # Sync a single tab as CSV every 5 minutes
        sheetsync targets add 1AbC... --tab Expenses --format csv --interval 300
    """
    from sheetsync.client.api import GoogleSheetsClient
    from sheetsync.client.sync import RateLimiter
    from sheetsync.core.errors import SyncError

    if name is None:
        try:
            with GoogleSheetsClient(build_auth(), RateLimiter()) as client:
                name = client.fetch_sheet_metadata(sheet_id).title
        except SyncError as e:
            click.echo(f"Error: {e.user_message}", err=True)
            sys.exit(1)

    if interval < MIN_SYNC_INTERVAL:
        click.echo(f"Note: Interval raised to the minimum of {MIN_SYNC_INTERVAL:g}s")

    target = SyncTarget(
        remote_sheet_id=sheet_id,
        remote_sheet_name=name,
        local_dir=local_dir.expanduser().resolve(),
        file_encoding=FileEncoding(file_format),
        selected_tabs=frozenset(tabs),
        sync_new_tabs=not tabs,
        custom_file_name=file_name,
        sync_interval_seconds=interval,
        confirm_first_sync=confirm_first_sync,
    )
    target.backup_policy.enabled = not no_backups

    get_store().save_target(target)
    click.echo(f"Added target {target.id[:8]}: {target.remote_sheet_name} → {target.local_file}")


@targets.command("sheets")
@click.option("--limit", type=int, default=20, show_default=True, help="Number of spreadsheets to show.")
def list_sheets(limit: int) -> None:
    """List spreadsheets available to add, most recently modified first."""
    from sheetsync.client.api import GoogleSheetsClient
    from sheetsync.client.sync import RateLimiter
    from sheetsync.core.errors import SyncError

    try:
        with GoogleSheetsClient(build_auth(), RateLimiter()) as client:
            sheets, _ = client.list_spreadsheets(page_size=limit)
    except SyncError as e:
        click.echo(f"Error: {e.user_message}", err=True)
        sys.exit(1)

    if not sheets:
        click.echo("No spreadsheets found.")
        return

    for sheet in sheets:
        modified = sheet.modified_time.strftime("%Y-%m-%d %H:%M") if sheet.modified_time else "-"
        click.echo(f"{sheet.id}  {modified}  {sheet.name}")


@targets.command("list")
def list_targets() -> None:
    """List configured sync targets."""
    configured = get_store().load_targets()
    if not configured:
        click.echo("No sync targets configured. Run 'sheetsync targets add' first.")
        return

    for target in configured:
        flag = "" if target.enabled else click.style(" (disabled)", fg="yellow")
        click.echo(f"{target.id[:8]}  {target.remote_sheet_name}{flag}")
        click.echo(f"    File:     {target.local_file}")
        tabs = ", ".join(sorted(target.selected_tabs)) if target.selected_tabs else "all"
        click.echo(f"    Tabs:     {tabs}")
        click.echo(f"    Interval: {target.sync_interval_seconds:g}s")


@targets.command("remove")
@click.argument("target_id")
@click.option("--delete-backups", is_flag=True, help="Also delete the target's backups.")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
def remove_target(target_id: str, delete_backups: bool, yes: bool) -> None:
    """Remove a sync target.

    The local file is never deleted. Backups are kept unless
    --delete-backups is given.
    """
    from sheetsync.client.state import BaselineStore

    target = _resolve_target(target_id)
    if not yes and not click.confirm(f"Remove target '{target.remote_sheet_name}'?"):
        sys.exit(0)

    get_store().remove_target(target.id)

    baselines = BaselineStore(get_state_db())
    try:
        baselines.delete(target.id)
    finally:
        baselines.close()

    if delete_backups:
        backups = open_backups()
        try:
            count = backups.delete_all_backups_for_target(target.id)
        finally:
            backups.close()
        click.echo(f"Deleted {count} backups.")

    click.echo(f"Removed target {target.id[:8]}. Local file kept: {target.local_file}")


def _set_enabled(target_id: str, enabled: bool) -> None:
    target = _resolve_target(target_id)
    get_store().save_target(target.copy(enabled=enabled))
    state = "enabled" if enabled else "disabled"
    click.echo(f"Target {target.id[:8]} ({target.remote_sheet_name}) {state}.")


@targets.command("enable")
@click.argument("target_id")
def enable_target(target_id: str) -> None:
    """Resume syncing a target."""
    _set_enabled(target_id, True)


@targets.command("disable")
@click.argument("target_id")
def disable_target(target_id: str) -> None:
    """Stop syncing a target without removing it."""
    _set_enabled(target_id, False)
