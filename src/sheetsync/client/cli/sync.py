"""Sync commands for the sheetsync CLI.

Commands:
- sync: Synchronize one or all targets, optionally watching for changes
- status: Show the state of every target
"""

from __future__ import annotations

import sys
import time
from datetime import datetime
from typing import TYPE_CHECKING

import click

from sheetsync.client.cli.config import get_state_db, get_store, open_backups, open_engine
from sheetsync.core.types import SyncStatus

if TYPE_CHECKING:
    from sheetsync.client.sync.engine import TargetState
    from sheetsync.core.config import SyncTarget
    from sheetsync.core.snapshot import SheetSnapshot

_STATUS_COLORS = {
    SyncStatus.IDLE: "green",
    SyncStatus.SYNCING: "cyan",
    SyncStatus.ERROR: "red",
    SyncStatus.RATE_LIMITED: "yellow",
    SyncStatus.PAUSED: "yellow",
}


def _format_state(target: SyncTarget, state: TargetState) -> str:
    label = click.style(state.status.value, fg=_STATUS_COLORS.get(state.status))
    return f"{target.remote_sheet_name}: [{label}] {state.status_description()}"


def _confirm_first_sync(target: SyncTarget, remote: SheetSnapshot) -> bool:
    click.echo(
        f"First sync of '{target.remote_sheet_name}': "
        f"{len(remote.tabs)} tab(s), {remote.non_empty_count()} cells."
    )
    if target.local_file.exists():
        click.echo(f"Warning: {target.local_file} will be overwritten.")
    return click.confirm("Download the spreadsheet now?", default=True)


@click.command()
@click.argument("target_id", required=False)
@click.option("--watch", "-w", is_flag=True, help="Keep running: sync periodically and on file changes.")
def sync(target_id: str | None, watch: bool) -> None:
    """Synchronize targets with Google Sheets.

    Without TARGET_ID every enabled target is synced once. Use --watch to
    keep syncing until interrupted.
    """
    store = get_store()
    if not store.load_targets():
        click.echo("No sync targets configured. Run 'sheetsync targets add' first.", err=True)
        sys.exit(1)

    if target_id is not None:
        target = store.get_target(target_id)
        if target is None:
            click.echo(f"Error: No target matching '{target_id}'.", err=True)
            sys.exit(1)
        selected = [target]
    else:
        selected = [t for t in store.load_targets() if t.enabled]

    with open_engine({t.id for t in selected}) as engine:
        engine.confirm_first_sync = _confirm_first_sync

        if not watch:
            failed = 0
            for target in selected:
                if not target.enabled:
                    click.echo(f"{target.remote_sheet_name}: disabled, skipping")
                    continue
                state = engine.trigger_sync(target.id)
                if state is None:
                    continue
                click.echo(_format_state(target, state))
                if state.status in (SyncStatus.ERROR, SyncStatus.RATE_LIMITED):
                    failed += 1
            if failed:
                sys.exit(1)
            return

        by_id = {t.id: t for t in selected}

        def on_state_change(changed_id: str, state: TargetState) -> None:
            target = by_id.get(changed_id)
            if target is not None and state.status != SyncStatus.SYNCING:
                click.echo(_format_state(target, state))

        engine.on_state_change = on_state_change

        click.echo(f"Watching {len(by_id)} target(s)... (Ctrl+C to stop)\n")
        engine.start(sync_now=True)
        try:
            while True:
                time.sleep(1.0)
        except KeyboardInterrupt:
            click.echo("\nStopping...")


@click.command()
def status() -> None:
    """Show configured targets, their last sync and backups."""
    from sheetsync.client.state import BaselineStore

    configured = get_store().load_targets()
    if not configured:
        click.echo("No sync targets configured.")
        return

    baselines = BaselineStore(get_state_db())
    backups = open_backups()
    try:
        for target in configured:
            baseline = baselines.get(target.id)
            if not target.enabled:
                state = click.style("disabled", fg="yellow")
            elif baseline is None:
                state = click.style("never synced", fg="yellow")
            else:
                when = datetime.fromtimestamp(baseline.captured_at).strftime("%Y-%m-%d %H:%M:%S")
                state = click.style(f"baseline from {when}", fg="green")

            click.echo(f"{target.id[:8]}  {target.remote_sheet_name}: {state}")
            click.echo(f"    File:    {target.local_file}" + ("" if target.local_file.exists() else " (missing)"))
            count = len(backups.list_backups(target.id))
            last = target.backup_policy.last_backup_at
            last_str = datetime.fromtimestamp(last).strftime("%Y-%m-%d %H:%M") if last else "never"
            click.echo(f"    Backups: {count} (last automatic: {last_str})")
    finally:
        baselines.close()
        backups.close()
