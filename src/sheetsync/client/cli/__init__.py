"""Command-line interface for sheetsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- login / logout: Manage Google credentials
- targets: Add, list, remove, enable and disable sync targets
- sync: Synchronize targets once or continuously (--watch)
- status: Show target state
- backups: List, restore, delete backups and show statistics
"""

from __future__ import annotations

import click

from sheetsync.client.cli.auth import login, logout
from sheetsync.client.cli.backups import backups
from sheetsync.client.cli.config import (
    build_auth,
    get_backup_dir,
    get_log_file,
    get_state_db,
    get_store,
    open_backups,
    open_engine,
    setup_logging,
)
from sheetsync.client.cli.sync import status, sync
from sheetsync.client.cli.targets import targets


@click.group()
@click.version_option(package_name="sheetsync")
@click.option("--verbose", "-v", is_flag=True, help="Log debug messages.")
def cli(verbose: bool) -> None:
    """sheetsync - Bidirectional sync between Google Sheets and local files."""
    setup_logging(get_log_file(), verbose)


# Credential commands
cli.add_command(login)
cli.add_command(logout)

# Target commands
cli.add_command(targets)

# Sync commands
cli.add_command(sync)
cli.add_command(status)

# Backup commands
cli.add_command(backups)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "build_auth",
    "get_backup_dir",
    "get_log_file",
    "get_state_db",
    "get_store",
    "open_backups",
    "open_engine",
    "setup_logging",
]
