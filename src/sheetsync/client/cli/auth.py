"""Credential commands for the sheetsync CLI.

Commands:
- login: Store OAuth client credentials and a refresh token in the keyring
- logout: Remove stored credentials
"""

from __future__ import annotations

import sys

import click


@click.command()
@click.option("--client-id", prompt=True, help="OAuth client id.")
@click.option("--client-secret", prompt=True, hide_input=True, help="OAuth client secret.")
@click.option("--refresh-token", prompt=True, hide_input=True, help="OAuth refresh token.")
@click.option("--no-check", is_flag=True, help="Store without exchanging the token first.")
def login(client_id: str, client_secret: str, refresh_token: str, no_check: bool) -> None:
    """Store Google credentials in the OS keyring.

    The refresh token is exchanged once for an access token to verify it,
    unless --no-check is given.
    """
    from keyring.errors import KeyringError

    from sheetsync.client.auth import OAuthCredentials, OAuthTokenProvider, save_credentials
    from sheetsync.core.errors import SyncError

    credentials = OAuthCredentials(
        client_id=client_id,
        client_secret=client_secret,
        refresh_token=refresh_token,
    )

    if not no_check:
        try:
            OAuthTokenProvider(loader=lambda: credentials).get_valid_credential()
        except SyncError as e:
            click.echo(f"Error: {e.user_message}", err=True)
            sys.exit(1)

    try:
        save_credentials(credentials)
    except KeyringError as e:
        click.echo(f"Error: Cannot store credentials: {e}", err=True)
        sys.exit(1)

    click.echo("Signed in. Credentials stored in the system keyring.")


@click.command()
def logout() -> None:
    """Remove stored Google credentials."""
    from sheetsync.client.auth import clear_credentials

    if clear_credentials():
        click.echo("Signed out.")
    else:
        click.echo("No stored credentials.")
