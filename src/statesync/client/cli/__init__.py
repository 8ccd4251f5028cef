"""Command-line interface for StateSync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Save the sync server URLs
- workspace: Create, join, show or leave a workspace
- push / pull: Upload or download the encrypted application state
- export: Encrypt the application state locally
- status: Show the local sync configuration
- logs: Show the sync log
- premium: Check or activate premium entitlement
- key: Check the workspace key against the server
- prefs: Show or change sync preferences
"""

from __future__ import annotations

import click

from statesync.client.cli.config import (
    get_config_dir,
    get_config_file,
    load_config,
    save_config,
    setup_logging,
)
from statesync.client.cli.premium import key, prefs, premium
from statesync.client.cli.sync import export_snapshot, logs, pull, push, status
from statesync.client.cli.workspace import workspace
from statesync.core.config import with_port


@click.group()
@click.version_option(package_name="statesync")
@click.option("--verbose", "-v", is_flag=True, help="Show verbose sync logs.")
def cli(verbose: bool) -> None:
    """StateSync - Encrypted multi-device state synchronization."""
    setup_logging(verbose)


@cli.command()
@click.argument("server_urls", nargs=-1, required=True)
@click.option("--no-verify-ssl", is_flag=True, help="Do not verify SSL certificates.")
def configure(server_urls: tuple[str, ...], no_verify_ssl: bool) -> None:
    """Save SERVER_URLS, most preferred first.

    Backends are tried in order; the first one passing its health check
    is used.
    """
    config = load_config()
    config["server_urls"] = [with_port(url) for url in server_urls]
    config["verify_ssl"] = not no_verify_ssl
    save_config(config)
    click.echo(f"Saved {len(server_urls)} server(s) to {get_config_file()}")
    for url in config["server_urls"]:
        click.echo(f"  {url}")


# Workspace commands
cli.add_command(workspace)

# Sync commands
cli.add_command(push)
cli.add_command(pull)
cli.add_command(export_snapshot)
cli.add_command(status)
cli.add_command(logs)

# Premium and key commands
cli.add_command(premium)
cli.add_command(key)
cli.add_command(prefs)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "get_config_dir",
    "main",
]
