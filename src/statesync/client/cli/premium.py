"""Premium and key commands for the StateSync CLI.

Commands:
- premium verify: Check premium entitlement and activate it locally
- premium check: Check premium entitlement without changing anything
- key check: Compare the cached workspace key with the server
- prefs: Show or change sync preferences
"""

from __future__ import annotations

import sys

import click

from statesync.client.api import APIError, SyncSkipped
from statesync.client.cli.config import run
from statesync.client.cli.sync import open_service
from statesync.client.premium import PremiumStatus


@click.group()
def premium() -> None:
    """Premium entitlement commands."""


@premium.command()
@click.argument("username")
@click.option("--device-id", default=None, help="Restrict the lookup to one device.")
def verify(username: str, device_id: str | None) -> None:
    """Verify USERNAME's premium entitlement and activate sync."""

    async def _run() -> bool:
        async with open_service() as service:
            return await service.verify_and_activate_premium(username, device_id)

    if run(_run()):
        click.echo(f"Premium activated for {username}.")
    else:
        click.echo(f"No active premium found for {username}.", err=True)
        sys.exit(1)


@premium.command()
@click.argument("username")
@click.option("--device-id", default=None, help="Restrict the lookup to one device.")
def check(username: str, device_id: str | None) -> None:
    """Check USERNAME's premium entitlement."""

    async def _run() -> PremiumStatus:
        async with open_service() as service:
            return await service.check_premium_status(username, device_id)

    result = run(_run())
    if result.is_premium and result.record is not None:
        click.echo(f"{username} is premium (plan: {result.record.plan_id or 'unknown'}).")
    else:
        click.echo(f"{username} is not premium.")


@click.group()
def key() -> None:
    """Sync key commands."""


@key.command("check")
def key_check() -> None:
    """Compare the cached workspace key with the server.

    A mismatch is repaired by replacing the cached key with the server's.
    """

    async def _run() -> bool | None:
        async with open_service() as service:
            workspace_id = service.get_current_workspace_id()
            if workspace_id is None:
                return None
            return await service.keys.check_key_sync(workspace_id)

    try:
        in_sync = run(_run())
    except SyncSkipped as e:
        click.echo(f"Error: Could not reach the sync server ({e}).", err=True)
        sys.exit(1)
    except APIError as e:
        click.echo(f"Error: Backend request failed: {e}", err=True)
        sys.exit(1)

    if in_sync is None:
        click.echo("This device is not paired with a workspace.", err=True)
        sys.exit(1)
    if in_sync:
        click.echo("Key is in sync with the workspace.")
    else:
        click.echo("Key was out of sync and has been replaced with the workspace key.")


@click.command()
@click.option("--username", default=None, help="Account name used for premium checks.")
@click.option(
    "--onboarded/--not-onboarded",
    default=None,
    help="Mark onboarding as completed (sync is skipped until it is).",
)
def prefs(username: str | None, onboarded: bool | None) -> None:
    """Show or change sync preferences."""

    async def _run() -> dict[str, object]:
        async with open_service() as service:
            changes: dict[str, object] = {}
            if username is not None:
                changes["username"] = username
            if onboarded is not None:
                changes["has_completed_onboarding"] = onboarded
            preferences = (
                service.state.update_preferences(**changes)
                if changes
                else service.state.load_preferences()
            )
            return {
                "username": preferences.username,
                "premium": preferences.premium,
                "onboarded": preferences.has_completed_onboarding,
            }

    values = run(_run())
    click.echo(f"Username: {values['username'] or '-'}")
    click.echo(f"Premium: {'yes' if values['premium'] else 'no'}")
    click.echo(f"Onboarding completed: {'yes' if values['onboarded'] else 'no'}")
