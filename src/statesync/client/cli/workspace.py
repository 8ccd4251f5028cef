"""Workspace commands for the StateSync CLI.

Commands:
- workspace create: Create a new workspace owned by this device
- workspace join: Join an existing workspace with its invite code
- workspace show: Show the workspace this device belongs to
- workspace leave: Forget the workspace on this device
"""

from __future__ import annotations

import sys

import click

from statesync.client.api import APIError, NotFoundError, SyncSkipped
from statesync.client.cli.config import run
from statesync.client.cli.sync import open_service
from statesync.client.keystore import PremiumRequired
from statesync.client.workspace import InvalidInviteCode, WorkspaceInfo


@click.group()
def workspace() -> None:
    """Manage the sync workspace of this device."""


def _pair(workspace_id: str | None, invite_code: str | None) -> WorkspaceInfo:
    async def _run() -> WorkspaceInfo:
        async with open_service() as service:
            return await service.create_or_join_workspace(workspace_id, invite_code)

    try:
        return run(_run())
    except PremiumRequired:
        click.echo("Error: Sync requires premium. Run 'statesync premium verify' first.", err=True)
        sys.exit(1)
    except InvalidInviteCode:
        click.echo("Error: Invalid invite code.", err=True)
        sys.exit(1)
    except NotFoundError:
        click.echo(f"Error: Workspace '{workspace_id}' not found.", err=True)
        sys.exit(1)
    except SyncSkipped as e:
        click.echo(f"Error: Could not reach the sync server ({e}).", err=True)
        sys.exit(1)
    except APIError as e:
        click.echo(f"Error: Backend request failed: {e}", err=True)
        sys.exit(1)


@workspace.command()
def create() -> None:
    """Create a new workspace owned by this device."""
    info = _pair(None, None)
    click.echo("Workspace created!")
    click.echo(f"Workspace ID: {info.id}")
    click.echo(f"Invite code: {info.invite_code}")
    click.echo("\nOn your other devices, run:")
    click.echo(f"  statesync workspace join {info.id} {info.invite_code}")


@workspace.command()
@click.argument("workspace_id")
@click.argument("invite_code")
def join(workspace_id: str, invite_code: str) -> None:
    """Join WORKSPACE_ID using its INVITE_CODE."""
    info = _pair(workspace_id, invite_code)
    click.echo(f"Joined workspace {info.id}")


@workspace.command()
def show() -> None:
    """Show the workspace this device belongs to."""

    async def _run() -> str | None:
        async with open_service() as service:
            return service.get_current_workspace_id()

    workspace_id = run(_run())
    if workspace_id is None:
        click.echo("This device is not paired with a workspace.")
        return
    click.echo(f"Workspace ID: {workspace_id}")


@workspace.command()
@click.option("--force", is_flag=True, help="Skip confirmation prompt.")
def leave(force: bool) -> None:
    """Forget the workspace on this device.

    The workspace and its snapshots stay on the server; this device can
    join again later with the invite code.
    """
    if not force and not click.confirm("Leave the current workspace?"):
        sys.exit(0)

    async def _run() -> bool:
        async with open_service() as service:
            return service.workspaces.leave_workspace()

    if not run(_run()):
        click.echo("Nothing to leave.")
        return
    click.echo("Left workspace.")
