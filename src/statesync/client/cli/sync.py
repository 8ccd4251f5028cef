"""Sync commands for the StateSync CLI.

Commands:
- push: Encrypt the state file and upload it to the workspace
- pull: Download the latest workspace snapshot into the state file
- export: Encrypt the state file into the local snapshot cache only
- status: Show the local sync configuration
- logs: Show the tail of the sync log file
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import click

from statesync.client.api import APIError
from statesync.client.cli.config import (
    LOG_FILE_NAME,
    build_sync_config,
    get_config_dir,
    get_state_file,
    run,
)
from statesync.client.service import SyncService
from statesync.client.sync import NoWorkspaceConfigured, SyncOutcome
from statesync.core.codec import CodecError

_OUTCOME_MESSAGES = {
    SyncOutcome.COMPLETED: "done",
    SyncOutcome.SKIPPED: "skipped (premium, onboarding or network not ready)",
    SyncOutcome.QUEUED: "queued behind a running push",
    SyncOutcome.EMPTY: "no snapshot on the server yet",
    SyncOutcome.CANCELLED: "cancelled",
}


class JsonFileStateAggregator:
    """Application state kept in a single JSON file.

    A missing file is an empty state.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def get_all_store_states(self) -> Any:
        if not self.path.exists():
            return {}
        return json.loads(self.path.read_text(encoding="utf-8"))

    def hydrate_all(self, state: Any) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(state, indent=2, ensure_ascii=False), encoding="utf-8")


def open_service(state_file: Path | None = None) -> SyncService:
    """Build the sync service for CLI commands."""
    aggregator = JsonFileStateAggregator(state_file or get_state_file())
    return SyncService(build_sync_config(), aggregator)


async def _sync(operation: str, state_file: Path | None) -> SyncOutcome:
    async with open_service(state_file) as service:
        if operation == "push":
            return await service.push()
        return await service.pull()


def _run_sync(operation: str, state_file: Path | None) -> None:
    try:
        outcome = run(_sync(operation, state_file))
    except NoWorkspaceConfigured:
        click.echo("Error: No workspace configured.", err=True)
        click.echo("Run 'statesync workspace create' or 'statesync workspace join' first.")
        sys.exit(1)
    except CodecError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except APIError as e:
        click.echo(f"Error: Backend request failed: {e}", err=True)
        sys.exit(1)
    except json.JSONDecodeError as e:
        click.echo(f"Error: State file is not valid JSON: {e}", err=True)
        sys.exit(1)

    click.echo(f"{operation.capitalize()}: {_OUTCOME_MESSAGES[outcome]}")


state_option = click.option(
    "--state",
    "state_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Application state JSON file (default: ~/.statesync/state.json).",
)


@click.command()
@state_option
def push(state_file: Path | None) -> None:
    """Encrypt the application state and upload it to the workspace."""
    _run_sync("push", state_file)


@click.command()
@state_option
def pull(state_file: Path | None) -> None:
    """Download the latest workspace snapshot and apply it to the state file."""
    _run_sync("pull", state_file)


@click.command("export")
@state_option
def export_snapshot(state_file: Path | None) -> None:
    """Encrypt the application state into the local snapshot cache."""

    async def _export() -> Path:
        async with open_service(state_file) as service:
            return await service.orchestrator.export_local_snapshot()

    try:
        path = run(_export())
    except (APIError, CodecError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Encrypted snapshot written to {path}")


@click.command()
def status() -> None:
    """Show the local sync configuration."""

    async def _summary() -> dict[str, Any]:
        async with open_service() as service:
            return service.summary()

    summary = run(_summary())
    click.echo(f"Workspace: {summary['workspace_id'] or 'not paired'}")
    click.echo(f"Device: {summary['device_id'] or 'not generated yet'}")
    click.echo(f"Premium: {'yes' if summary['premium'] else 'no'}")
    click.echo(f"Onboarding completed: {'yes' if summary['onboarded'] else 'no'}")
    servers = ", ".join(summary["servers"]) or "none configured"
    click.echo(f"Servers: {servers}")


@click.command()
@click.option("--count", "-n", default=20, show_default=True, help="Number of lines.")
def logs(count: int) -> None:
    """Show the sync log file."""
    log_file = get_config_dir() / LOG_FILE_NAME
    if not log_file.exists():
        click.echo("No sync log yet.")
        return
    lines = log_file.read_text(encoding="utf-8").splitlines()
    for line in lines[-count:]:
        click.echo(line)
