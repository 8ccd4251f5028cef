"""Snapshot push/pull orchestration.

This module provides:
- StateAggregator: protocol the application state layer implements
- SyncOrchestrator: guarded push/pull state machine
- SyncOutcome: what a push or pull ended up doing

State machine:
    idle | error --begin--> syncing --success--> idle
                                    --failure--> error
                                    --cancel---> idle

Guards are evaluated in order before any work starts: premium flag,
onboarding completed, network reachable, workspace configured. The first
three skip the operation silently; a missing workspace raises
NoWorkspaceConfigured because the caller can fix it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from statesync.client.api import SyncSkipped
from statesync.client.telemetry import Telemetry, get_telemetry
from statesync.core.codec import SnapshotCodec, SnapshotSize, snapshot_size
from statesync.core.types import SyncStatus

if TYPE_CHECKING:
    from statesync.client.api import SyncTransport
    from statesync.client.keystore import KeyManager
    from statesync.client.state import LocalState
    from statesync.client.workspace import WorkspaceManager

logger = logging.getLogger(__name__)

DEFAULT_OPERATION_TIMEOUT = 30.0  # seconds
DEFAULT_MIN_EXPORT_INTERVAL = 10.0  # seconds

StatusCallback = Callable[[SyncStatus], None]


class StateAggregator(Protocol):
    """Application state layer.

    Both methods are synchronous and must not raise for any snapshot that
    was produced by get_all_store_states().
    """

    def get_all_store_states(self) -> Any:
        """Aggregate all local application state into one JSON-serializable object."""
        ...

    def hydrate_all(self, state: Any) -> None:
        """Replace local application state with a received object."""
        ...


class SyncError(Exception):
    """Base exception for sync errors."""


class NoWorkspaceConfigured(SyncError):
    """Sync was requested but this device has not joined a workspace."""


class SyncOutcome(str, Enum):
    """Result of a push or pull call."""

    COMPLETED = "completed"
    SKIPPED = "skipped"  # guard not met, or backend unreachable
    QUEUED = "queued"  # push coalesced into the one in flight
    EMPTY = "empty"  # pull found no snapshot yet
    CANCELLED = "cancelled"  # stopped by cancel()


class SyncOrchestrator:
    """Pushes and pulls encrypted snapshots of the application state.

    Operations on the same workspace never overlap: a push requested while
    another push runs is coalesced into one re-run after it, and a pull
    waits for the running operation to finish.

    Usage:
        orchestrator = SyncOrchestrator(transport, keys, workspaces, state, aggregator)
        await orchestrator.push()
        await orchestrator.pull()
    """

    def __init__(
        self,
        transport: SyncTransport,
        keys: KeyManager,
        workspaces: WorkspaceManager,
        state: LocalState,
        aggregator: StateAggregator,
        codec: SnapshotCodec | None = None,
        telemetry: Telemetry | None = None,
        operation_timeout: float = DEFAULT_OPERATION_TIMEOUT,
        min_export_interval: float = DEFAULT_MIN_EXPORT_INTERVAL,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            transport: Backend transport.
            keys: Key manager.
            workspaces: Workspace manager (current workspace id).
            state: Local state (preferences, snapshot cache).
            aggregator: Application state layer.
            codec: Snapshot codec.
            telemetry: Sync log sink (defaults to the global instance).
            operation_timeout: Upper bound for one push or pull in seconds.
            min_export_interval: A push within this many seconds of the last
                export reuses the cached ciphertext instead of re-aggregating.
        """
        self._transport = transport
        self._keys = keys
        self._workspaces = workspaces
        self._state = state
        self._aggregator = aggregator
        self._codec = codec or SnapshotCodec()
        self._telemetry = telemetry or get_telemetry()
        self._operation_timeout = operation_timeout
        self._min_export_interval = min_export_interval

        self._status = SyncStatus.IDLE
        self._status_callbacks: list[StatusCallback] = []
        self._locks: dict[str, asyncio.Lock] = {}
        self._pushing: set[str] = set()
        self._dirty: set[str] = set()
        self._last_export: dict[str, float] = {}
        self._inflight: set[asyncio.Task[Any]] = set()
        self.last_snapshot_size: SnapshotSize | None = None

    # === Status ===

    @property
    def status(self) -> SyncStatus:
        return self._status

    def is_syncing(self) -> bool:
        return self._status == SyncStatus.SYNCING

    def on_status_change(self, callback: StatusCallback) -> Callable[[], None]:
        """Register a callback invoked with each new status.

        Returns:
            A function that removes the callback.
        """
        self._status_callbacks.append(callback)
        return lambda: self._status_callbacks.remove(callback)

    def _set_status(self, status: SyncStatus) -> None:
        if status == self._status:
            return
        self._status = status
        for callback in list(self._status_callbacks):
            try:
                callback(status)
            except Exception:
                logger.exception("Status callback failed")

    # === Guards ===

    async def _guards_pass(self, operation: str) -> bool:
        preferences = self._state.load_preferences()
        if not preferences.premium:
            self._telemetry.add_log(f"Skipping {operation} - premium not active", "verbose")
            return False
        if not preferences.has_completed_onboarding:
            self._telemetry.add_log(f"Skipping {operation} - onboarding not completed", "warning")
            return False
        if not await self._transport.check_network_connectivity():
            self._telemetry.add_log(f"Skipping {operation} - no network connection", "warning")
            return False
        return True

    def _require_workspace(self, operation: str) -> str:
        workspace_id = self._workspaces.get_current_workspace_id()
        if not workspace_id:
            self._telemetry.add_log(f"No workspace configured, aborting {operation}", "warning")
            raise NoWorkspaceConfigured(f"Join or create a workspace before {operation}")
        return workspace_id

    def _lock_for(self, workspace_id: str) -> asyncio.Lock:
        if workspace_id not in self._locks:
            self._locks[workspace_id] = asyncio.Lock()
        return self._locks[workspace_id]

    # === Execution ===

    async def _run(
        self, operation: str, body: Callable[[], Awaitable[SyncOutcome]]
    ) -> SyncOutcome:
        """Run the body of a push or pull with status tracking.

        The body runs in its own task so cancel() never touches the caller.
        Silent-skip failures restore the previous status; any other failure
        sets the error status and propagates.
        """
        previous = self._status
        self._set_status(SyncStatus.SYNCING)
        task = asyncio.create_task(self._bounded(body))
        self._inflight.add(task)
        try:
            outcome = await task
        except TimeoutError:
            self._telemetry.add_log(
                f"Skipping {operation} - timed out after {self._operation_timeout:.0f}s",
                "warning",
            )
            self._set_status(previous)
            return SyncOutcome.SKIPPED
        except SyncSkipped as e:
            self._telemetry.add_log(f"Skipping {operation} silently", "warning", str(e))
            self._set_status(previous)
            return SyncOutcome.SKIPPED
        except asyncio.CancelledError:
            self._telemetry.add_log(f"{operation.capitalize()} cancelled", "warning")
            self._set_status(SyncStatus.IDLE)
            caller = asyncio.current_task()
            if caller is not None and caller.cancelling():
                # the caller itself is being cancelled; awaiting the task already cancelled it
                raise
            return SyncOutcome.CANCELLED
        except Exception as e:
            self._telemetry.add_log(f"Error during {operation}", "error", str(e))
            self._set_status(SyncStatus.ERROR)
            raise
        finally:
            self._inflight.discard(task)

        self._set_status(SyncStatus.IDLE)
        return outcome

    async def _bounded(self, body: Callable[[], Awaitable[SyncOutcome]]) -> SyncOutcome:
        async with asyncio.timeout(self._operation_timeout):
            return await body()

    def cancel(self) -> int:
        """Cancel in-flight pushes and pulls.

        The awaiting push() or pull() returns SyncOutcome.CANCELLED; the
        calling task is not cancelled.

        Returns:
            Number of operations that were cancelled.
        """
        tasks = [task for task in self._inflight if not task.done()]
        for task in tasks:
            task.cancel()
        return len(tasks)

    # === Push ===

    async def push(self) -> SyncOutcome:
        """Encrypt the current application state and upload it.

        A push requested while another one runs for the same workspace is
        queued; the running push re-runs once when it finishes, whether it
        succeeded or failed.

        Returns:
            What the push did.

        Raises:
            NoWorkspaceConfigured: If guards pass but no workspace is joined.
            APIError, CodecError: On backend or encoding failures (status is error).
        """
        if not await self._guards_pass("push"):
            return SyncOutcome.SKIPPED
        workspace_id = self._require_workspace("push")

        if workspace_id in self._pushing:
            self._dirty.add(workspace_id)
            self._telemetry.add_log("Push queued while another push is in progress", "verbose")
            return SyncOutcome.QUEUED

        async with self._lock_for(workspace_id):
            self._pushing.add(workspace_id)
            try:
                try:
                    outcome = await self._run(
                        "push", lambda: self._push_once(workspace_id, False)
                    )
                except Exception:
                    await self._run_queued_pushes(workspace_id, raise_errors=False)
                    raise
                if outcome != SyncOutcome.CANCELLED:
                    outcome = await self._run_queued_pushes(workspace_id) or outcome
            finally:
                self._pushing.discard(workspace_id)
                self._dirty.discard(workspace_id)
        return outcome

    async def _run_queued_pushes(
        self, workspace_id: str, raise_errors: bool = True
    ) -> SyncOutcome | None:
        outcome = None
        while workspace_id in self._dirty:
            self._dirty.discard(workspace_id)
            self._telemetry.add_log("Running queued push", "info")
            try:
                outcome = await self._run("push", lambda: self._push_once(workspace_id, True))
            except Exception:
                if raise_errors:
                    raise
                logger.debug("Queued push failed after a failed push", exc_info=True)
                continue
            if outcome == SyncOutcome.CANCELLED:
                break
        return outcome

    async def _push_once(self, workspace_id: str, force_export: bool) -> SyncOutcome:
        started = time.monotonic()
        device_id = self._keys.device_id()

        cipher = None
        last_export = self._last_export.get(workspace_id)
        if (
            not force_export
            and last_export is not None
            and started - last_export < self._min_export_interval
        ):
            cipher = self._state.read_snapshot()
            if cipher:
                self._telemetry.add_log("Export skipped, reusing cached snapshot", "verbose")

        if not cipher:
            key = await self._keys.get_workspace_key(workspace_id)
            cipher = self._codec.encode(self._aggregator.get_all_store_states(), key)
            path = self._state.write_snapshot(cipher)
            self._last_export[workspace_id] = time.monotonic()
            self._telemetry.add_log(f"Snapshot encrypted to {path.name}", "verbose")

        await self._transport.push_snapshot_record(workspace_id, device_id, cipher)
        self._telemetry.add_log(
            f"Pushed snapshot in {time.monotonic() - started:.2f}s", "success"
        )
        return SyncOutcome.COMPLETED

    # === Pull ===

    async def pull(self) -> SyncOutcome:
        """Download the latest snapshot of the workspace and hydrate local state.

        Returns:
            What the pull did.

        Raises:
            NoWorkspaceConfigured: If guards pass but no workspace is joined.
            CorruptSnapshot: If the snapshot cannot be decoded (status is error).
            APIError: On backend failures (status is error).
        """
        if not await self._guards_pass("pull"):
            return SyncOutcome.SKIPPED
        workspace_id = self._require_workspace("pull")

        async with self._lock_for(workspace_id):
            return await self._run("pull", lambda: self._pull_once(workspace_id))

    async def _pull_once(self, workspace_id: str) -> SyncOutcome:
        record = await self._transport.pull_latest_snapshot_record(workspace_id)
        if record is None:
            self._telemetry.add_log("No snapshots found on server yet", "info")
            return SyncOutcome.EMPTY

        self.last_snapshot_size = snapshot_size(record.blob)
        self._telemetry.add_log(
            f"Snapshot size: {self.last_snapshot_size.formatted}",
            "verbose",
            f"{self.last_snapshot_size.progress_percentage:.1f}% of quota",
        )

        key = await self._keys.get_workspace_key(workspace_id)
        state = self._codec.decode(record.blob, key)
        self._aggregator.hydrate_all(state)
        # Keep the pulled ciphertext as the baseline for the next push
        self._state.write_snapshot(record.blob)
        self._last_export.pop(workspace_id, None)
        self._telemetry.add_log(
            f"Snapshot from {record.device_id or 'unknown device'} applied", "success"
        )
        return SyncOutcome.COMPLETED

    # === Local export ===

    async def export_local_snapshot(self) -> Path:
        """Encrypt the current state into the local cache without uploading it.

        Uses the workspace key when a workspace is joined, the device key
        otherwise.

        Returns:
            Path of the snapshot cache file.
        """
        identity = await self._keys.resolve_identity(self._workspaces.get_current_workspace_id())
        cipher = self._codec.encode(self._aggregator.get_all_store_states(), identity.key)
        path = self._state.write_snapshot(cipher)
        self._telemetry.add_log(f"Exported encrypted state to {path}", "info")
        return path
