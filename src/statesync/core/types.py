"""Shared types for statesync.

This module defines the sync status enum and the identity a sync
operation runs under.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SyncStatus(str, Enum):
    """Process-wide sync status, mutated only by the orchestrator."""

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


class LogStatus(str, Enum):
    """Severity of a telemetry log entry."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    VERBOSE = "verbose"


@dataclass(frozen=True)
class DeviceIdentity:
    """Sync identity of a device that has not joined a workspace.

    Attributes:
        device_id: Persisted identity string of this install.
        key: Device-scoped 64-hex-char encryption key.
    """

    device_id: str
    key: str


@dataclass(frozen=True)
class WorkspaceIdentity:
    """Sync identity of a device that belongs to a workspace.

    Attributes:
        workspace_id: Remote workspace record id.
        shared_key: Workspace-wide 64-hex-char encryption key.
    """

    workspace_id: str
    shared_key: str

    @property
    def key(self) -> str:
        """Key used to encrypt snapshots for this identity."""
        return self.shared_key


SyncIdentity = DeviceIdentity | WorkspaceIdentity
