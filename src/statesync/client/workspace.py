"""Workspace pairing for StateSync.

This module provides:
- WorkspaceManager: create or join a workspace and persist its id locally
- generate_invite_code: short human-shareable join token

A workspace groups the devices that share one snapshot history and one
shared key. The owner creates it and shares (workspace id, invite code)
with its other devices, which join with that pair.
"""

from __future__ import annotations

import logging
import secrets
import string
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from statesync.client.keystore import PremiumRequired
from statesync.client.telemetry import Telemetry, get_telemetry

if TYPE_CHECKING:
    from statesync.client.api import SyncTransport
    from statesync.client.keystore import KeyManager
    from statesync.client.state import LocalState

logger = logging.getLogger(__name__)

INVITE_CODE_LENGTH = 8
INVITE_CODE_ALPHABET = string.ascii_uppercase + string.digits


class WorkspaceError(Exception):
    """Base exception for workspace errors."""


class InvalidInviteCode(WorkspaceError):
    """The invite code does not match the workspace."""


@dataclass(frozen=True)
class WorkspaceInfo:
    """Workspace id and invite code, as shown to the user for pairing."""

    id: str
    invite_code: str


def generate_invite_code(length: int = INVITE_CODE_LENGTH) -> str:
    """Generate an uppercase alphanumeric invite code."""
    return "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(length))


def normalize_device_ids(device_ids: list[str]) -> list[str]:
    """Drop empty and duplicate device ids, keeping first-seen order."""
    return list(dict.fromkeys(d for d in device_ids if d))


class WorkspaceManager:
    """Creates, joins and remembers the workspace of this device."""

    def __init__(
        self,
        transport: SyncTransport,
        keys: KeyManager,
        state: LocalState,
        telemetry: Telemetry | None = None,
        is_syncing: Callable[[], bool] | None = None,
    ) -> None:
        """Initialize the workspace manager.

        Args:
            transport: Backend transport.
            keys: Key manager (provides the device id).
            state: Local state holding the workspace id file.
            telemetry: Sync log sink (defaults to the global instance).
            is_syncing: Returns True while a push or pull is running.
        """
        self._transport = transport
        self._keys = keys
        self._state = state
        self._telemetry = telemetry or get_telemetry()
        self._is_syncing = is_syncing or (lambda: False)

    def get_current_workspace_id(self) -> str | None:
        """Get the workspace this device joined.

        Returns:
            The workspace id, or None when the device is not paired yet.
        """
        workspace_id = self._state.read_workspace_id()
        if workspace_id:
            self._telemetry.add_log(f"Found workspace id {workspace_id}", "verbose")
        else:
            self._telemetry.add_log("No workspace configured on this device", "verbose")
        return workspace_id

    async def create_or_join_workspace(
        self,
        workspace_id: str | None = None,
        invite_code: str | None = None,
    ) -> WorkspaceInfo:
        """Create a new workspace, or join one when both arguments are given.

        Args:
            workspace_id: Workspace to join.
            invite_code: Invite code of that workspace (compared exactly).

        Returns:
            Id and invite code of the created or joined workspace.

        Raises:
            InvalidInviteCode: If the code does not match; nothing is written.
            PremiumRequired: If this install is not premium.
            ValueError: If only one of workspace_id and invite_code is given.
        """
        if (workspace_id is None) != (invite_code is None):
            raise ValueError("workspace_id and invite_code must be given together")

        if not self._state.load_preferences().premium:
            raise PremiumRequired("Sync is a premium feature")

        if workspace_id is not None and invite_code is not None:
            return await self._join(workspace_id, invite_code)
        return await self._create(self._keys.generate_device_key())

    async def _join(self, workspace_id: str, invite_code: str) -> WorkspaceInfo:
        self._telemetry.add_log(f"Joining workspace {workspace_id}", "info")
        workspace = await self._transport.get_workspace(workspace_id)

        if workspace.invite_code != invite_code:
            self._telemetry.add_log("Invalid invite code", "error")
            raise InvalidInviteCode(f"Invalid invite code for workspace {workspace_id}")

        # the device id is minted on first use, so only after the code matches
        device_id = self._keys.generate_device_key()
        await self.register_device_with_workspace(workspace_id, device_id)
        self._state.write_workspace_id(workspace_id)
        self._telemetry.add_log(f"Joined workspace {workspace_id}", "success")
        return WorkspaceInfo(id=workspace_id, invite_code=workspace.invite_code)

    async def _create(self, device_id: str) -> WorkspaceInfo:
        self._telemetry.add_log("Creating new sync workspace", "info")
        invite_code = generate_invite_code()
        workspace = await self._transport.create_workspace(
            owner_device_id=device_id,
            device_ids=[device_id],
            invite_code=invite_code,
        )
        self._state.write_workspace_id(workspace.id)
        self._telemetry.add_log(f"Created sync workspace {workspace.id}", "success")
        return WorkspaceInfo(id=workspace.id, invite_code=invite_code)

    async def register_device_with_workspace(self, workspace_id: str, device_id: str) -> bool:
        """Add a device to a workspace's device list.

        Empty and duplicate ids already on the record are dropped at the
        same time. The record is only written when the list changes.

        Returns:
            True if the record was updated.
        """
        if not device_id:
            raise ValueError("device_id must not be empty")

        workspace = await self._transport.get_workspace(workspace_id)
        device_ids = normalize_device_ids(workspace.device_ids)
        if device_id not in device_ids:
            device_ids.append(device_id)

        if device_ids == workspace.device_ids:
            self._telemetry.add_log("Device already registered with workspace", "verbose")
            return False

        await self._transport.update_workspace(workspace_id, {"device_ids": device_ids})
        self._telemetry.add_log(f"Registered device {device_id} with workspace", "info")
        return True

    def leave_workspace(self) -> bool:
        """Forget the joined workspace on this device.

        The local workspace id and cached workspace key are removed; the
        workspace record itself is left untouched.

        Returns:
            True if a workspace was left, False if nothing was done.
        """
        if self._is_syncing():
            self._telemetry.add_log("Cannot leave workspace while sync in progress", "warning")
            return False

        workspace_id = self._state.read_workspace_id()
        if not workspace_id:
            self._telemetry.add_log("No workspace to leave", "warning")
            return False

        self._state.clear_workspace_id()
        self._keys.forget_workspace_key(workspace_id)
        self._telemetry.add_log(f"Left workspace {workspace_id}", "success")
        return True
