"""Sync key storage and management for StateSync.

This module provides:
- KeyCache: local cache of sync keys, mirrored into the OS keyring
- KeyManager: resolves, mints and reconciles workspace and device keys
- Device identity generation

The remote workspace record holds the authoritative shared key. The local
cache only saves a round-trip; whenever it disagrees with the backend, the
backend wins.
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import json
import logging
import platform
import secrets
import string
import time
from pathlib import Path
from typing import TYPE_CHECKING

import keyring

from statesync.client.telemetry import Telemetry, get_telemetry
from statesync.core.crypto import generate_random_key, is_valid_key
from statesync.core.types import DeviceIdentity, SyncIdentity, WorkspaceIdentity

if TYPE_CHECKING:
    from statesync.client.api import SyncTransport
    from statesync.client.state import LocalState

logger = logging.getLogger(__name__)

KEYS_FILE_NAME = "sync_keys.json"
KEYRING_SERVICE = "statesync"

WORKSPACE_KEY_PREFIX = "ws_key_"
DEVICE_KEY_SLOT = "device_key"

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


class PremiumRequired(Exception):
    """Sync keys are only issued to premium installs."""


def workspace_slot(workspace_id: str) -> str:
    """Cache slot of a workspace key."""
    return f"{WORKSPACE_KEY_PREFIX}{workspace_id}"


class KeyCache:
    """Local key cache stored in sync_keys.json.

    Writes are mirrored into the OS keyring when one is available; the
    keyring is read only when the file has no entry for a slot (e.g., after
    the config directory was wiped).

    Keyring entries are named after a hash of the config directory so
    separate installs on one machine never share slots.
    """

    def __init__(self, config_dir: Path, use_keyring: bool = True) -> None:
        self._path = Path(config_dir) / KEYS_FILE_NAME
        self._use_keyring = use_keyring
        resolved = str(Path(config_dir).expanduser().resolve())
        self._scope = hashlib.sha256(resolved.encode("utf-8")).hexdigest()[:16]

    def keyring_username(self, slot: str) -> str:
        """Keyring username a slot is stored under."""
        return f"{self._scope}:{slot}"

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning(f"Ignoring corrupted key cache {self._path}")
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _save(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        with contextlib.suppress(OSError):
            self._path.chmod(0o600)

    def get(self, slot: str) -> str | None:
        """Get the cached value of a slot, or None."""
        value = self._load().get(slot)
        if value is None and self._use_keyring:
            with contextlib.suppress(Exception):
                value = keyring.get_password(KEYRING_SERVICE, self.keyring_username(slot))
        return value

    def set(self, slot: str, key: str) -> None:
        """Cache a key under a slot."""
        data = self._load()
        data[slot] = key
        self._save(data)
        if self._use_keyring:
            with contextlib.suppress(Exception):
                keyring.set_password(KEYRING_SERVICE, self.keyring_username(slot), key)

    def delete(self, slot: str) -> None:
        """Remove a slot from the cache (missing slots are ignored)."""
        data = self._load()
        if data.pop(slot, None) is not None:
            self._save(data)
        if self._use_keyring:
            with contextlib.suppress(Exception):
                keyring.delete_password(KEYRING_SERVICE, self.keyring_username(slot))


def mint_device_id() -> str:
    """Create a new device identity string.

    Returns:
        "<platform>-<milliseconds since epoch>-<random suffix>".
    """
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(9))
    return f"{platform.system().lower() or 'unknown'}-{int(time.time() * 1000)}-{suffix}"


class KeyManager:
    """Resolves the key a snapshot is encrypted with."""

    def __init__(
        self,
        transport: SyncTransport,
        state: LocalState,
        cache: KeyCache | None = None,
        telemetry: Telemetry | None = None,
    ) -> None:
        """Initialize the key manager.

        Args:
            transport: Backend transport (workspace records).
            state: Local state (device id, preferences).
            cache: Local key cache (defaults to one in the state directory).
            telemetry: Sync log sink (defaults to the global instance).
        """
        self._transport = transport
        self._state = state
        self._cache = cache or KeyCache(state.config_dir)
        self._telemetry = telemetry or get_telemetry()
        self._lock = asyncio.Lock()

    # === Device identity ===

    def device_id(self) -> str:
        """Get this install's identity, creating it on first use."""
        device_id = self._state.read_device_id()
        if device_id:
            return device_id
        device_id = mint_device_id()
        self._state.write_device_id(device_id)
        self._telemetry.add_log(f"Generated device id {device_id}", "verbose")
        return device_id

    def generate_device_key(self) -> str:
        """Get this install's identity for sync purposes.

        Returns:
            The persisted device identity string.

        Raises:
            PremiumRequired: If the premium flag is not set.
        """
        if not self._state.load_preferences().premium:
            raise PremiumRequired("Sync is a premium feature")
        return self.device_id()

    def device_encryption_key(self) -> str:
        """Get the device-scoped key used when no workspace is configured."""
        key = self._cache.get(DEVICE_KEY_SLOT)
        if is_valid_key(key):
            assert key is not None
            return key
        key = generate_random_key()
        self._cache.set(DEVICE_KEY_SLOT, key)
        return key

    # === Workspace keys ===

    async def get_workspace_key(self, workspace_id: str) -> str:
        """Resolve the shared key of a workspace.

        Order: valid cached key, then valid remote key, then a freshly
        minted key written back to the workspace record. Whatever branch
        produces the key, it ends up in the local cache.

        Args:
            workspace_id: Workspace record id.

        Returns:
            64-hex-char shared key.
        """
        async with self._lock:
            slot = workspace_slot(workspace_id)
            cached = self._cache.get(slot)
            if is_valid_key(cached):
                assert cached is not None
                return cached

            workspace = await self._transport.get_workspace(workspace_id)
            key = workspace.shared_key
            if is_valid_key(key):
                assert key is not None
                self._telemetry.add_log("Using shared key from workspace record", "verbose")
            else:
                key = generate_random_key()
                await self._transport.update_workspace(workspace_id, {"shared_key": key})
                self._telemetry.add_log("Minted a new shared key for the workspace", "info")

            self._cache.set(slot, key)
            return key

    async def check_key_sync(self, workspace_id: str) -> bool:
        """Compare the cached key with the workspace record.

        On mismatch the remote key replaces the cached one; the cached key
        is never pushed to the backend.

        Returns:
            True if both keys matched before reconciliation.
        """
        async with self._lock:
            slot = workspace_slot(workspace_id)
            cached = self._cache.get(slot)
            workspace = await self._transport.get_workspace(workspace_id)
            remote = workspace.shared_key

            if cached == remote and is_valid_key(remote):
                return True

            if is_valid_key(remote):
                assert remote is not None
                self._cache.set(slot, remote)
                self._telemetry.add_log(
                    "Local key differed from workspace key, replaced it", "warning"
                )
            else:
                self._telemetry.add_log(
                    "Workspace record has no valid shared key, cache left as is", "warning"
                )
            return False

    def forget_workspace_key(self, workspace_id: str) -> None:
        """Drop the cached key of a workspace."""
        self._cache.delete(workspace_slot(workspace_id))

    async def resolve_identity(self, workspace_id: str | None) -> SyncIdentity:
        """Resolve the identity an operation runs under.

        Args:
            workspace_id: Joined workspace, or None for a standalone device.
        """
        if workspace_id:
            return WorkspaceIdentity(
                workspace_id=workspace_id,
                shared_key=await self.get_workspace_key(workspace_id),
            )
        return DeviceIdentity(device_id=self.device_id(), key=self.device_encryption_key())
