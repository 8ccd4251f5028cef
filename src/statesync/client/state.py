"""Local persisted sync state.

This module provides:
- Preferences: user flags that gate sync (premium, onboarding)
- LocalState: files kept in the config directory

Files:
    workspace_id.txt     plaintext id of the joined workspace
    state_snapshot.enc   last encoded snapshot (ciphertext)
    device_id            identity of this install
    preferences.json     Preferences
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

WORKSPACE_FILE = "workspace_id.txt"
SNAPSHOT_FILE = "state_snapshot.enc"
DEVICE_ID_FILE = "device_id"
PREFERENCES_FILE = "preferences.json"


@dataclass
class Preferences:
    """User preferences relevant to sync."""

    username: str | None = None
    premium: bool = False
    has_completed_onboarding: bool = False


def _write_atomic(path: Path, content: str) -> None:
    """Write a text file through a temporary sibling and rename it in place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp")
    tmp.write_text(content, encoding="utf-8")
    os.replace(tmp, path)


class LocalState:
    """Reads and writes the sync state files of one install."""

    def __init__(self, config_dir: Path) -> None:
        """Initialize local state.

        Args:
            config_dir: Directory holding the state files (created on first write).
        """
        self._dir = Path(config_dir)

    @property
    def config_dir(self) -> Path:
        return self._dir

    # === Workspace ===

    def read_workspace_id(self) -> str | None:
        """Get the joined workspace id, or None if this device is not paired."""
        path = self._dir / WORKSPACE_FILE
        try:
            workspace_id = path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        return workspace_id or None

    def write_workspace_id(self, workspace_id: str) -> None:
        _write_atomic(self._dir / WORKSPACE_FILE, workspace_id)

    def clear_workspace_id(self) -> bool:
        """Remove the workspace file.

        Returns:
            True if a file was removed.
        """
        path = self._dir / WORKSPACE_FILE
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    # === Snapshot cache ===

    def read_snapshot(self) -> str | None:
        """Get the cached ciphertext snapshot, if any."""
        try:
            return (self._dir / SNAPSHOT_FILE).read_text(encoding="utf-8") or None
        except FileNotFoundError:
            return None

    def write_snapshot(self, ciphertext: str) -> Path:
        """Cache a ciphertext snapshot.

        Returns:
            Path of the cache file.
        """
        path = self._dir / SNAPSHOT_FILE
        _write_atomic(path, ciphertext)
        return path

    # === Device identity ===

    def read_device_id(self) -> str | None:
        try:
            return (self._dir / DEVICE_ID_FILE).read_text(encoding="utf-8").strip() or None
        except FileNotFoundError:
            return None

    def write_device_id(self, device_id: str) -> None:
        _write_atomic(self._dir / DEVICE_ID_FILE, device_id)

    # === Preferences ===

    def load_preferences(self) -> Preferences:
        """Load preferences, falling back to defaults if the file is missing or invalid."""
        path = self._dir / PREFERENCES_FILE
        if not path.exists():
            return Preferences()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning(f"Ignoring corrupted preferences file {path}")
            return Preferences()
        known = Preferences.__dataclass_fields__
        return Preferences(**{k: v for k, v in data.items() if k in known})

    def save_preferences(self, preferences: Preferences) -> None:
        _write_atomic(self._dir / PREFERENCES_FILE, json.dumps(asdict(preferences), indent=2))

    def update_preferences(self, **changes: object) -> Preferences:
        """Update some preference fields and persist them.

        Returns:
            The updated preferences.
        """
        preferences = self.load_preferences()
        for name, value in changes.items():
            if name not in Preferences.__dataclass_fields__:
                raise ValueError(f"Unknown preference: {name}")
            setattr(preferences, name, value)
        self.save_preferences(preferences)
        return preferences
