"""Shared fixtures for StateSync tests."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from statesync.client.telemetry import Telemetry
from statesync.core.config import SyncConfig


@pytest.fixture(autouse=True)
def no_keyring() -> Iterator[MagicMock]:
    """Keep tests away from the OS keyring."""
    with patch("statesync.client.keystore.keyring") as mock_keyring:
        mock_keyring.get_password.return_value = None
        yield mock_keyring


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory."""
    config = tmp_path / ".statesync"
    config.mkdir()
    return config


@pytest.fixture
def sync_config(config_dir: Path) -> SyncConfig:
    """Sync configuration with three candidate backends and no retry delay."""
    return SyncConfig(
        server_urls=["http://a:8090", "http://b:8090", "http://c:8090"],
        config_dir=config_dir,
        connectivity_url="http://connectivity.test/generate_204",
        health_retry_delay=0,
    )


@pytest.fixture
def telemetry() -> Telemetry:
    """Fresh sync log."""
    return Telemetry()


class MemoryAggregator:
    """Application state layer kept in memory."""

    def __init__(self, state: Any = None) -> None:
        self.state = state if state is not None else {}
        self.hydrated: list[Any] = []

    def get_all_store_states(self) -> Any:
        return self.state

    def hydrate_all(self, state: Any) -> None:
        self.hydrated.append(state)
        self.state = state


@pytest.fixture
def aggregator() -> MemoryAggregator:
    """In-memory application state."""
    return MemoryAggregator({"settings": {"theme": "dark"}, "items": [1, 2, 3]})
