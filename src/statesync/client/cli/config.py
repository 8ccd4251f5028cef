"""Configuration utilities for the StateSync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, TypeVar

from statesync.core.config import ENV_CONFIG_DIR, SyncConfig, default_config_dir

T = TypeVar("T")

STATE_FILE_NAME = "state.json"
LOG_FILE_NAME = "statesync.log"


def get_config_dir() -> Path:
    """Get the configuration directory for StateSync.

    Returns:
        $STATESYNC_CONFIG_DIR if set, ~/.statesync otherwise.
    """
    env_dir = os.environ.get(ENV_CONFIG_DIR)
    return Path(env_dir).expanduser() if env_dir else default_config_dir()


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def get_state_file() -> Path:
    """Get the default application state file used by push and pull."""
    config = load_config()
    if config.get("state_file"):
        return Path(config["state_file"]).expanduser().resolve()
    return get_config_dir() / STATE_FILE_NAME


def build_sync_config() -> SyncConfig:
    """Build the sync configuration from the config file and environment.

    Servers saved with 'statesync configure' take precedence over
    $STATESYNC_SERVER_URLS.
    """
    config = load_config()
    overrides: dict[str, Any] = {"config_dir": get_config_dir()}
    if config.get("server_urls"):
        overrides["server_urls"] = list(config["server_urls"])
    if config.get("verify_ssl") is not None:
        overrides["verify_ssl"] = bool(config["verify_ssl"])
    return SyncConfig.from_env(**overrides)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging to stderr and to a log file in the config directory.

    Args:
        verbose: Log debug messages (verbose sync log entries) too.
    """
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = logging.Formatter(log_format)

    root_logger = logging.getLogger("statesync")
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(formatter)
    stderr_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root_logger.addHandler(stderr_handler)

    config_dir = get_config_dir()
    try:
        config_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(config_dir / LOG_FILE_NAME, encoding="utf-8")
    except OSError:
        return
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)


def run(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine to completion from a synchronous command."""
    return asyncio.run(coro)
