"""Shared configuration classes for statesync.

This module defines the configuration used by the transport, the key cache
and the local state files.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_PORT = 8090
DEFAULT_CONNECTIVITY_URL = "https://clients3.google.com/generate_204"

ENV_SERVER_URLS = "STATESYNC_SERVER_URLS"
ENV_CONFIG_DIR = "STATESYNC_CONFIG_DIR"

_PORT_SUFFIX = re.compile(r":\d+$")


def with_port(url: str, default_port: int = DEFAULT_PORT) -> str:
    """Normalize a backend URL.

    Removes trailing slashes and appends the default port when the URL
    does not carry one.

    Args:
        url: Raw backend URL (e.g., "http://sync.example.com/").
        default_port: Port to append when missing.

    Returns:
        Normalized URL (e.g., "http://sync.example.com:8090").
    """
    url = url.strip().rstrip("/")
    if _PORT_SUFFIX.search(url):
        return url
    return f"{url}:{default_port}"


def default_config_dir() -> Path:
    """Get the default configuration directory.

    Returns:
        Path to ~/.statesync or equivalent.
    """
    return Path.home() / ".statesync"


@dataclass
class SyncConfig:
    """Configuration for talking to a sync backend.

    Attributes:
        server_urls: Candidate backend URLs, in order of preference.
        config_dir: Directory holding local sync state (keys, workspace id, cache).
        health_path: Path checked to decide whether a backend is alive.
        health_timeout: Timeout of a single health check in seconds.
        health_attempts: Health checks per candidate before moving on.
        health_retry_delay: Delay between health checks in seconds.
        connectivity_url: Well-known external URL used as network pre-flight.
        request_timeout: Timeout of a single backend request in seconds.
        operation_timeout: Upper bound for a whole push or pull in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    server_urls: list[str] = field(default_factory=list)
    config_dir: Path = field(default_factory=default_config_dir)
    health_path: str = "/api/health"
    health_timeout: float = 3.0
    health_attempts: int = 2
    health_retry_delay: float = 0.4
    connectivity_url: str = DEFAULT_CONNECTIVITY_URL
    request_timeout: float = 30.0
    operation_timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URLs and drop empty entries."""
        self.server_urls = [with_port(url) for url in self.server_urls if url and url.strip()]
        self.config_dir = Path(self.config_dir).expanduser()

    @classmethod
    def from_env(cls, **overrides: object) -> SyncConfig:
        """Build a configuration from environment variables.

        Reads STATESYNC_SERVER_URLS (comma-separated) and STATESYNC_CONFIG_DIR.
        Keyword arguments take precedence over the environment.
        """
        values: dict[str, object] = {}
        raw_urls = os.environ.get(ENV_SERVER_URLS)
        if raw_urls:
            values["server_urls"] = raw_urls.split(",")
        config_dir = os.environ.get(ENV_CONFIG_DIR)
        if config_dir:
            values["config_dir"] = Path(config_dir)
        values.update(overrides)
        return cls(**values)  # type: ignore[arg-type]
