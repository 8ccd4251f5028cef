"""Sync log sink for StateSync.

This module provides:
- LogEntry: a single sync log line
- Telemetry: append-only log with subscribe/publish and logging integration
- get_telemetry/set_telemetry: process-wide default instance

Every entry is also forwarded to the standard ``logging`` module under the
``statesync.telemetry`` logger, so sync activity shows up in regular logs.
"""

from __future__ import annotations

import logging
import secrets
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from statesync.core.types import LogStatus

logger = logging.getLogger("statesync.telemetry")

LogSubscriber = Callable[[list["LogEntry"]], None]

_LEVELS = {
    LogStatus.INFO: logging.INFO,
    LogStatus.SUCCESS: logging.INFO,
    LogStatus.WARNING: logging.WARNING,
    LogStatus.ERROR: logging.ERROR,
    LogStatus.VERBOSE: logging.DEBUG,
}


def _new_log_id() -> str:
    return f"log_{int(datetime.now(UTC).timestamp() * 1000)}_{secrets.token_hex(4)}"


@dataclass
class LogEntry:
    """A sync log entry."""

    message: str
    status: LogStatus = LogStatus.INFO
    details: str | None = None
    id: str = field(default_factory=_new_log_id)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dict (used by the debug-log export)."""
        data: dict[str, Any] = {
            "id": self.id,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status.value,
        }
        if self.details is not None:
            data["details"] = self.details
        return data


class Telemetry:
    """Append-only sync log with subscribers.

    Usage:
        telemetry = Telemetry()
        unsubscribe = telemetry.subscribe(lambda entries: print(entries[-1]))
        telemetry.add_log("Pushing snapshot", "info")
        unsubscribe()
    """

    def __init__(self, max_entries: int = 1000) -> None:
        """Initialize the log.

        Args:
            max_entries: Oldest entries are dropped beyond this count.
        """
        self._entries: list[LogEntry] = []
        self._subscribers: list[LogSubscriber] = []
        self._max_entries = max_entries
        self._lock = threading.Lock()

    def add_log(
        self,
        message: str,
        status: LogStatus | str = LogStatus.INFO,
        details: str | None = None,
    ) -> LogEntry:
        """Append a log entry and notify subscribers.

        Args:
            message: Human readable message.
            status: One of info, success, warning, error, verbose.
            details: Optional extra information (e.g., an error message).

        Returns:
            The created entry.
        """
        entry = LogEntry(message=message, status=LogStatus(status), details=details)
        self.publish(entry)
        return entry

    def publish(self, entry: LogEntry) -> None:
        """Append an existing entry and notify subscribers."""
        with self._lock:
            self._entries.append(entry)
            if len(self._entries) > self._max_entries:
                del self._entries[: len(self._entries) - self._max_entries]
            snapshot = list(self._entries)
            subscribers = list(self._subscribers)

        if entry.details:
            logger.log(_LEVELS[entry.status], f"{entry.message} ({entry.details})")
        else:
            logger.log(_LEVELS[entry.status], entry.message)

        for callback in subscribers:
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Log subscriber failed")

    def subscribe(self, callback: LogSubscriber) -> Callable[[], None]:
        """Register a callback receiving the full entry list on every change.

        The callback is invoked immediately with the current entries.

        Returns:
            A function that removes the subscription.
        """
        with self._lock:
            self._subscribers.append(callback)
            snapshot = list(self._entries)
        callback(snapshot)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    @property
    def entries(self) -> list[LogEntry]:
        """Copy of all entries, oldest first."""
        with self._lock:
            return list(self._entries)

    def recent(self, count: int = 20) -> list[LogEntry]:
        """Get the most recent entries, oldest first."""
        with self._lock:
            return list(self._entries[-count:]) if count > 0 else []

    def clear(self) -> None:
        """Remove all entries and notify subscribers."""
        with self._lock:
            self._entries.clear()
            subscribers = list(self._subscribers)
        for callback in subscribers:
            callback([])


# Global instance
_telemetry: Telemetry | None = None


def get_telemetry() -> Telemetry:
    """Get the global Telemetry instance."""
    global _telemetry
    if _telemetry is None:
        _telemetry = Telemetry()
    return _telemetry


def set_telemetry(telemetry: Telemetry) -> None:
    """Set the global Telemetry instance."""
    global _telemetry
    _telemetry = telemetry


def add_log(
    message: str,
    status: LogStatus | str = LogStatus.INFO,
    details: str | None = None,
) -> LogEntry:
    """Append an entry to the global sync log."""
    return get_telemetry().add_log(message, status, details)
