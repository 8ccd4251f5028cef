"""Premium entitlement checks.

This module provides:
- PremiumStatus: result of an entitlement lookup
- PremiumVerifier: checks and activates premium against the backend

Lookups fail closed: any error resolves to "not premium" instead of
propagating to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from statesync.client.api import APIError, SyncSkipped
from statesync.client.telemetry import Telemetry, get_telemetry

if TYPE_CHECKING:
    from statesync.client.api import PremiumRecord, SyncTransport
    from statesync.client.keystore import KeyManager
    from statesync.client.state import LocalState

logger = logging.getLogger(__name__)

EXPORTED_LOG_COUNT = 20


@dataclass
class PremiumStatus:
    """Result of a premium lookup."""

    is_premium: bool
    record: PremiumRecord | None = None


class PremiumVerifier:
    """Checks premium entitlement and flips the local premium flag."""

    def __init__(
        self,
        transport: SyncTransport,
        keys: KeyManager,
        state: LocalState,
        telemetry: Telemetry | None = None,
    ) -> None:
        self._transport = transport
        self._keys = keys
        self._state = state
        self._telemetry = telemetry or get_telemetry()

    async def check_premium_status(
        self, username: str, device_id: str | None = None
    ) -> PremiumStatus:
        """Look up an active premium record for a user.

        Never raises. When the device is online the last sync log entries
        are exported to the backend afterwards, whatever the outcome.

        Args:
            username: Account name to look up.
            device_id: Optionally restrict the lookup to one device.
        """
        self._telemetry.add_log(f"Checking premium status for user: {username}", "info")
        online = False
        try:
            online = await self._transport.check_network_connectivity()
            if online:
                status = await self._lookup(username, device_id)
            else:
                self._telemetry.add_log(
                    "No network connectivity for premium verification", "warning"
                )
                status = PremiumStatus(is_premium=False)
        except Exception as e:
            self._telemetry.add_log("Error checking premium status", "error", str(e))
            status = PremiumStatus(is_premium=False)

        if online:
            await self._export_logs(username)
        else:
            self._telemetry.add_log("Skipping debug log export - no network connection", "verbose")
        return status

    async def _lookup(self, username: str, device_id: str | None) -> PremiumStatus:
        try:
            record = await self._transport.find_premium_record(username, device_id)
        except SyncSkipped:
            self._telemetry.add_log("Backend not available for premium verification", "warning")
            return PremiumStatus(is_premium=False)

        if record is None:
            self._telemetry.add_log(f"No premium access found for user: {username}", "warning")
            return PremiumStatus(is_premium=False)

        self._telemetry.add_log(f"Premium user found: {username}", "success")
        return PremiumStatus(is_premium=True, record=record)

    async def _export_logs(self, username: str) -> None:
        """Upload the most recent log entries, ignoring any failure."""
        entries = [entry.to_dict() for entry in self._telemetry.recent(EXPORTED_LOG_COUNT)]
        try:
            await self._transport.export_debug_logs(
                device_id=self._keys.device_id(),
                username=username or "unknown",
                entries=entries,
            )
        except (SyncSkipped, APIError, OSError) as e:
            logger.debug(f"Debug log export failed: {e}")
        except Exception:
            logger.exception("Unexpected error during debug log export")

    async def verify_and_activate_premium(
        self, username: str, device_id: str | None = None
    ) -> bool:
        """Activate premium locally if the backend confirms the entitlement.

        Returns:
            True if premium was activated, False otherwise (local state untouched).
        """
        status = await self.check_premium_status(username, device_id)
        if not status.is_premium or status.record is None:
            return False

        self._state.update_preferences(premium=True, username=username)
        plan = status.record.plan_id or "unknown"
        self._telemetry.add_log(f"Premium activated for {username} (Plan: {plan})", "success")
        return True
