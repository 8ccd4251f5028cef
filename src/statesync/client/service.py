"""Assembled sync stack.

This module provides:
- SyncService: builds and owns transport, keys, workspace, premium and
  orchestrator components for one install, and exposes the public surface
  consumed by the application.
"""

from __future__ import annotations

from typing import Any

import httpx

from statesync.client.api import SyncTransport
from statesync.client.keystore import KeyCache, KeyManager
from statesync.client.premium import PremiumStatus, PremiumVerifier
from statesync.client.state import LocalState
from statesync.client.sync import StateAggregator, SyncOrchestrator, SyncOutcome
from statesync.client.telemetry import LogEntry, Telemetry, get_telemetry
from statesync.client.workspace import WorkspaceInfo, WorkspaceManager
from statesync.core.config import SyncConfig
from statesync.core.types import LogStatus, SyncStatus


class SyncService:
    """Public entry point of the sync subsystem.

    Usage:
        async with SyncService(SyncConfig.from_env(), aggregator) as service:
            await service.create_or_join_workspace()
            await service.push()
    """

    def __init__(
        self,
        config: SyncConfig,
        aggregator: StateAggregator,
        telemetry: Telemetry | None = None,
        http: httpx.AsyncClient | None = None,
        use_keyring: bool = True,
    ) -> None:
        self.config = config
        self.telemetry = telemetry or get_telemetry()
        self.state = LocalState(config.config_dir)
        self.transport = SyncTransport(config, http=http, telemetry=self.telemetry)
        self.keys = KeyManager(
            self.transport,
            self.state,
            cache=KeyCache(config.config_dir, use_keyring=use_keyring),
            telemetry=self.telemetry,
        )
        self.premium = PremiumVerifier(self.transport, self.keys, self.state, self.telemetry)
        self.workspaces = WorkspaceManager(
            self.transport,
            self.keys,
            self.state,
            telemetry=self.telemetry,
            is_syncing=lambda: self.orchestrator.is_syncing(),
        )
        self.orchestrator = SyncOrchestrator(
            self.transport,
            self.keys,
            self.workspaces,
            self.state,
            aggregator,
            telemetry=self.telemetry,
            operation_timeout=config.operation_timeout,
        )

    async def aclose(self) -> None:
        """Cancel in-flight syncs and close the transport."""
        self.orchestrator.cancel()
        await self.transport.aclose()

    async def __aenter__(self) -> SyncService:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    @property
    def status(self) -> SyncStatus:
        return self.orchestrator.status

    async def push(self) -> SyncOutcome:
        return await self.orchestrator.push()

    async def pull(self) -> SyncOutcome:
        return await self.orchestrator.pull()

    async def create_or_join_workspace(
        self, workspace_id: str | None = None, invite_code: str | None = None
    ) -> WorkspaceInfo:
        return await self.workspaces.create_or_join_workspace(workspace_id, invite_code)

    def get_current_workspace_id(self) -> str | None:
        return self.workspaces.get_current_workspace_id()

    async def get_workspace_key(self, workspace_id: str) -> str:
        return await self.keys.get_workspace_key(workspace_id)

    def generate_device_key(self) -> str:
        return self.keys.generate_device_key()

    async def check_premium_status(
        self, username: str, device_id: str | None = None
    ) -> PremiumStatus:
        return await self.premium.check_premium_status(username, device_id)

    async def verify_and_activate_premium(
        self, username: str, device_id: str | None = None
    ) -> bool:
        return await self.premium.verify_and_activate_premium(username, device_id)

    def add_log(
        self, message: str, status: LogStatus | str = LogStatus.INFO, details: str | None = None
    ) -> LogEntry:
        return self.telemetry.add_log(message, status, details)

    def summary(self) -> dict[str, Any]:
        """Summary of the local sync configuration (for status displays)."""
        preferences = self.state.load_preferences()
        return {
            "status": self.status.value,
            "workspace_id": self.state.read_workspace_id(),
            "device_id": self.state.read_device_id(),
            "premium": preferences.premium,
            "onboarded": preferences.has_completed_onboarding,
            "servers": list(self.config.server_urls),
        }
