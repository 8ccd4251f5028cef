"""HTTP transport for the StateSync collection backend.

This module provides:
- SyncTransport: endpoint discovery, health checks and typed collection calls
- CollectionClient: thin async client for a PocketBase-style records API
- Record dataclasses for workspaces, snapshots and premium users

Backend collections:
    sync_workspaces     {id, owner_device_id, device_ids, invite_code, shared_key?}
    registry_snapshots  {workspace_id, device_id, snapshot_blob, created}
    premium_users       {username, device_id, is_active, plan_id, ...}
    debug_logs          {device_id, username, timestamp, logs}
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import httpx

from statesync.client.retry import first_success, retry_with_backoff
from statesync.client.telemetry import Telemetry, get_telemetry
from statesync.core.config import SyncConfig

logger = logging.getLogger(__name__)

WORKSPACES = "sync_workspaces"
SNAPSHOTS = "registry_snapshots"
PREMIUM_USERS = "premium_users"
DEBUG_LOGS = "debug_logs"

# Older backends answer /api/health with 401 or 404 while being alive
HEALTHY_STATUSES = frozenset({200, 401, 404})


class APIError(Exception):
    """Base exception for backend errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Authentication or authorization failed."""


class NotFoundError(APIError):
    """Resource not found."""


class SyncSkipped(Exception):
    """Base exception for conditions that skip a sync silently."""


class NetworkUnavailable(SyncSkipped):
    """The network or the selected backend stopped answering."""


class NoEndpointReachable(SyncSkipped):
    """No candidate backend passed its health checks."""

    def __init__(self, candidates: list[str]) -> None:
        super().__init__(f"No backend reachable among {len(candidates)} candidate(s)")
        self.candidates = candidates


def _parse_timestamp(value: str | None) -> datetime | None:
    """Parse a backend timestamp ("2025-01-01 10:00:00.123Z" or ISO 8601)."""
    if not value:
        return None
    return datetime.fromisoformat(value.replace(" ", "T", 1))


def _quote(value: str) -> str:
    """Quote a string literal for a backend filter expression."""
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


@dataclass
class WorkspaceRecord:
    """Workspace record from the backend."""

    id: str
    owner_device_id: str
    device_ids: list[str]
    invite_code: str
    shared_key: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkspaceRecord:
        """Create from API response dictionary."""
        return cls(
            id=data["id"],
            owner_device_id=data.get("owner_device_id") or "",
            device_ids=list(data.get("device_ids") or []),
            invite_code=data.get("invite_code") or "",
            shared_key=data.get("shared_key") or None,
        )


@dataclass
class SnapshotRecord:
    """Snapshot record from the backend."""

    workspace_id: str
    device_id: str
    blob: str
    created: datetime | None = None
    id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SnapshotRecord:
        """Create from API response dictionary."""
        return cls(
            id=data.get("id"),
            workspace_id=data["workspace_id"],
            device_id=data.get("device_id") or "",
            blob=data["snapshot_blob"],
            created=_parse_timestamp(data.get("created")),
        )


@dataclass
class PremiumRecord:
    """Active premium entitlement from the backend."""

    username: str
    device_id: str | None
    is_active: bool
    plan_id: str | None = None
    id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PremiumRecord:
        """Create from API response dictionary."""
        known = {"id", "username", "device_id", "is_active", "plan_id"}
        return cls(
            id=data.get("id"),
            username=data["username"],
            device_id=data.get("device_id") or None,
            is_active=bool(data.get("is_active")),
            plan_id=data.get("plan_id") or None,
            extra={k: v for k, v in data.items() if k not in known},
        )


class CollectionClient:
    """Async client for the records API of one backend."""

    def __init__(self, http: httpx.AsyncClient, base_url: str, timeout: float) -> None:
        """Initialize the collection client.

        Args:
            http: Shared HTTP client.
            base_url: Selected backend URL.
            timeout: Request timeout in seconds.
        """
        self._http = http
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    @property
    def base_url(self) -> str:
        return self._base_url

    def _url(self, collection: str, record_id: str | None = None) -> str:
        url = f"{self._base_url}/api/collections/{collection}/records"
        return f"{url}/{record_id}" if record_id else url

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code in (401, 403):
            raise AuthenticationError("Not authorized for this collection", response.status_code)
        if response.status_code == 404:
            raise NotFoundError("Resource not found", 404)
        if response.status_code >= 400:
            try:
                detail = response.json().get("message", "Unknown error")
            except ValueError:
                detail = response.text or "Unknown error"
            raise APIError(detail, response.status_code)
        return response

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = await self._http.request(method, url, timeout=self._timeout, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkUnavailable(f"Request to {url} timed out") from e
        except httpx.TransportError as e:
            raise NetworkUnavailable(f"Request to {url} failed: {e}") from e
        return self._handle_response(response).json()

    async def list_records(
        self,
        collection: str,
        filter: str | None = None,
        sort: str | None = None,
        page: int = 1,
        per_page: int = 30,
    ) -> list[dict[str, Any]]:
        """List records of a collection.

        Returns:
            Items of the requested page.
        """
        params: dict[str, str] = {"page": str(page), "perPage": str(per_page)}
        if filter:
            params["filter"] = filter
        if sort:
            params["sort"] = sort
        data = await self._request("GET", self._url(collection), params=params)
        return list(data.get("items", []))

    async def get_first(self, collection: str, filter: str) -> dict[str, Any]:
        """Get the first record matching a filter.

        Raises:
            NotFoundError: If no record matches.
        """
        items = await self.list_records(collection, filter=filter, per_page=1)
        if not items:
            raise NotFoundError(f"No {collection} record matches {filter}", 404)
        return items[0]

    async def get_record(self, collection: str, record_id: str) -> dict[str, Any]:
        """Get a record by id.

        Raises:
            NotFoundError: If the record does not exist.
        """
        result: dict[str, Any] = await self._request("GET", self._url(collection, record_id))
        return result

    async def create_record(self, collection: str, data: dict[str, Any]) -> dict[str, Any]:
        """Create a record and return it as stored by the backend."""
        result: dict[str, Any] = await self._request("POST", self._url(collection), json=data)
        return result

    async def update_record(
        self, collection: str, record_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        """Patch a record and return it as stored by the backend."""
        result: dict[str, Any] = await self._request(
            "PATCH", self._url(collection, record_id), json=data
        )
        return result


class SyncTransport:
    """Network layer of the sync subsystem.

    Discovers a reachable backend among the configured candidates and
    exposes typed wrappers over the collections the sync flow needs. The
    selected backend is kept until a request fails at the network level.

    Usage:
        async with SyncTransport(SyncConfig(server_urls=["http://pb.local"])) as transport:
            if await transport.check_network_connectivity():
                record = await transport.pull_latest_snapshot_record("ws1")
    """

    def __init__(
        self,
        config: SyncConfig,
        http: httpx.AsyncClient | None = None,
        telemetry: Telemetry | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            config: Sync configuration (candidates, timeouts).
            http: Optional HTTP client (one is created and owned otherwise).
            telemetry: Sync log sink (defaults to the global instance).
        """
        self._config = config
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(verify=config.verify_ssl)
        self._telemetry = telemetry or get_telemetry()
        self._collections: CollectionClient | None = None

    async def aclose(self) -> None:
        """Close the HTTP client if owned by this transport."""
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> SyncTransport:
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args: object) -> None:
        """Async context manager exit."""
        await self.aclose()

    @property
    def selected_endpoint(self) -> str | None:
        """Currently selected backend URL, if any."""
        return self._collections.base_url if self._collections else None

    def reset_endpoint(self) -> None:
        """Forget the selected backend so the next call re-discovers it."""
        self._collections = None

    # === Connectivity ===

    async def check_network_connectivity(self) -> bool:
        """Check that the device can reach the internet at all.

        Returns:
            True if the well-known connectivity URL answered.
        """
        try:
            await self._http.head(
                self._config.connectivity_url, timeout=self._config.health_timeout
            )
        except httpx.HTTPError as e:
            logger.debug(f"Connectivity check failed: {e}")
            return False
        return True

    async def health_check(self, base_url: str) -> None:
        """Health-check a single backend once.

        Raises:
            httpx.HTTPError: If the backend did not answer in time.
            APIError: If the backend answered with an unhealthy status.
        """
        url = f"{base_url}{self._config.health_path}"
        self._telemetry.add_log(f"Health-check {url}", "verbose")
        response = await self._http.head(url, timeout=self._config.health_timeout)
        if response.status_code not in HEALTHY_STATUSES:
            raise APIError(f"Unhealthy status {response.status_code}", response.status_code)

    async def select_endpoint(self, candidates: list[str] | None = None) -> str:
        """Select the first healthy backend.

        Each candidate gets up to ``health_attempts`` health checks spaced by
        ``health_retry_delay`` before the next candidate is tried.

        Args:
            candidates: Ordered backend URLs (defaults to the configured ones).

        Returns:
            The selected backend URL.

        Raises:
            NoEndpointReachable: If every candidate exhausted its attempts.
        """
        candidates = list(self._config.server_urls if candidates is None else candidates)

        async def check_with_retries(base_url: str) -> None:
            await retry_with_backoff(
                lambda: self.health_check(base_url),
                max_attempts=self._config.health_attempts,
                initial_backoff=self._config.health_retry_delay,
                retryable_exceptions=(httpx.HTTPError, APIError),
            )

        selected = await first_success(
            candidates,
            check_with_retries,
            retryable_exceptions=(httpx.HTTPError, APIError),
        )
        if selected is None:
            self._telemetry.add_log("Skipping sync - no backend reachable", "warning")
            raise NoEndpointReachable(candidates)

        base_url = selected[0]
        self._telemetry.add_log(f"Backend selected: {base_url}", "info")
        self._collections = CollectionClient(self._http, base_url, self._config.request_timeout)
        return base_url

    async def _client(self) -> CollectionClient:
        if self._collections is None:
            await self.select_endpoint()
        assert self._collections is not None
        return self._collections

    async def _call(self, operation: str, *args: Any, **kwargs: Any) -> Any:
        client = await self._client()
        try:
            return await getattr(client, operation)(*args, **kwargs)
        except NetworkUnavailable:
            self.reset_endpoint()
            raise

    # === Snapshots ===

    async def push_snapshot_record(
        self, workspace_id: str, device_id: str, blob: str
    ) -> SnapshotRecord:
        """Append a snapshot to the workspace history."""
        data = await self._call(
            "create_record",
            SNAPSHOTS,
            {"workspace_id": workspace_id, "device_id": device_id, "snapshot_blob": blob},
        )
        return SnapshotRecord.from_dict(data)

    async def pull_latest_snapshot_record(self, workspace_id: str) -> SnapshotRecord | None:
        """Get the most recent snapshot of a workspace.

        Returns:
            The latest snapshot, or None if the workspace has none yet.
        """
        items = await self._call(
            "list_records",
            SNAPSHOTS,
            filter=f"workspace_id={_quote(workspace_id)}",
            sort="-created",
            per_page=1,
        )
        return SnapshotRecord.from_dict(items[0]) if items else None

    # === Workspaces ===

    async def create_workspace(
        self,
        owner_device_id: str,
        device_ids: list[str],
        invite_code: str,
        shared_key: str | None = None,
    ) -> WorkspaceRecord:
        """Create a workspace record."""
        fields: dict[str, Any] = {
            "owner_device_id": owner_device_id,
            "device_ids": device_ids,
            "invite_code": invite_code,
        }
        if shared_key is not None:
            fields["shared_key"] = shared_key
        return WorkspaceRecord.from_dict(await self._call("create_record", WORKSPACES, fields))

    async def get_workspace(self, workspace_id: str) -> WorkspaceRecord:
        """Get a workspace record.

        Raises:
            NotFoundError: If the workspace does not exist.
        """
        return WorkspaceRecord.from_dict(await self._call("get_record", WORKSPACES, workspace_id))

    async def update_workspace(self, workspace_id: str, fields: dict[str, Any]) -> WorkspaceRecord:
        """Patch fields of a workspace record."""
        data = await self._call("update_record", WORKSPACES, workspace_id, fields)
        return WorkspaceRecord.from_dict(data)

    # === Premium ===

    async def find_premium_record(
        self, username: str, device_id: str | None = None
    ) -> PremiumRecord | None:
        """Find an active premium record for a user.

        Returns:
            The matching record, or None if the user has no active entitlement.
        """
        filter_expr = f"username = {_quote(username)} && is_active = true"
        if device_id:
            filter_expr += f" && device_id = {_quote(device_id)}"
        try:
            data = await self._call("get_first", PREMIUM_USERS, filter_expr)
        except NotFoundError:
            return None
        return PremiumRecord.from_dict(data)

    # === Diagnostics ===

    async def export_debug_logs(
        self, device_id: str, username: str, entries: list[dict[str, Any]]
    ) -> None:
        """Upload sync log entries for remote diagnosis."""
        await self._call(
            "create_record",
            DEBUG_LOGS,
            {
                "device_id": device_id,
                "username": username,
                "timestamp": datetime.now(UTC).isoformat(),
                "logs": json.dumps(entries),
            },
        )
